from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketescrow.services import crypto_bridge, dispute_service
from marketescrow.services.audit_service import list_audit_events
from marketescrow.services.reconciliation_service import reconcile
from marketescrow.utils.request_auth import json_body, market_settings, require_admin, required_str

market_admin_bp = Blueprint("market_admin_bp", __name__, url_prefix="/api/market/admin")


@market_admin_bp.get("/audit-events")
def audit_events():
    require_admin()
    rows = list_audit_events(order_id=request.args.get("order_id"), limit=request.args.get("limit"))
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@market_admin_bp.post("/disputes/review")
def review_dispute():
    actor = require_admin()
    payload = json_body()
    dispute = dispute_service.review_dispute(
        required_str(payload, "order_id", max_len=64),
        actor,
        note=str(payload.get("note") or ""),
    )
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


@market_admin_bp.post("/disputes/resolve")
def resolve_dispute():
    actor = require_admin()
    payload = json_body()
    order, dispute = dispute_service.resolve_dispute(
        required_str(payload, "order_id", max_len=64),
        required_str(payload, "decision", max_len=16),
        actor,
        note=str(payload.get("note") or ""),
    )
    return jsonify({"ok": True, "order": order.to_dict(), "dispute": dispute.to_dict()}), 200


@market_admin_bp.post("/usdc/refund-intent")
def usdc_refund_intent():
    actor = require_admin()
    payload = json_body()
    result = crypto_bridge.refund_intent(
        required_str(payload, "order_id", max_len=64),
        str(payload.get("reason") or ""),
        actor,
        market_settings(),
    )
    return jsonify({"ok": True, **result}), 200


@market_admin_bp.post("/usdc/intent-status")
def usdc_intent_status():
    actor = require_admin()
    payload = json_body()
    intent, order = crypto_bridge.report_intent_status(
        required_str(payload, "order_id", max_len=64),
        required_str(payload, "intent_type", max_len=16),
        required_str(payload, "status", max_len=16),
        actor,
        tx_hash=str(payload.get("tx_hash") or ""),
        failure_reason=str(payload.get("failure_reason") or ""),
    )
    return jsonify({"ok": True, "intent": intent.to_dict(), "order": order.to_dict()}), 200


@market_admin_bp.get("/reconciliation")
def reconciliation():
    require_admin()
    return jsonify(reconcile()), 200
