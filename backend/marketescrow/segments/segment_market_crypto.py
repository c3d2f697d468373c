from __future__ import annotations

from flask import Blueprint, jsonify

from marketescrow.errors import ValidationError
from marketescrow.services import crypto_bridge
from marketescrow.utils.request_auth import (
    current_user,
    json_body,
    market_settings,
    required_str,
    user_actor,
)

market_crypto_bp = Blueprint("market_crypto_bp", __name__, url_prefix="/api/market")


@market_crypto_bp.get("/chains")
def chains():
    rows = crypto_bridge.list_chains()
    return jsonify({"ok": True, "items": [c.to_dict() for c in rows]}), 200


@market_crypto_bp.post("/usdc/orders")
def create_usdc_order():
    u = current_user()
    payload = json_body()
    if payload.get("listing_id") in (None, ""):
        raise ValidationError("listing_id required")
    order, esc, cfg = crypto_bridge.create_usdc_order(
        payload.get("listing_id"),
        int(u.id),
        required_str(payload, "buyer_wallet", max_len=64),
        chain=str(payload.get("chain") or "").strip() or None,
        actor=user_actor(u),
    )
    return jsonify(
        {
            "ok": True,
            "order": order.to_dict(),
            "crypto": {
                "order_key": esc.order_key,
                "chain": cfg.chain,
                "chain_id": int(cfg.chain_id),
                "confirmations_required": int(cfg.confirmations_required or 1),
                "usdc_address": cfg.usdc_address,
                "escrow_address": cfg.escrow_address,
            },
        }
    ), 201


@market_crypto_bp.post("/usdc/deposit-intent")
def deposit_intent():
    u = current_user()
    payload = json_body()
    result = crypto_bridge.deposit_intent(
        required_str(payload, "order_id", max_len=64),
        user_actor(u),
        market_settings(),
        chain=str(payload.get("chain") or "").strip() or None,
    )
    return jsonify({"ok": True, **result}), 200


@market_crypto_bp.post("/usdc/release-intent")
def release_intent():
    u = current_user()
    payload = json_body()
    result = crypto_bridge.release_intent(
        required_str(payload, "order_id", max_len=64),
        user_actor(u),
        chain=str(payload.get("chain") or "").strip() or None,
    )
    return jsonify({"ok": True, **result}), 200
