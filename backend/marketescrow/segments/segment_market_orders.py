from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketescrow.errors import ValidationError
from marketescrow.services import dispute_service, order_service, wallet_ledger
from marketescrow.utils.request_auth import (
    current_user,
    json_body,
    market_settings,
    optional_version,
    required_version,
    required_str,
    user_actor,
)

market_orders_bp = Blueprint("market_orders_bp", __name__, url_prefix="/api/market")


def _order_id(payload: dict) -> str:
    return required_str(payload, "order_id", max_len=64)


@market_orders_bp.post("/orders")
def create_order():
    u = current_user()
    payload = json_body()
    if payload.get("listing_id") in (None, ""):
        raise ValidationError("listing_id required")
    order = order_service.create_order(
        payload.get("listing_id"),
        int(u.id),
        quantity=payload.get("quantity", 1),
        delivery_address=payload.get("delivery_address"),
        note=payload.get("note"),
        actor=user_actor(u),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 201


@market_orders_bp.post("/orders/cancel")
def cancel_order():
    u = current_user()
    payload = json_body()
    order = order_service.cancel_order(_order_id(payload), optional_version(payload), user_actor(u))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.post("/orders/checkout-wallet")
def checkout_wallet():
    u = current_user()
    payload = json_body()
    order = order_service.checkout_wallet(
        _order_id(payload),
        required_version(payload),
        user_actor(u),
        market_settings(),
    )
    return jsonify({"ok": True, "order": order.to_dict(), "wallet": wallet_ledger.wallet_view(int(u.id))}), 200


@market_orders_bp.post("/orders/out-for-delivery")
def out_for_delivery():
    u = current_user()
    payload = json_body()
    order, otp_row = order_service.mark_out_for_delivery(
        _order_id(payload),
        optional_version(payload),
        user_actor(u),
        market_settings(),
    )
    return jsonify(
        {
            "ok": True,
            "order": order.to_dict(),
            "otp_generated": True,
            "expires_at": otp_row.expires_at.isoformat(),
        }
    ), 200


@market_orders_bp.post("/orders/deliverable")
def upload_deliverable():
    u = current_user()
    payload = json_body()
    order = order_service.upload_deliverable(
        _order_id(payload),
        optional_version(payload),
        user_actor(u),
        storage_path_full=required_str(payload, "storage_path_full", max_len=1024),
        storage_path_preview=str(payload.get("storage_path_preview") or ""),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.post("/orders/mark-delivered")
def mark_delivered():
    u = current_user()
    payload = json_body()
    order = order_service.seller_mark_delivered(_order_id(payload), optional_version(payload), user_actor(u))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.post("/orders/approve-digital")
def approve_digital():
    u = current_user()
    payload = json_body()
    order = order_service.approve_digital(_order_id(payload), optional_version(payload), user_actor(u))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.post("/orders/otp/generate")
def otp_generate():
    u = current_user()
    payload = json_body()
    result = order_service.generate_otp(_order_id(payload), user_actor(u), market_settings())
    return jsonify({"ok": True, **result}), 200


@market_orders_bp.post("/orders/otp/verify")
def otp_verify():
    u = current_user()
    payload = json_body()
    order = order_service.verify_otp(
        _order_id(payload),
        payload.get("code") or payload.get("otp"),
        user_actor(u),
        market_settings(),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.post("/orders/confirm-received")
def confirm_received():
    u = current_user()
    payload = json_body()
    order = order_service.confirm_received(_order_id(payload), optional_version(payload), user_actor(u))
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@market_orders_bp.get("/orders/counts")
def order_counts():
    u = current_user()
    return jsonify({"ok": True, **order_service.order_counts(int(u.id))}), 200


@market_orders_bp.get("/orders/<order_id>")
def order_detail(order_id: str):
    u = current_user()
    return jsonify({"ok": True, **order_service.order_detail(order_id, int(u.id))}), 200


@market_orders_bp.get("/orders/<order_id>/actions")
def order_actions(order_id: str):
    u = current_user()
    return jsonify({"ok": True, **order_service.allowed_actions(order_id, int(u.id))}), 200


@market_orders_bp.get("/orders")
def my_orders():
    u = current_user()
    rows = order_service.list_orders(
        int(u.id),
        role=request.args.get("role", "buyer"),
        status=request.args.get("status"),
        limit=request.args.get("limit"),
    )
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows]}), 200


@market_orders_bp.post("/disputes")
def open_dispute():
    u = current_user()
    payload = json_body()
    order, dispute = dispute_service.open_dispute(
        _order_id(payload),
        required_str(payload, "reason", max_len=1000),
        user_actor(u),
        expected_version=optional_version(payload),
    )
    return jsonify({"ok": True, "order": order.to_dict(), "dispute": dispute.to_dict()}), 201


@market_orders_bp.get("/wallet")
def my_wallet():
    u = current_user()
    return jsonify({"ok": True, "wallet": wallet_ledger.wallet_view(int(u.id))}), 200
