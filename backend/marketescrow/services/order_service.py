from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy import update

from marketescrow.config import MarketSettings
from marketescrow.errors import (
    DeliverableMissing,
    InsufficientStock,
    ListingInactive,
    ListingNotFound,
    MarketError,
    NotBuyer,
    NotParty,
    NotSeller,
    OwnListing,
    UnsupportedDelivery,
    ValidationError,
    WrongCurrency,
    WrongStatus,
)
from marketescrow.extensions import db
from marketescrow.models import (
    CryptoEscrow,
    CryptoIntent,
    Deliverable,
    Dispute,
    EscrowLedger,
    Listing,
    Order,
    OrderOtp,
)
from marketescrow.services import otp_service, wallet_ledger
from marketescrow.services.audit_service import record_audit
from marketescrow.services.order_state import (
    DeliveryKind,
    OrderStatus,
    check_version,
    load_order,
    transition,
)
from marketescrow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

MAX_QUANTITY = 1000
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200
OPEN_DISPUTE_STATUSES = ("OPEN", "UNDER_REVIEW")
PENDING_INTENT_STATUSES = ("CREATED", "PROCESSING", "SUBMITTED")


def _actor_id(actor) -> int:
    try:
        return int((actor or {}).get("id") or 0)
    except (TypeError, ValueError):
        return 0


def _require_buyer(order: Order, actor) -> None:
    if _actor_id(actor) != int(order.buyer_id):
        raise NotBuyer("Only the buyer can do this")


def _require_seller(order: Order, actor) -> None:
    if _actor_id(actor) != int(order.seller_id):
        raise NotSeller("Only the seller can do this")


def role_of(order: Order, user_id: int) -> str:
    if int(user_id) == int(order.buyer_id):
        return "buyer"
    if int(user_id) == int(order.seller_id):
        return "seller"
    return "none"


def _require_status(order: Order, *statuses: str) -> None:
    if order.status not in statuses:
        wanted = "/".join(statuses)
        raise WrongStatus(f"Order must be {wanted} (is {order.status})")


def _require_kind(order: Order, *kinds: str) -> None:
    if order.delivery_kind not in kinds:
        raise UnsupportedDelivery(f"Not available for {order.delivery_kind} orders")


def _require_no_pending_refund(order: Order) -> None:
    pending = CryptoIntent.query.filter(
        CryptoIntent.order_id == order.id,
        CryptoIntent.intent_type == "REFUND",
        CryptoIntent.status.in_(PENDING_INTENT_STATUSES),
    ).first()
    if pending is not None:
        raise WrongStatus("A USDC refund is in progress for this order", code="RefundPending")


def _parse_quantity(raw) -> int:
    if raw is None or raw == "":
        return 1
    if isinstance(raw, bool):
        raise ValidationError("quantity must be an integer")
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be an integer")
    if qty < 1 or qty > MAX_QUANTITY:
        raise ValidationError(f"quantity must be between 1 and {MAX_QUANTITY}")
    return qty


def _adjust_stock(listing: Listing, delta: int) -> None:
    if listing.stock_qty is None:
        return
    table = Listing.__table__
    stmt = update(table).where(table.c.id == listing.id)
    if delta < 0:
        stmt = stmt.where(table.c.stock_qty >= -delta)
    result = db.session.execute(stmt.values(stock_qty=table.c.stock_qty + delta))
    if result.rowcount != 1:
        raise InsufficientStock("Not enough stock for this quantity")
    db.session.refresh(listing)


def new_order_from_listing(
    listing_id,
    buyer_id: int,
    *,
    currency: str,
    quantity=1,
    delivery_address: dict | None = None,
    note: str | None = None,
    actor=None,
) -> Order:
    """Validate the listing and add a CREATED order. Does not commit."""
    try:
        lid = int(listing_id)
    except (TypeError, ValueError):
        raise ValidationError("listing_id required")
    listing = db.session.get(Listing, lid)
    if listing is None:
        raise ListingNotFound(f"Listing {lid} not found")
    if not listing.is_active:
        raise ListingInactive("Listing is not active")
    if int(listing.seller_id) == int(buyer_id):
        raise OwnListing("You cannot buy your own listing")
    if (listing.currency or "NGN").upper() != currency:
        raise WrongCurrency(f"Listing is priced in {listing.currency}, not {currency}")
    if delivery_address is not None and not isinstance(delivery_address, dict):
        raise ValidationError("delivery_address must be an object")

    kind = DeliveryKind.from_listing(listing.category, listing.delivery_type)
    qty = _parse_quantity(quantity)
    _adjust_stock(listing, -qty)

    unit_price = int(listing.price_minor or 0)
    order = Order(
        buyer_id=int(buyer_id),
        seller_id=int(listing.seller_id),
        listing_id=int(listing.id),
        quantity=qty,
        unit_price_minor=unit_price,
        amount_minor=unit_price * qty,
        currency=currency,
        status=OrderStatus.CREATED,
        version=0,
        delivery_kind=kind,
        delivery_address_json=json.dumps(delivery_address) if delivery_address else None,
        note=(note or "").strip()[:500] or None,
    )
    db.session.add(order)
    db.session.flush()
    record_audit(
        "ORDER_CREATED",
        entity_type="order",
        entity_id=order.id,
        actor=actor,
        payload={"listing_id": int(listing.id), "quantity": qty, "amount_minor": int(order.amount_minor)},
    )
    return order


def create_order(listing_id, buyer_id: int, *, quantity=1, delivery_address=None, note=None, actor=None) -> Order:
    with unit_of_work():
        order = new_order_from_listing(
            listing_id,
            buyer_id,
            currency="NGN",
            quantity=quantity,
            delivery_address=delivery_address,
            note=note,
            actor=actor,
        )
    logger.info("order_created order_id=%s amount_minor=%s", order.id, int(order.amount_minor))
    return order


def cancel_order(order_id, expected_version, actor) -> Order:
    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        _require_buyer(order, actor)
        _require_status(order, OrderStatus.CREATED)
        listing = db.session.get(Listing, int(order.listing_id))
        if listing is not None:
            _adjust_stock(listing, int(order.quantity))
        order = transition(order.id, expected, OrderStatus.CANCELLED, "cancelled by buyer", actor)
        record_audit("ORDER_CANCELLED", entity_type="order", entity_id=order.id, actor=actor)
    return order


def checkout_wallet(order_id, expected_version, actor, settings: MarketSettings) -> Order:
    with unit_of_work():
        order = load_order(order_id)
        check_version(order, expected_version)
        _require_buyer(order, actor)
        order = wallet_ledger.lock(order.id, expected_version, actor, settings)
    return order


def mark_out_for_delivery(order_id, expected_version, actor, settings: MarketSettings) -> tuple[Order, OrderOtp]:
    """Seller dispatches a physical order; a fresh delivery OTP is issued with it."""
    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        _require_seller(order, actor)
        _require_kind(order, DeliveryKind.PHYSICAL)
        _require_status(order, OrderStatus.IN_ESCROW)
        _require_no_pending_refund(order)
        order = transition(order.id, expected, OrderStatus.OUT_FOR_DELIVERY, "out for delivery", actor)
        otp_row, code = otp_service.issue_otp(order, settings, actor=actor)

    if settings.otp_delivery == "sms":
        # dispatch failures leave the order OUT_FOR_DELIVERY; the buyer re-generates
        try:
            otp_service.deliver_otp(order, code, settings)
        except MarketError as e:
            logger.warning("otp_dispatch_sms_failed order_id=%s err=%s", order.id, e)
    return order, otp_row


def generate_otp(order_id, actor, settings: MarketSettings) -> dict:
    with unit_of_work():
        order = load_order(order_id)
        _require_buyer(order, actor)
        _require_status(order, OrderStatus.OUT_FOR_DELIVERY)
        otp_row, code = otp_service.issue_otp(order, settings, actor=actor)
        expires_at = otp_row.expires_at
        # a failed send rolls back the new code; the previous one stays valid
        delivery = otp_service.deliver_otp(order, code, settings)
    return {"order_id": order.id, "expires_at": expires_at.isoformat(), **delivery}


def verify_otp(order_id, code, actor, settings: MarketSettings) -> Order:
    return otp_service.verify_otp(order_id, code, actor, settings)


def upload_deliverable(order_id, expected_version, actor, *, storage_path_full: str, storage_path_preview: str = "") -> Order:
    full_path = (storage_path_full or "").strip()
    if not full_path:
        raise ValidationError("storage_path_full required")
    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        _require_seller(order, actor)
        _require_kind(order, DeliveryKind.DIGITAL)
        _require_status(order, OrderStatus.IN_ESCROW)
        _require_no_pending_refund(order)

        now = datetime.utcnow()
        row = Deliverable.query.filter_by(order_id=order.id).first()
        if row is None:
            row = Deliverable(order_id=order.id, seller_id=int(order.seller_id), created_at=now)
            db.session.add(row)
        row.storage_path_full = full_path[:1024]
        row.storage_path_preview = (storage_path_preview or "").strip()[:1024] or None
        row.updated_at = now

        order = transition(order.id, expected, OrderStatus.DELIVERABLE_UPLOADED, "deliverable uploaded", actor)
        record_audit(
            "DELIVERABLE_UPLOADED",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"has_preview": bool(row.storage_path_preview)},
        )
    return order


def seller_mark_delivered(order_id, expected_version, actor) -> Order:
    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        _require_seller(order, actor)
        _require_kind(order, DeliveryKind.DIGITAL, DeliveryKind.IN_PERSON)
        _require_status(order, OrderStatus.IN_ESCROW, OrderStatus.DELIVERABLE_UPLOADED)
        order = transition(order.id, expected, OrderStatus.DELIVERED, "marked delivered by seller", actor)
    return order


def approve_digital(order_id, expected_version, actor) -> Order:
    """Buyer accepts an uploaded deliverable; the order is delivered and released at once."""
    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        _require_buyer(order, actor)
        _require_kind(order, DeliveryKind.DIGITAL)
        _require_status(order, OrderStatus.DELIVERABLE_UPLOADED)
        if (order.currency or "").upper() != "NGN":
            raise WrongCurrency("USDC orders are released on-chain via a release intent")
        if Deliverable.query.filter_by(order_id=order.id).first() is None:
            raise DeliverableMissing("No deliverable uploaded for this order")
        order = transition(order.id, expected, OrderStatus.DELIVERED, "digital deliverable approved", actor)
        order = wallet_ledger.release(order.id, order.version, actor)
    return order


def confirm_received(order_id, expected_version, actor) -> Order:
    with unit_of_work():
        order = load_order(order_id)
        check_version(order, expected_version)
        _require_buyer(order, actor)
        order = wallet_ledger.release(order.id, expected_version, actor)
    return order


def _has_open_dispute(dispute: Dispute | None) -> bool:
    return bool(dispute is not None and dispute.status in OPEN_DISPUTE_STATUSES)


def allowed_actions(order_id, user_id: int) -> dict:
    order = load_order(order_id)
    role = role_of(order, user_id)
    if role == "none":
        raise NotParty("You are not a party to this order")

    otp = OrderOtp.query.filter_by(order_id=order.id).first()
    has_deliverable = Deliverable.query.filter_by(order_id=order.id).first() is not None
    open_dispute = _has_open_dispute(Dispute.query.filter_by(order_id=order.id).first())
    status = order.status
    kind = order.delivery_kind
    can_dispute = not open_dispute and status in OrderStatus.DISPUTABLE

    actions: list[str] = []
    if role == "buyer":
        if status == OrderStatus.CREATED:
            actions.append("BUYER_CANCEL_ORDER")
        if kind == DeliveryKind.PHYSICAL and status == OrderStatus.OUT_FOR_DELIVERY:
            actions.append("BUYER_GENERATE_OTP")
        if kind == DeliveryKind.DIGITAL and status == OrderStatus.DELIVERABLE_UPLOADED and has_deliverable:
            actions.append("BUYER_APPROVE_DIGITAL")
        if status == OrderStatus.DELIVERED:
            actions.append("BUYER_CONFIRM_RECEIVED")
        if can_dispute:
            actions.append("BUYER_OPEN_DISPUTE")
    else:
        if kind == DeliveryKind.PHYSICAL:
            if status == OrderStatus.IN_ESCROW:
                actions.append("SELLER_OUT_FOR_DELIVERY")
            if status == OrderStatus.OUT_FOR_DELIVERY and otp is not None and otp.verified_at is None:
                actions.append("SELLER_VERIFY_OTP")
        if kind == DeliveryKind.DIGITAL and status == OrderStatus.IN_ESCROW:
            actions.append("SELLER_UPLOAD_DELIVERABLE")
        if kind in (DeliveryKind.DIGITAL, DeliveryKind.IN_PERSON) and status in (
            OrderStatus.IN_ESCROW,
            OrderStatus.DELIVERABLE_UPLOADED,
        ):
            actions.append("SELLER_MARK_DELIVERED")
        if can_dispute:
            actions.append("SELLER_OPEN_DISPUTE")

    return {
        "order_id": order.id,
        "role": role,
        "status": status,
        "version": int(order.version),
        "delivery_kind": kind,
        "flags": {
            "otp_exists": otp is not None,
            "otp_verified": bool(otp is not None and otp.verified_at is not None),
            "deliverable_exists": has_deliverable,
            "open_dispute": open_dispute,
        },
        "actions": actions,
    }


def order_detail(order_id, user_id: int) -> dict:
    order = load_order(order_id)
    role = role_of(order, user_id)
    if role == "none":
        raise NotParty("You are not a party to this order")

    listing = db.session.get(Listing, int(order.listing_id))
    ledger = EscrowLedger.query.filter_by(order_id=order.id).first()
    otp = OrderOtp.query.filter_by(order_id=order.id).first()
    dispute = Dispute.query.filter_by(order_id=order.id).first()
    deliverable = Deliverable.query.filter_by(order_id=order.id).first()
    crypto = CryptoEscrow.query.filter_by(order_id=order.id).first()
    intents = CryptoIntent.query.filter_by(order_id=order.id).order_by(CryptoIntent.id.asc()).all()

    # full deliverable path only for the seller, or the buyer once accepted
    show_full = role == "seller" or order.status in (OrderStatus.DELIVERED, OrderStatus.RELEASED)
    return {
        "order": order.to_dict(),
        "role": role,
        "listing": listing.to_dict() if listing else None,
        "escrow": ledger.to_dict() if ledger else None,
        "otp": otp.to_dict() if otp else None,
        "dispute": dispute.to_dict() if dispute else None,
        "deliverable": deliverable.to_dict(include_full=show_full) if deliverable else None,
        "crypto": crypto.to_dict() if crypto else None,
        "intents": [i.to_dict() for i in intents],
    }


def list_orders(user_id: int, *, role: str = "buyer", status: str | None = None, limit=None) -> list[Order]:
    role = (role or "buyer").strip().lower()
    if role not in ("buyer", "seller"):
        raise ValidationError("role must be buyer or seller")
    try:
        n = int(limit) if limit not in (None, "") else DEFAULT_LIST_LIMIT
    except (TypeError, ValueError):
        n = DEFAULT_LIST_LIMIT
    n = max(1, min(n, MAX_LIST_LIMIT))

    column = Order.buyer_id if role == "buyer" else Order.seller_id
    q = Order.query.filter(column == int(user_id))
    if status:
        wanted = status.strip().upper()
        if wanted not in OrderStatus.ALL:
            raise ValidationError(f"Unknown status {status}")
        q = q.filter(Order.status == wanted)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(n).all()


def order_counts(user_id: int) -> dict:
    def _counts(column) -> dict:
        rows = (
            db.session.query(Order.status, db.func.count(Order.id))
            .filter(column == int(user_id))
            .group_by(Order.status)
            .all()
        )
        found = {status: int(n) for status, n in rows}
        return {status: found.get(status, 0) for status in OrderStatus.ALL}

    buyer_counts = _counts(Order.buyer_id)
    seller_counts = _counts(Order.seller_id)
    return {
        "buyer_counts": buyer_counts,
        "seller_counts": seller_counts,
        "totals": {"buyer": sum(buyer_counts.values()), "seller": sum(seller_counts.values())},
    }
