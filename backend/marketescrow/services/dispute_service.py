from __future__ import annotations

import logging
from datetime import datetime

from marketescrow.errors import (
    AlreadyDisputed,
    NoDispute,
    NotParty,
    ValidationError,
    WrongCurrency,
    WrongStatus,
)
from marketescrow.extensions import db
from marketescrow.models import Dispute, Order
from marketescrow.services import wallet_ledger
from marketescrow.services.audit_service import record_audit
from marketescrow.services.order_state import OrderStatus, check_version, load_order, transition
from marketescrow.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class DisputeStatus:
    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"

    ACTIVE = (OPEN, UNDER_REVIEW)


class Decision:
    RELEASE = "RELEASE"
    REFUND = "REFUND"

    RESOLUTIONS = {
        RELEASE: "RELEASE_TO_SELLER",
        REFUND: "REFUND_TO_BUYER",
    }


def _dispute_for(order: Order) -> Dispute:
    dispute = Dispute.query.filter_by(order_id=order.id).first()
    if dispute is None:
        raise NoDispute("No dispute exists for this order")
    return dispute


def open_dispute(order_id, reason: str, actor, *, expected_version=None) -> tuple[Order, Dispute]:
    text = (reason or "").strip()
    if not text:
        raise ValidationError("reason required")

    with unit_of_work():
        order = load_order(order_id)
        expected = check_version(order, expected_version)
        uid = int((actor or {}).get("id") or 0)
        if uid not in (int(order.buyer_id), int(order.seller_id)):
            raise NotParty("Only the buyer or seller can open a dispute")
        if Dispute.query.filter_by(order_id=order.id).first() is not None:
            raise AlreadyDisputed("A dispute already exists for this order")
        if order.status not in OrderStatus.DISPUTABLE:
            raise WrongStatus(f"Cannot dispute an order in {order.status}")

        dispute = Dispute(order_id=order.id, opened_by=uid, reason=text[:1000], status=DisputeStatus.OPEN)
        db.session.add(dispute)
        order = transition(order.id, expected, OrderStatus.DISPUTED, "dispute opened", actor)
        record_audit(
            "DISPUTE_OPENED",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"reason": text[:1000]},
        )
    logger.info("dispute_opened order_id=%s opened_by=%s", order.id, uid)
    return order, dispute


def review_dispute(order_id, actor, *, note: str = "") -> Dispute:
    with unit_of_work():
        order = load_order(order_id)
        dispute = _dispute_for(order)
        if dispute.status != DisputeStatus.OPEN:
            raise WrongStatus(f"Dispute is {dispute.status}, not OPEN")
        dispute.status = DisputeStatus.UNDER_REVIEW
        if note:
            dispute.admin_note = note.strip()[:1000]
        record_audit("DISPUTE_UNDER_REVIEW", entity_type="order", entity_id=order.id, actor=actor)
    return dispute


def resolve_dispute(order_id, decision: str, actor, *, note: str = "") -> tuple[Order, Dispute]:
    """Settle a disputed NGN order: release to the seller or refund the buyer."""
    choice = (decision or "").strip().upper()
    if choice not in Decision.RESOLUTIONS:
        raise ValidationError("decision must be RELEASE or REFUND")
    admin_note = (note or "").strip()[:1000]

    with unit_of_work():
        order = load_order(order_id)
        if (order.currency or "").upper() != "NGN":
            raise WrongCurrency("Only NGN disputes can be resolved here")
        dispute = _dispute_for(order)
        if dispute.status not in DisputeStatus.ACTIVE:
            raise WrongStatus(f"Dispute is already {dispute.status}")

        if choice == Decision.RELEASE:
            if order.status != OrderStatus.DELIVERED:
                order = transition(order.id, order.version, OrderStatus.DELIVERED, admin_note or "forced by dispute", actor)
                record_audit(
                    "ORDER_FORCED_DELIVERED",
                    entity_type="order",
                    entity_id=order.id,
                    actor=actor,
                    payload={"note": admin_note},
                )
            order = wallet_ledger.release(order.id, order.version, actor)
            action = "DISPUTE_RESOLVED_RELEASE"
        else:
            order = wallet_ledger.refund(order.id, order.version, admin_note or "dispute refund", actor)
            action = "DISPUTE_RESOLVED_REFUND"

        dispute.status = DisputeStatus.RESOLVED
        dispute.resolution = Decision.RESOLUTIONS[choice]
        dispute.admin_note = admin_note or dispute.admin_note
        dispute.resolved_at = datetime.utcnow()
        record_audit(action, entity_type="order", entity_id=order.id, actor=actor, payload={"note": admin_note})
    logger.info("dispute_resolved order_id=%s resolution=%s", order.id, dispute.resolution)
    return order, dispute
