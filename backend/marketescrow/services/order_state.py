from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from marketescrow.errors import InvalidTransition, OrderNotFound, UnsupportedDelivery, VersionConflict
from marketescrow.extensions import db
from marketescrow.models import MILESTONE_COLUMNS, Order
from marketescrow.services.audit_service import record_audit


class OrderStatus:
    CREATED = "CREATED"
    IN_ESCROW = "IN_ESCROW"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERABLE_UPLOADED = "DELIVERABLE_UPLOADED"
    DELIVERED = "DELIVERED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"

    ALL = (
        CREATED,
        IN_ESCROW,
        OUT_FOR_DELIVERY,
        DELIVERABLE_UPLOADED,
        DELIVERED,
        RELEASED,
        REFUNDED,
        CANCELLED,
        DISPUTED,
    )
    TERMINAL = (RELEASED, REFUNDED, CANCELLED)
    DISPUTABLE = (IN_ESCROW, OUT_FOR_DELIVERY, DELIVERABLE_UPLOADED, DELIVERED)


class DeliveryKind:
    PHYSICAL = "PHYSICAL"
    DIGITAL = "DIGITAL"
    IN_PERSON = "IN_PERSON"

    ALL = (PHYSICAL, DIGITAL, IN_PERSON)

    _BY_LISTING = {
        ("product", "physical"): PHYSICAL,
        ("service", "digital"): DIGITAL,
        ("service", "in_person"): IN_PERSON,
    }

    @classmethod
    def from_listing(cls, category: str, delivery_type: str) -> str:
        key = ((category or "").strip().lower(), (delivery_type or "").strip().lower())
        kind = cls._BY_LISTING.get(key)
        if kind is None:
            raise UnsupportedDelivery(f"Unsupported listing combination {key[0]}/{key[1]}")
        return kind


_S = OrderStatus
_K = DeliveryKind

_COMMON = {
    _S.CREATED: {_S.CANCELLED, _S.IN_ESCROW},
    _S.DELIVERED: {_S.RELEASED, _S.DISPUTED, _S.REFUNDED},
    _S.DISPUTED: {_S.DELIVERED, _S.REFUNDED},
    _S.RELEASED: set(),
    _S.REFUNDED: set(),
    _S.CANCELLED: set(),
}

_BY_KIND = {
    _K.PHYSICAL: {
        _S.IN_ESCROW: {_S.OUT_FOR_DELIVERY, _S.DISPUTED, _S.REFUNDED},
        _S.OUT_FOR_DELIVERY: {_S.DELIVERED, _S.DISPUTED},
        _S.DELIVERABLE_UPLOADED: set(),
    },
    _K.DIGITAL: {
        _S.IN_ESCROW: {_S.DELIVERABLE_UPLOADED, _S.DELIVERED, _S.DISPUTED, _S.REFUNDED},
        _S.OUT_FOR_DELIVERY: set(),
        _S.DELIVERABLE_UPLOADED: {_S.DELIVERED, _S.DISPUTED},
    },
    _K.IN_PERSON: {
        _S.IN_ESCROW: {_S.DELIVERED, _S.DISPUTED, _S.REFUNDED},
        _S.OUT_FOR_DELIVERY: set(),
        _S.DELIVERABLE_UPLOADED: set(),
    },
}

TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {}
for _kind, _rows in _BY_KIND.items():
    for _status, _targets in {**_COMMON, **_rows}.items():
        TRANSITIONS[(_status, _kind)] = frozenset(_targets)

_missing = [(s, k) for s in OrderStatus.ALL for k in DeliveryKind.ALL if (s, k) not in TRANSITIONS]
if _missing:
    raise RuntimeError(f"order transition table incomplete: {_missing}")


def allowed_targets(status: str, delivery_kind: str) -> frozenset[str]:
    return TRANSITIONS.get((status, delivery_kind), frozenset())


def load_order(order_id) -> Order:
    order = db.session.get(Order, str(order_id or ""))
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def check_version(order: Order, expected_version) -> int:
    """Resolve the caller's expected version; stale callers get VersionConflict."""
    current = int(order.version)
    if expected_version is None:
        return current
    if int(expected_version) != current:
        raise VersionConflict(
            f"Order version is {current}, expected {int(expected_version)}",
            extra={"current_version": current},
        )
    return current


def transition(order_id, expected_version, new_status: str, note: str = "", actor=None) -> Order:
    """Move an order along the transition table with a compare-and-swap write.

    Adds an ORDER_STATUS_CHANGED audit row. Does not commit.
    """
    order = load_order(order_id)
    expected = check_version(order, expected_version)
    current = order.status
    target = (new_status or "").strip().upper()
    if target not in allowed_targets(current, order.delivery_kind):
        raise InvalidTransition(f"invalid_order_transition {current}->{target} ({order.delivery_kind})")

    now = datetime.utcnow()
    values = {"status": target, "version": expected + 1, "updated_at": now}
    milestone = MILESTONE_COLUMNS.get(target)
    if milestone and getattr(order, milestone) is None:
        values[milestone] = now

    table = Order.__table__
    result = db.session.execute(
        update(table)
        .where(table.c.id == order.id, table.c.version == expected, table.c.status == current)
        .values(**values)
    )
    if result.rowcount != 1:
        raise VersionConflict("Order changed concurrently")

    record_audit(
        "ORDER_STATUS_CHANGED",
        entity_type="order",
        entity_id=order.id,
        actor=actor,
        payload={"from": current, "to": target, "version": expected + 1, "note": (note or "")[:500]},
    )
    db.session.refresh(order)
    return order
