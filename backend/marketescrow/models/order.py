import json
import uuid
from datetime import datetime

from marketescrow.extensions import db


def _new_order_id() -> str:
    return str(uuid.uuid4())


MILESTONE_COLUMNS = {
    "IN_ESCROW": "in_escrow_at",
    "OUT_FOR_DELIVERY": "out_for_delivery_at",
    "DELIVERABLE_UPLOADED": "deliverable_uploaded_at",
    "DELIVERED": "delivered_at",
    "RELEASED": "released_at",
    "REFUNDED": "refunded_at",
    "CANCELLED": "cancelled_at",
    "DISPUTED": "disputed_at",
}


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_quantity_positive"),
        db.CheckConstraint("amount_minor >= 0", name="ck_order_amount_non_negative"),
        db.CheckConstraint("version >= 0", name="ck_order_version_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_order_id)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_minor = db.Column(db.BigInteger, nullable=False, default=0)
    amount_minor = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="NGN")

    status = db.Column(db.String(32), nullable=False, default="CREATED", index=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    delivery_kind = db.Column(db.String(16), nullable=False, default="PHYSICAL")

    delivery_address_json = db.Column(db.Text, nullable=True)
    note = db.Column(db.String(500), nullable=True)

    in_escrow_at = db.Column(db.DateTime, nullable=True)
    out_for_delivery_at = db.Column(db.DateTime, nullable=True)
    deliverable_uploaded_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    disputed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def delivery_address(self) -> dict | None:
        raw = (self.delivery_address_json or "").strip()
        if not raw:
            return None
        try:
            value = json.loads(raw)
        except Exception:
            return None
        return value if isinstance(value, dict) else None

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id),
            "quantity": int(self.quantity or 1),
            "unit_price_minor": int(self.unit_price_minor or 0),
            "amount_minor": int(self.amount_minor or 0),
            "currency": self.currency or "NGN",
            "status": self.status,
            "version": int(self.version or 0),
            "delivery_kind": self.delivery_kind,
            "delivery_address": self.delivery_address(),
            "note": self.note or "",
            "in_escrow_at": _iso(self.in_escrow_at),
            "out_for_delivery_at": _iso(self.out_for_delivery_at),
            "deliverable_uploaded_at": _iso(self.deliverable_uploaded_at),
            "delivered_at": _iso(self.delivered_at),
            "released_at": _iso(self.released_at),
            "refunded_at": _iso(self.refunded_at),
            "cancelled_at": _iso(self.cancelled_at),
            "disputed_at": _iso(self.disputed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
