from datetime import datetime

from marketescrow.extensions import db


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False, default="")
    category = db.Column(db.String(16), nullable=False, default="product")  # product/service
    delivery_type = db.Column(db.String(16), nullable=False, default="physical")  # physical/digital/in_person

    price_minor = db.Column(db.BigInteger, nullable=False, default=0)
    # minor units of currency: kobo for NGN, 1e-6 token units for USDC
    currency = db.Column(db.String(8), nullable=False, default="NGN")
    stock_qty = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "title": self.title or "",
            "category": self.category or "product",
            "delivery_type": self.delivery_type or "physical",
            "price_minor": int(self.price_minor or 0),
            "currency": self.currency or "NGN",
            "stock_qty": int(self.stock_qty) if self.stock_qty is not None else None,
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
