from datetime import datetime

from marketescrow.extensions import db


class Deliverable(db.Model):
    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    storage_path_full = db.Column(db.String(1024), nullable=False)
    storage_path_preview = db.Column(db.String(1024), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self, *, include_full: bool = False):
        payload = {
            "order_id": self.order_id,
            "seller_id": int(self.seller_id),
            "storage_path_preview": self.storage_path_preview or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_full:
            payload["storage_path_full"] = self.storage_path_full or ""
        return payload
