from datetime import datetime

from marketescrow.extensions import db


class Dispute(db.Model):
    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.String(1000), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="OPEN")  # OPEN/UNDER_REVIEW/RESOLVED
    resolution = db.Column(db.String(24), nullable=True)  # RELEASE_TO_SELLER/REFUND_TO_BUYER
    admin_note = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": self.order_id,
            "opened_by": int(self.opened_by),
            "reason": self.reason or "",
            "status": self.status,
            "resolution": self.resolution,
            "admin_note": self.admin_note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
