from datetime import datetime

from marketescrow.extensions import db


class OrderOtp(db.Model):
    __tablename__ = "order_otps"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    otp_hash = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    verified_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        # otp_hash is never serialized.
        return {
            "order_id": self.order_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "attempts": int(self.attempts or 0),
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
