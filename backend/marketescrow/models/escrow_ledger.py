from datetime import datetime

from marketescrow.extensions import db


class EscrowLedger(db.Model):
    """Written once when an NGN order is locked; never updated afterwards."""

    __tablename__ = "escrow_ledger"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    amount_locked_minor = db.Column(db.BigInteger, nullable=False)
    fee_minor = db.Column(db.BigInteger, nullable=False, default=0)
    total_debit_minor = db.Column(db.BigInteger, nullable=False)
    fee_bps = db.Column(db.Integer, nullable=False, default=0)

    locked_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "amount_locked_minor": int(self.amount_locked_minor or 0),
            "fee_minor": int(self.fee_minor or 0),
            "total_debit_minor": int(self.total_debit_minor or 0),
            "fee_bps": int(self.fee_bps or 0),
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }
