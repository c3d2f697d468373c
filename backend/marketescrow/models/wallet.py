from datetime import datetime

from marketescrow.extensions import db


class Wallet(db.Model):
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("balance_minor >= 0", name="ck_wallet_balance_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # kobo
    balance_minor = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="NGN")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "user_id": int(self.user_id),
            "balance_minor": int(self.balance_minor or 0),
            "currency": self.currency or "NGN",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WalletTxn(db.Model):
    __tablename__ = "wallet_txns"
    __table_args__ = (
        db.UniqueConstraint("user_id", "kind", "direction", "reference", name="uq_wallet_txn_posting"),
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False)  # credit/debit
    amount_minor = db.Column(db.BigInteger, nullable=False, default=0)

    kind = db.Column(db.String(32), nullable=False)  # escrow_lock, escrow_release, escrow_refund
    reference = db.Column(db.String(80), nullable=False, index=True)
    note = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "wallet_id": int(self.wallet_id),
            "user_id": int(self.user_id),
            "direction": self.direction,
            "amount_minor": int(self.amount_minor or 0),
            "kind": self.kind,
            "reference": self.reference or "",
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
