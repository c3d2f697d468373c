from datetime import datetime

from marketescrow.extensions import db


class ChainConfig(db.Model):
    __tablename__ = "chain_configs"

    id = db.Column(db.Integer, primary_key=True)
    chain = db.Column(db.String(32), nullable=False, unique=True, index=True)
    chain_id = db.Column(db.Integer, nullable=False)
    rpc_url = db.Column(db.String(512), nullable=True)
    usdc_address = db.Column(db.String(64), nullable=False)
    escrow_address = db.Column(db.String(64), nullable=False)
    confirmations_required = db.Column(db.Integer, nullable=False, default=1)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "chain": self.chain,
            "chain_id": int(self.chain_id),
            "rpc_url": self.rpc_url or "",
            "usdc_address": self.usdc_address,
            "escrow_address": self.escrow_address,
            "confirmations_required": int(self.confirmations_required or 1),
            "active": bool(self.active),
        }


class CryptoWallet(db.Model):
    __tablename__ = "crypto_wallets"
    __table_args__ = (
        db.UniqueConstraint("user_id", "chain", name="uq_crypto_wallet_user_chain"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    chain = db.Column(db.String(32), nullable=False)
    address = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "user_id": int(self.user_id),
            "chain": self.chain,
            "address": self.address,
        }


class CryptoEscrow(db.Model):
    __tablename__ = "crypto_escrows"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    order_key = db.Column(db.String(66), nullable=False, unique=True)

    chain = db.Column(db.String(32), nullable=False)
    buyer_wallet = db.Column(db.String(64), nullable=False)
    seller_wallet = db.Column(db.String(64), nullable=False)
    token_address = db.Column(db.String(64), nullable=False)
    escrow_address = db.Column(db.String(64), nullable=False)

    amount_units = db.Column(db.Numeric(20, 6), nullable=False)
    # uint256 does not fit BigInteger; stored as decimal string
    amount_raw = db.Column(db.String(80), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "order_key": self.order_key,
            "chain": self.chain,
            "buyer_wallet": self.buyer_wallet,
            "seller_wallet": self.seller_wallet,
            "token_address": self.token_address,
            "escrow_address": self.escrow_address,
            "amount_units": str(self.amount_units) if self.amount_units is not None else None,
            "amount_raw": self.amount_raw,
        }


class CryptoIntent(db.Model):
    __tablename__ = "crypto_intents"
    __table_args__ = (
        db.UniqueConstraint("order_id", "intent_type", name="uq_crypto_intent_order_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    intent_type = db.Column(db.String(16), nullable=False)  # DEPOSIT/RELEASE/REFUND
    status = db.Column(db.String(16), nullable=False, default="CREATED")

    chain = db.Column(db.String(32), nullable=False)
    from_wallet = db.Column(db.String(64), nullable=True)
    to_wallet = db.Column(db.String(64), nullable=True)
    amount_units = db.Column(db.Numeric(20, 6), nullable=True)
    amount_raw = db.Column(db.String(80), nullable=True)

    tx_hash = db.Column(db.String(80), nullable=True)
    failure_reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": self.order_id,
            "intent_type": self.intent_type,
            "status": self.status,
            "chain": self.chain,
            "from_wallet": self.from_wallet,
            "to_wallet": self.to_wallet,
            "amount_units": str(self.amount_units) if self.amount_units is not None else None,
            "amount_raw": self.amount_raw,
            "tx_hash": self.tx_hash,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
