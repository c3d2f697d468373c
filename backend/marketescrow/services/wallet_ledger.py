from __future__ import annotations

import logging
from datetime import datetime

from marketescrow.config import MarketSettings
from marketescrow.errors import InsufficientFunds, StateError, ValidationError, WrongCurrency, WrongStatus
from marketescrow.extensions import db
from marketescrow.models import EscrowLedger, Order, Wallet, WalletTxn
from marketescrow.services.audit_service import record_audit
from marketescrow.services.order_state import OrderStatus, check_version, load_order, transition
from marketescrow.utils.money import escrow_fee_split_minor

logger = logging.getLogger(__name__)

REFUNDABLE = (OrderStatus.IN_ESCROW, OrderStatus.DELIVERED, OrderStatus.DISPUTED)


def _reference(order: Order) -> str:
    return f"order:{order.id}"


def _wallet_for_update(user_id: int, *, create: bool) -> Wallet | None:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).with_for_update().first()
    if wallet is None and create:
        wallet = Wallet(user_id=int(user_id), balance_minor=0, currency="NGN")
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _post(wallet: Wallet, *, direction: str, amount_minor: int, kind: str, reference: str, note: str = "") -> WalletTxn:
    amount = int(amount_minor)
    if direction == "debit":
        wallet.balance_minor = int(wallet.balance_minor or 0) - amount
    else:
        wallet.balance_minor = int(wallet.balance_minor or 0) + amount
    wallet.updated_at = datetime.utcnow()
    txn = WalletTxn(
        wallet_id=int(wallet.id),
        user_id=int(wallet.user_id),
        direction=direction,
        amount_minor=amount,
        kind=kind,
        reference=reference,
        note=(note or "")[:240],
    )
    db.session.add(txn)
    return txn


def _require_ngn(order: Order) -> None:
    if (order.currency or "").upper() != "NGN":
        raise WrongCurrency(f"Order currency is {order.currency}; wallet escrow handles NGN only")


def lock(order_id, expected_version, actor, settings: MarketSettings) -> Order:
    """Debit the buyer and hold the amount in escrow (CREATED -> IN_ESCROW)."""
    order = load_order(order_id)
    expected = check_version(order, expected_version)
    _require_ngn(order)
    if order.status != OrderStatus.CREATED:
        raise WrongStatus(f"Order must be CREATED to lock funds (is {order.status})")

    amount = int(order.amount_minor or 0)
    wallet = _wallet_for_update(order.buyer_id, create=False)
    balance = int(wallet.balance_minor or 0) if wallet else 0
    if wallet is None or balance < amount:
        raise InsufficientFunds(
            "Insufficient wallet balance",
            extra={"balance_minor": balance, "required_minor": amount},
        )

    split = escrow_fee_split_minor(amount, settings.ngn_fee_bps)
    _post(wallet, direction="debit", amount_minor=amount, kind="escrow_lock", reference=_reference(order))
    db.session.add(
        EscrowLedger(
            order_id=order.id,
            amount_locked_minor=amount,
            fee_minor=split["fee_minor"],
            total_debit_minor=amount,
            fee_bps=split["fee_bps"],
            locked_at=datetime.utcnow(),
        )
    )
    order = transition(order.id, expected, OrderStatus.IN_ESCROW, "wallet checkout", actor)
    logger.info("escrow_locked order_id=%s amount_minor=%s fee_minor=%s", order.id, amount, split["fee_minor"])
    return order


def _ledger_for(order: Order) -> EscrowLedger:
    ledger = EscrowLedger.query.filter_by(order_id=order.id).first()
    if ledger is None:
        raise StateError(f"No escrow ledger entry for order {order.id}", code="LedgerMissing")
    return ledger


def release(order_id, expected_version, actor) -> Order:
    """Credit the seller the locked amount less the platform fee (DELIVERED -> RELEASED)."""
    order = load_order(order_id)
    expected = check_version(order, expected_version)
    _require_ngn(order)
    if order.status != OrderStatus.DELIVERED:
        raise WrongStatus(f"Order must be DELIVERED to release (is {order.status})")

    ledger = _ledger_for(order)
    seller_minor = int(ledger.amount_locked_minor) - int(ledger.fee_minor)
    wallet = _wallet_for_update(order.seller_id, create=True)
    _post(wallet, direction="credit", amount_minor=seller_minor, kind="escrow_release", reference=_reference(order))
    order = transition(order.id, expected, OrderStatus.RELEASED, "escrow released", actor)
    logger.info(
        "escrow_released order_id=%s seller_minor=%s fee_minor=%s",
        order.id,
        seller_minor,
        int(ledger.fee_minor),
    )
    return order


def refund(order_id, expected_version, reason: str, actor) -> Order:
    """Return the full locked amount to the buyer."""
    order = load_order(order_id)
    expected = check_version(order, expected_version)
    _require_ngn(order)
    if order.status not in REFUNDABLE:
        raise WrongStatus(f"Order cannot be refunded from {order.status}")

    ledger = _ledger_for(order)
    amount = int(ledger.amount_locked_minor)
    wallet = _wallet_for_update(order.buyer_id, create=True)
    _post(
        wallet,
        direction="credit",
        amount_minor=amount,
        kind="escrow_refund",
        reference=_reference(order),
        note=reason,
    )
    order = transition(order.id, expected, OrderStatus.REFUNDED, reason or "escrow refunded", actor)
    logger.info("escrow_refunded order_id=%s amount_minor=%s", order.id, amount)
    return order


def fund(user_id: int, amount_minor: int, reference: str, actor=None) -> Wallet:
    """Credit a settled top-up to a wallet. Does not commit."""
    amount = int(amount_minor)
    if amount <= 0:
        raise ValidationError("amount_minor must be positive")
    ref = (reference or "").strip()[:80]
    if not ref:
        raise ValidationError("reference required")
    wallet = _wallet_for_update(user_id, create=True)
    _post(wallet, direction="credit", amount_minor=amount, kind="wallet_funding", reference=ref)
    record_audit(
        "WALLET_FUNDED",
        entity_type="wallet",
        entity_id=int(user_id),
        actor=actor,
        payload={"amount_minor": amount, "reference": ref},
    )
    return wallet


def wallet_view(user_id: int) -> dict:
    wallet = Wallet.query.filter_by(user_id=int(user_id)).first()
    if wallet is None:
        return {"user_id": int(user_id), "balance_minor": 0, "currency": "NGN", "updated_at": None}
    return wallet.to_dict()
