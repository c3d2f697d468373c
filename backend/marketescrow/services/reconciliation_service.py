from __future__ import annotations

from datetime import datetime

from marketescrow.extensions import db
from marketescrow.models import EscrowLedger, Order, Wallet, WalletTxn
from marketescrow.services.order_state import OrderStatus


def _signed_amount(direction: str, amount_minor: int) -> int:
    if (direction or "").strip().lower() == "debit":
        return -abs(int(amount_minor or 0))
    return abs(int(amount_minor or 0))


def recompute_wallet_balances() -> dict:
    """Compare each stored wallet balance with the sum of its postings."""
    wallets = Wallet.query.order_by(Wallet.user_id.asc()).all()
    drift_items = []
    for wallet in wallets:
        txns = WalletTxn.query.filter_by(wallet_id=int(wallet.id)).all()
        computed = sum(_signed_amount(t.direction, t.amount_minor) for t in txns)
        current = int(wallet.balance_minor or 0)
        if current != computed:
            drift_items.append(
                {
                    "wallet_id": int(wallet.id),
                    "user_id": int(wallet.user_id),
                    "stored_balance_minor": current,
                    "computed_balance_minor": computed,
                    "drift_minor": current - computed,
                }
            )
    return {"wallet_count": len(wallets), "drift_count": len(drift_items), "drift_items": drift_items}


def _posting_total(user_id: int, kind: str, reference: str) -> int:
    rows = WalletTxn.query.filter_by(user_id=int(user_id), kind=kind, reference=reference).all()
    return sum(int(r.amount_minor or 0) for r in rows)


def check_escrow_conservation() -> dict:
    """Every locked order must balance: debit == locked, payout + fee == locked."""
    violations = []
    ledgers = EscrowLedger.query.order_by(EscrowLedger.id.asc()).all()
    for ledger in ledgers:
        order = db.session.get(Order, ledger.order_id)
        if order is None:
            continue
        ref = f"order:{order.id}"
        locked = int(ledger.amount_locked_minor)
        debit = _posting_total(order.buyer_id, "escrow_lock", ref)
        if debit != locked:
            violations.append({"order_id": order.id, "rule": "buyer_debit", "expected": locked, "actual": debit})
        if order.status == OrderStatus.RELEASED:
            paid = _posting_total(order.seller_id, "escrow_release", ref)
            if paid + int(ledger.fee_minor) != locked:
                violations.append(
                    {"order_id": order.id, "rule": "release_split", "expected": locked, "actual": paid + int(ledger.fee_minor)}
                )
        if order.status == OrderStatus.REFUNDED:
            refunded = _posting_total(order.buyer_id, "escrow_refund", ref)
            if refunded != locked:
                violations.append({"order_id": order.id, "rule": "refund", "expected": locked, "actual": refunded})
    return {"ledger_count": len(ledgers), "violation_count": len(violations), "violations": violations}


def reconcile() -> dict:
    wallets = recompute_wallet_balances()
    escrow = check_escrow_conservation()
    return {
        "ok": wallets["drift_count"] == 0 and escrow["violation_count"] == 0,
        "wallets": wallets,
        "escrow": escrow,
        "generated_at": datetime.utcnow().isoformat(),
    }
