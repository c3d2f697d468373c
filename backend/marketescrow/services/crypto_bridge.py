from __future__ import annotations

import logging
import re
from datetime import datetime

from Crypto.Hash import keccak

from marketescrow.config import MarketSettings
from marketescrow.errors import (
    ChainConfigMissing,
    ChainMismatch,
    ExternalDependencyFailed,
    IntentNotFound,
    IntentTransitionInvalid,
    MappingMissing,
    NotBuyer,
    ValidationError,
    WrongCurrency,
    WrongStatus,
)
from marketescrow.extensions import db
from marketescrow.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketescrow.integrations.signer.base import EscrowCall
from marketescrow.integrations.signer.factory import build_escrow_signer
from marketescrow.models import ChainConfig, CryptoEscrow, CryptoIntent, CryptoWallet, Dispute, Order, OrderOtp
from marketescrow.services.audit_service import record_audit
from marketescrow.services.dispute_service import Decision, DisputeStatus
from marketescrow.services.order_service import new_order_from_listing
from marketescrow.services.order_state import DeliveryKind, OrderStatus, load_order, transition
from marketescrow.services.unit_of_work import unit_of_work
from marketescrow.services.wallet_ledger import REFUNDABLE
from marketescrow.utils.money import fee_from_raw, raw_to_units, units_to_raw

logger = logging.getLogger(__name__)

DEPOSIT_METHOD = "deposit(bytes32 orderKey, address seller, uint256 amount)"
RELEASE_METHOD = "release(bytes32 orderKey)"
REFUND_METHOD = "refund(bytes32 orderKey)"

RELEASABLE = (OrderStatus.IN_ESCROW, OrderStatus.DELIVERABLE_UPLOADED, OrderStatus.DELIVERED)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class IntentType:
    DEPOSIT = "DEPOSIT"
    RELEASE = "RELEASE"
    REFUND = "REFUND"

    ALL = (DEPOSIT, RELEASE, REFUND)


class IntentStatus:
    CREATED = "CREATED"
    PROCESSING = "PROCESSING"
    SUBMITTED = "SUBMITTED"
    FAILED = "FAILED"
    CONFIRMED = "CONFIRMED"

    ALL = (CREATED, PROCESSING, SUBMITTED, FAILED, CONFIRMED)
    ALLOWED = {
        CREATED: {CREATED, PROCESSING, SUBMITTED, FAILED, CONFIRMED},
        PROCESSING: {SUBMITTED, FAILED, CONFIRMED},
        SUBMITTED: {CONFIRMED, FAILED},
        FAILED: {CREATED, PROCESSING},
        CONFIRMED: set(),
    }


def order_key(order_id: str) -> str:
    """bytes32 escrow key: keccak256 over the UTF-8 order id."""
    h = keccak.new(digest_bits=256)
    h.update(str(order_id).encode("utf-8"))
    return "0x" + h.hexdigest()


def _active_chain(chain: str | None) -> ChainConfig:
    q = ChainConfig.query.filter_by(active=True)
    name = (chain or "").strip()
    cfg = q.filter_by(chain=name).first() if name else q.order_by(ChainConfig.id.asc()).first()
    if cfg is None:
        raise ChainConfigMissing(f"No active chain config{' for ' + name if name else ''}")
    return cfg


def list_chains() -> list[ChainConfig]:
    return ChainConfig.query.filter_by(active=True).order_by(ChainConfig.chain.asc()).all()


def _mapping(order: Order) -> CryptoEscrow:
    esc = CryptoEscrow.query.filter_by(order_id=order.id).first()
    if esc is None or not esc.order_key:
        raise MappingMissing("Crypto escrow mapping not found for this order")
    return esc


def _require_usdc(order: Order) -> None:
    if (order.currency or "").upper() != "USDC":
        raise WrongCurrency("Not a USDC order")


def set_intent(
    order: Order,
    intent_type: str,
    status: str,
    *,
    chain: str,
    from_wallet: str | None = None,
    to_wallet: str | None = None,
    amount_units=None,
    amount_raw: int | None = None,
    tx_hash: str | None = None,
    failure_reason: str | None = None,
) -> CryptoIntent:
    """Upsert the single intent of ``intent_type`` for an order. Does not commit."""
    row = CryptoIntent.query.filter_by(order_id=order.id, intent_type=intent_type).first()
    now = datetime.utcnow()
    if row is None:
        row = CryptoIntent(order_id=order.id, intent_type=intent_type, status=status, created_at=now)
        db.session.add(row)
    else:
        allowed = IntentStatus.ALLOWED.get(row.status, set())
        if status not in allowed:
            raise IntentTransitionInvalid(f"invalid_intent_transition {intent_type} {row.status}->{status}")
        row.status = status
    row.chain = chain
    if from_wallet is not None:
        row.from_wallet = from_wallet
    if to_wallet is not None:
        row.to_wallet = to_wallet
    if amount_units is not None:
        row.amount_units = amount_units
    if amount_raw is not None:
        row.amount_raw = str(int(amount_raw))
    if tx_hash is not None:
        row.tx_hash = tx_hash
    row.failure_reason = (failure_reason or "")[:500] or None
    row.updated_at = now
    return row


def create_usdc_order(listing_id, buyer_id: int, buyer_wallet: str, *, chain: str | None = None, actor=None) -> tuple[Order, CryptoEscrow, ChainConfig]:
    wallet = (buyer_wallet or "").strip()
    if not _ADDRESS_RE.match(wallet):
        raise ValidationError("buyer_wallet must be a 0x-prefixed 20-byte address")

    with unit_of_work():
        cfg = _active_chain(chain)
        order = new_order_from_listing(listing_id, buyer_id, currency="USDC", actor=actor)
        seller_wallet = CryptoWallet.query.filter_by(user_id=int(order.seller_id), chain=cfg.chain).first()
        if seller_wallet is None:
            raise ValidationError(f"Seller has no wallet on {cfg.chain}", code="SellerWalletMissing")

        key = order_key(order.id)
        esc = CryptoEscrow.query.filter_by(order_id=order.id).first()
        if esc is None:
            esc = CryptoEscrow(order_id=order.id)
            db.session.add(esc)
        esc.order_key = key
        esc.chain = cfg.chain
        esc.buyer_wallet = wallet
        esc.seller_wallet = seller_wallet.address
        esc.token_address = cfg.usdc_address
        esc.escrow_address = cfg.escrow_address
        esc.amount_units = raw_to_units(int(order.amount_minor))
        esc.amount_raw = None
        esc.updated_at = datetime.utcnow()

        record_audit(
            "USDC_ORDER_CREATED",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={
                "order_key": key,
                "buyer_wallet": wallet,
                "seller_wallet": seller_wallet.address,
                "escrow": cfg.escrow_address,
                "usdc": cfg.usdc_address,
                "chain": cfg.chain,
            },
        )
    logger.info("usdc_order_created order_id=%s chain=%s", order.id, cfg.chain)
    return order, esc, cfg


def deposit_intent(order_id, actor, settings: MarketSettings, *, chain: str | None = None) -> dict:
    """Parameters the buyer's wallet needs to fund the escrow contract."""
    with unit_of_work():
        order = load_order(order_id)
        if int(actor.get("id") or 0) != int(order.buyer_id):
            raise NotBuyer("Not your order")
        _require_usdc(order)
        if order.status != OrderStatus.CREATED:
            raise WrongStatus(f"Order must be CREATED to fund the escrow (is {order.status})")
        esc = _mapping(order)
        requested = (chain or "").strip()
        if requested and esc.chain and requested != esc.chain:
            raise ChainMismatch(f"Order escrow is on {esc.chain}, not {requested}")
        cfg = _active_chain(requested or esc.chain)

        amount_raw = units_to_raw(esc.amount_units, settings.usdc_decimals)
        fee_bps = int(settings.usdc_fee_bps)
        buyer_fee_raw = fee_from_raw(amount_raw, fee_bps)
        buyer_total_raw = amount_raw + buyer_fee_raw

        esc.amount_raw = str(amount_raw)
        esc.updated_at = datetime.utcnow()
        set_intent(
            order,
            IntentType.DEPOSIT,
            IntentStatus.CREATED,
            chain=cfg.chain,
            from_wallet=esc.buyer_wallet,
            to_wallet=esc.seller_wallet,
            amount_units=esc.amount_units,
            amount_raw=amount_raw,
        )
        record_audit(
            "USDC_DEPOSIT_INTENT",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"order_key": esc.order_key, "amount_raw": str(amount_raw), "fee_bps": fee_bps},
        )
        payload = {
            "order_id": order.id,
            "order_key": esc.order_key,
            "chain": cfg.chain,
            "chain_id": int(cfg.chain_id),
            "confirmations_required": int(cfg.confirmations_required or 1),
            "rpc_url": cfg.rpc_url or "",
            "escrow_address": cfg.escrow_address,
            "usdc_address": cfg.usdc_address,
            "buyer_wallet": esc.buyer_wallet,
            "seller_wallet": esc.seller_wallet,
            "amount_units": str(esc.amount_units),
            # uint256 values travel as decimal strings
            "amount_raw": str(amount_raw),
            "fee_bps": fee_bps,
            "fee_recipient": settings.usdc_fee_recipient,
            "buyer_fee_raw": str(buyer_fee_raw),
            "buyer_total_raw": str(buyer_total_raw),
            "contract_method": DEPOSIT_METHOD,
        }
    return payload


def release_intent(order_id, actor, *, chain: str | None = None) -> dict:
    with unit_of_work():
        order = load_order(order_id)
        if int(actor.get("id") or 0) != int(order.buyer_id):
            raise NotBuyer("Not your order")
        _require_usdc(order)
        if order.status not in RELEASABLE:
            raise WrongStatus(f"Cannot release from status {order.status}")
        esc = _mapping(order)
        requested = (chain or "").strip()
        if requested and esc.chain and requested != esc.chain:
            raise ChainMismatch(f"Order escrow is on {esc.chain}, not {requested}")
        if order.delivery_kind == DeliveryKind.PHYSICAL:
            otp = OrderOtp.query.filter_by(order_id=order.id).first()
            if otp is None or otp.verified_at is None:
                raise WrongStatus("Delivery OTP not verified", code="OtpNotVerified")

        set_intent(
            order,
            IntentType.RELEASE,
            IntentStatus.CREATED,
            chain=esc.chain,
            from_wallet=esc.buyer_wallet,
            to_wallet=esc.seller_wallet,
            amount_units=esc.amount_units,
            amount_raw=int(esc.amount_raw) if esc.amount_raw else None,
        )
        record_audit(
            "USDC_RELEASE_INTENT",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"order_key": esc.order_key, "chain": esc.chain},
        )
        payload = {
            "order_id": order.id,
            "order_key": esc.order_key,
            "chain": esc.chain,
            "escrow_address": esc.escrow_address,
            "contract_method": RELEASE_METHOD,
            "args": [esc.order_key],
        }
    return payload


def refund_intent(order_id, reason: str, actor, settings: MarketSettings) -> dict:
    """Record a REFUND intent and hand ``refund(orderKey)`` to the escrow signer.

    The PROCESSING state is committed before the signer is called so a crash
    mid-submission leaves a visible trace.
    """
    reason = (reason or "").strip()[:500] or "admin_refund"
    order = load_order(order_id)
    _require_usdc(order)
    if order.status not in REFUNDABLE:
        raise WrongStatus(f"Cannot refund from status {order.status}")
    esc = _mapping(order)
    if not esc.escrow_address:
        raise MappingMissing("Crypto escrow mapping has no escrow address")
    cfg = _active_chain(esc.chain)

    call = EscrowCall(
        chain=cfg.chain,
        chain_id=int(cfg.chain_id),
        escrow_address=esc.escrow_address,
        method=REFUND_METHOD,
        args=[esc.order_key],
        rpc_url=cfg.rpc_url or "",
        reference=f"refund:{order.id}",
    )
    intent_kwargs = {
        "chain": esc.chain,
        "from_wallet": esc.seller_wallet,
        "to_wallet": esc.buyer_wallet,
        "amount_units": esc.amount_units,
        "amount_raw": int(esc.amount_raw) if esc.amount_raw else None,
    }

    try:
        signer = build_escrow_signer(settings)
    except IntegrationDisabledError:
        with unit_of_work():
            set_intent(order, IntentType.REFUND, IntentStatus.CREATED, **intent_kwargs)
            record_audit(
                "USDC_REFUND_REQUESTED",
                entity_type="order",
                entity_id=order.id,
                actor=actor,
                payload={"reason": reason, "order_key": esc.order_key},
            )
        return {"order_id": order.id, "order_key": esc.order_key, "status": IntentStatus.CREATED, "call": call.to_dict()}
    except IntegrationMisconfiguredError as e:
        logger.warning("usdc_refund_signer_misconfigured order_id=%s err=%s", order.id, e)
        raise ExternalDependencyFailed("Escrow signer is misconfigured", extra={"reason": str(e)})

    with unit_of_work():
        set_intent(order, IntentType.REFUND, IntentStatus.PROCESSING, **intent_kwargs)

    result = signer.submit(call)
    if not result.ok:
        with unit_of_work():
            set_intent(
                order,
                IntentType.REFUND,
                IntentStatus.FAILED,
                failure_reason=f"{result.code}: {result.message}",
                **intent_kwargs,
            )
            record_audit(
                "USDC_REFUND_FAILED",
                entity_type="order",
                entity_id=order.id,
                actor=actor,
                payload={"reason": reason, "provider_code": result.code},
            )
        logger.warning("usdc_refund_failed order_id=%s code=%s", order.id, result.code)
        raise ExternalDependencyFailed("Refund transaction failed", extra={"provider_code": result.code})

    with unit_of_work():
        set_intent(order, IntentType.REFUND, IntentStatus.SUBMITTED, tx_hash=result.tx_hash, **intent_kwargs)
        record_audit(
            "USDC_REFUND_SUBMITTED",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"reason": reason, "tx_hash": result.tx_hash, "order_key": esc.order_key},
        )
    logger.info("usdc_refund_submitted order_id=%s signer=%s", order.id, signer.name)
    return {
        "order_id": order.id,
        "order_key": esc.order_key,
        "status": IntentStatus.SUBMITTED,
        "tx_hash": result.tx_hash,
    }


def _settle_dispute(order: Order, decision: str, actor) -> None:
    dispute = Dispute.query.filter_by(order_id=order.id).first()
    if dispute is None or dispute.status not in DisputeStatus.ACTIVE:
        return
    dispute.status = DisputeStatus.RESOLVED
    dispute.resolution = Decision.RESOLUTIONS[decision]
    dispute.resolved_at = datetime.utcnow()
    record_audit(
        f"DISPUTE_RESOLVED_{decision}",
        entity_type="order",
        entity_id=order.id,
        actor=actor,
        payload={"note": "settled on-chain"},
    )


def _apply_confirmation(order: Order, intent_type: str, actor) -> Order:
    if intent_type == IntentType.DEPOSIT:
        return transition(order.id, order.version, OrderStatus.IN_ESCROW, "deposit confirmed on-chain", actor)
    if intent_type == IntentType.RELEASE:
        if order.status != OrderStatus.DELIVERED:
            order = transition(order.id, order.version, OrderStatus.DELIVERED, "release confirmed on-chain", actor)
        order = transition(order.id, order.version, OrderStatus.RELEASED, "release confirmed on-chain", actor)
        _settle_dispute(order, Decision.RELEASE, actor)
        return order
    order = transition(order.id, order.version, OrderStatus.REFUNDED, "refund confirmed on-chain", actor)
    _settle_dispute(order, Decision.REFUND, actor)
    return order


def report_intent_status(
    order_id,
    intent_type: str,
    status: str,
    actor,
    *,
    tx_hash: str | None = None,
    failure_reason: str | None = None,
) -> tuple[CryptoIntent, Order]:
    """Indexer callback: advance an intent and, on CONFIRMED, the bound order transition."""
    itype = (intent_type or "").strip().upper()
    target = (status or "").strip().upper()
    if itype not in IntentType.ALL:
        raise ValidationError(f"intent_type must be one of {', '.join(IntentType.ALL)}")
    if target not in IntentStatus.ALL:
        raise ValidationError(f"status must be one of {', '.join(IntentStatus.ALL)}")
    tx = (tx_hash or "").strip() or None
    if tx is not None and not _TX_HASH_RE.match(tx):
        raise ValidationError("tx_hash must be a 0x-prefixed 32-byte hash")
    if target == IntentStatus.FAILED and not (failure_reason or "").strip():
        raise ValidationError("failure_reason required for FAILED")

    with unit_of_work():
        order = load_order(order_id)
        _require_usdc(order)
        row = CryptoIntent.query.filter_by(order_id=order.id, intent_type=itype).first()
        if row is None:
            raise IntentNotFound(f"No {itype} intent for this order")
        if target in (IntentStatus.SUBMITTED, IntentStatus.CONFIRMED) and not (tx or row.tx_hash):
            raise ValidationError("tx_hash required")
        previous = row.status
        row = set_intent(order, itype, target, chain=row.chain, tx_hash=tx, failure_reason=failure_reason)
        if target == IntentStatus.CONFIRMED:
            order = _apply_confirmation(order, itype, actor)
        record_audit(
            "USDC_INTENT_STATUS",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            payload={"intent_type": itype, "from": previous, "to": target, "tx_hash": row.tx_hash},
        )
    return row, order
