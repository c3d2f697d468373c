from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta

from marketescrow.config import MarketSettings
from marketescrow.errors import (
    Expired,
    ExternalDependencyFailed,
    InvalidOtp,
    NotSeller,
    OtpAlreadyVerified,
    OtpNotFound,
    TooManyAttempts,
    ValidationError,
    WrongStatus,
)
from marketescrow.extensions import db
from marketescrow.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketescrow.integrations.messaging.factory import build_messaging_provider
from marketescrow.models import Order, OrderOtp, User
from marketescrow.services.audit_service import record_audit
from marketescrow.services.order_state import OrderStatus, load_order, transition

logger = logging.getLogger(__name__)

_OTP_RE = re.compile(r"^\d{6}$")


def hash_otp(code: str) -> str:
    return hashlib.sha256((code or "").encode("utf-8")).hexdigest()


def generate_code() -> str:
    return f"{secrets.randbelow(10**6):06d}"


def issue_otp(order: Order, settings: MarketSettings, *, actor=None) -> tuple[OrderOtp, str]:
    """Create or replace the order's OTP. Returns the row and the plaintext code.

    The plaintext is never stored. Does not commit.
    """
    code = generate_code()
    now = datetime.utcnow()
    row = OrderOtp.query.filter_by(order_id=order.id).first()
    if row is None:
        row = OrderOtp(order_id=order.id)
        db.session.add(row)
    row.otp_hash = hash_otp(code)
    row.expires_at = now + timedelta(minutes=int(settings.otp_ttl_minutes))
    row.attempts = 0
    row.verified_at = None
    row.created_at = now
    record_audit(
        "OTP_GENERATED",
        entity_type="order",
        entity_id=order.id,
        actor=actor,
        payload={"expires_at": row.expires_at.isoformat()},
    )
    return row, code


def deliver_otp(order: Order, code: str, settings: MarketSettings) -> dict:
    """Hand the code to the buyer according to ``settings.otp_delivery``."""
    if settings.otp_delivery == "response":
        return {"otp": code, "delivery": "response"}

    buyer = db.session.get(User, int(order.buyer_id))
    phone = (getattr(buyer, "phone", None) or "").strip()
    if not phone:
        raise ValidationError("Buyer phone number required for SMS delivery of the OTP")
    try:
        provider = build_messaging_provider(settings)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        logger.warning("otp_sms_unavailable order_id=%s err=%s", order.id, e)
        raise ExternalDependencyFailed("SMS delivery is not available", extra={"reason": str(e)})
    result = provider.send_delivery_code(to=phone, code=code, order_id=order.id)
    if not result.ok:
        logger.warning("otp_sms_failed order_id=%s code=%s", order.id, result.code)
        raise ExternalDependencyFailed("SMS delivery failed", extra={"provider_code": result.code})
    return {"otp_sent": True, "delivery": "sms"}


def verify_otp(order_id, code, actor, settings: MarketSettings) -> Order:
    """Check a seller-submitted code and mark the order DELIVERED on match.

    A mismatch consumes one attempt; that increment is committed even though
    the call fails.
    """
    submitted = str(code or "").strip()
    if not _OTP_RE.match(submitted):
        raise InvalidOtp("OTP must be 6 digits")

    order = load_order(order_id)
    if int(actor.get("id") or 0) != int(order.seller_id):
        raise NotSeller("Only the seller can verify the delivery code")
    if order.status != OrderStatus.OUT_FOR_DELIVERY:
        raise WrongStatus(f"Order must be OUT_FOR_DELIVERY to verify OTP (is {order.status})")

    row = OrderOtp.query.filter_by(order_id=order.id).first()
    if row is None:
        raise OtpNotFound("No OTP has been generated for this order")
    if row.verified_at is not None:
        raise OtpAlreadyVerified("OTP already verified")
    if row.expires_at and datetime.utcnow() > row.expires_at:
        raise Expired("OTP expired; the buyer must generate a new one")
    if int(row.attempts or 0) >= int(settings.otp_max_attempts):
        raise TooManyAttempts("Too many invalid attempts; the buyer must generate a new code")

    if not hmac.compare_digest(hash_otp(submitted), row.otp_hash or ""):
        row.attempts = int(row.attempts or 0) + 1
        remaining = max(0, int(settings.otp_max_attempts) - int(row.attempts))
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("otp_mismatch order_id=%s attempts=%s", order.id, int(row.attempts))
        raise InvalidOtp("Invalid OTP", extra={"attempts_remaining": remaining})

    try:
        row.verified_at = datetime.utcnow()
        order = transition(order.id, order.version, OrderStatus.DELIVERED, "delivery OTP verified", actor)
        record_audit("OTP_VERIFIED", entity_type="order", entity_id=order.id, actor=actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return order
