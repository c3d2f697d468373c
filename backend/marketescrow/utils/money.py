from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

USDC_DECIMALS = 6


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except Exception:
        parsed = 0
    return parsed if parsed > 0 else 0


def money_major_to_minor(amount: float | Decimal | int | str | None) -> int:
    try:
        parsed = Decimal(str(amount or 0))
    except (InvalidOperation, ValueError):
        parsed = Decimal("0")
    minor = (parsed * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return _clamp_minor(int(minor))


def money_minor_to_major(minor: int | None) -> Decimal:
    return (Decimal(int(minor or 0)) / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def bps_minor_half_up(amount_minor: int, bps: int) -> int:
    amt = Decimal(_clamp_minor(amount_minor))
    rate = Decimal(int(max(0, bps)))
    raw = (amt * rate) / Decimal("10000")
    return _clamp_minor(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def escrow_fee_split_minor(amount_minor: int, fee_bps: int) -> dict:
    """Platform fee and seller share of a locked NGN amount.

    ``fee_minor + seller_minor == amount_minor`` always holds.
    """
    amount = _clamp_minor(amount_minor)
    fee = bps_minor_half_up(amount, fee_bps)
    if fee > amount:
        fee = amount
    return {
        "amount_minor": int(amount),
        "fee_bps": int(max(0, fee_bps)),
        "fee_minor": int(fee),
        "seller_minor": int(amount - fee),
    }


def units_to_raw(units: Decimal | int | str | None, decimals: int = USDC_DECIMALS) -> int:
    """Token units to on-chain integer, rounded half-up at ``decimals`` places."""
    try:
        parsed = Decimal(str(units if units is not None else 0))
    except (InvalidOperation, ValueError):
        raise ValueError("invalid token amount")
    if not parsed.is_finite() or parsed < 0:
        raise ValueError("invalid token amount")
    scaled = parsed * (Decimal(10) ** int(decimals))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def raw_to_units(raw: int, decimals: int = USDC_DECIMALS) -> Decimal:
    quantum = Decimal(1).scaleb(-int(decimals))
    return (Decimal(int(raw)) / (Decimal(10) ** int(decimals))).quantize(quantum)


def fee_from_raw(raw: int, bps: int) -> int:
    # floor, matching the escrow contract's integer division
    return int(raw) * int(bps) // 10000
