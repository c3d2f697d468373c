from __future__ import annotations

import math
import os
from dataclasses import dataclass

DEFAULT_NGN_FEE_BPS = 200
DEFAULT_USDC_FEE_BPS = 50
MAX_USDC_FEE_BPS = 200


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_bps(name: str, default: int, *, maximum: int) -> int:
    """Basis points from env; unparsable or out-of-range values fall back to default."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        value = float(raw)
    except Exception:
        return int(default)
    if not math.isfinite(value) or value < 0 or value > maximum:
        return int(default)
    return int(round(value))


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in choices:
        return raw
    return default


@dataclass(frozen=True)
class MarketSettings:
    env: str = "dev"
    admin_token: str = ""

    ngn_fee_bps: int = DEFAULT_NGN_FEE_BPS
    usdc_fee_bps: int = DEFAULT_USDC_FEE_BPS
    usdc_fee_recipient: str | None = None
    usdc_decimals: int = 6

    otp_ttl_minutes: int = 30
    otp_max_attempts: int = 5
    otp_delivery: str = "response"

    integrations_mode: str = "disabled"
    sms_provider: str = "mock"
    termii_api_key: str = ""
    termii_sender_id: str = ""

    signer_provider: str = "mock"
    signer_url: str = ""
    signer_api_key: str = ""

    @property
    def is_production(self) -> bool:
        return self.env in ("prod", "production")

    def public_dict(self) -> dict:
        return {
            "env": self.env,
            "ngn_fee_bps": int(self.ngn_fee_bps),
            "usdc_fee_bps": int(self.usdc_fee_bps),
            "usdc_decimals": int(self.usdc_decimals),
            "otp_ttl_minutes": int(self.otp_ttl_minutes),
            "otp_max_attempts": int(self.otp_max_attempts),
            "otp_delivery": self.otp_delivery,
            "integrations_mode": self.integrations_mode,
            "signer_provider": self.signer_provider,
        }


def load_settings() -> MarketSettings:
    """Read the environment once; the result is passed explicitly to services."""
    env = (os.getenv("MARKET_ENV") or os.getenv("FLASK_ENV") or "dev").strip().lower()
    is_prod = env in ("prod", "production")

    admin_token = (os.getenv("MARKET_ADMIN_TOKEN") or "").strip()
    if is_prod and len(admin_token) < 24:
        raise RuntimeError("MARKET_ADMIN_TOKEN must be set and at least 24 chars in production")

    recipient = (os.getenv("MARKET_USDC_FEE_RECIPIENT") or "").strip()
    if not recipient.startswith("0x"):
        recipient = ""

    otp_delivery_default = "sms" if is_prod else "response"

    return MarketSettings(
        env=env,
        admin_token=admin_token,
        ngn_fee_bps=_env_bps("MARKET_NGN_FEE_BPS", DEFAULT_NGN_FEE_BPS, maximum=10000),
        usdc_fee_bps=_env_bps("MARKET_USDC_FEE_BPS", DEFAULT_USDC_FEE_BPS, maximum=MAX_USDC_FEE_BPS),
        usdc_fee_recipient=recipient or None,
        usdc_decimals=_env_int("MARKET_USDC_DECIMALS", 6, minimum=0, maximum=18),
        otp_ttl_minutes=_env_int("MARKET_OTP_TTL_MINUTES", 30, minimum=1, maximum=24 * 60),
        otp_max_attempts=_env_int("MARKET_OTP_MAX_ATTEMPTS", 5, minimum=1, maximum=20),
        otp_delivery=_env_choice("MARKET_OTP_DELIVERY", otp_delivery_default, ("response", "sms")),
        integrations_mode=_env_choice("INTEGRATIONS_MODE", "disabled", ("disabled", "sandbox", "live")),
        sms_provider=_env_choice("MARKET_SMS_PROVIDER", "mock", ("mock", "termii")),
        termii_api_key=(os.getenv("TERMII_API_KEY") or "").strip(),
        termii_sender_id=(os.getenv("TERMII_SENDER_ID") or "").strip(),
        signer_provider=_env_choice("MARKET_SIGNER_PROVIDER", "mock", ("mock", "http")),
        signer_url=(os.getenv("MARKET_SIGNER_URL") or "").strip(),
        signer_api_key=(os.getenv("MARKET_SIGNER_API_KEY") or "").strip(),
    )


def resolve_database_url(env: str) -> str:
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'marketescrow.db').replace(os.sep, '/')}"
    return _normalize_database_url(database_url)


def engine_options(database_url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
    return options
