from __future__ import annotations

from marketescrow.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integrations_mode,
)
from marketescrow.integrations.signer.base import EscrowSigner
from marketescrow.integrations.signer.http_signer import HttpEscrowSigner
from marketescrow.integrations.signer.mock_signer import MockEscrowSigner


def build_escrow_signer(settings) -> EscrowSigner:
    mode = integrations_mode(settings)
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:signer")

    provider = (getattr(settings, "signer_provider", "mock") or "mock").strip().lower()
    if provider == "mock":
        if mode == "live":
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock signer in live mode")
        return MockEscrowSigner()

    missing = []
    if not settings.signer_url:
        missing.append("MARKET_SIGNER_URL")
    if not settings.signer_api_key:
        missing.append("MARKET_SIGNER_API_KEY")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return HttpEscrowSigner(base_url=settings.signer_url, api_key=settings.signer_api_key)
