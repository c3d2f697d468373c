from __future__ import annotations

from marketescrow.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integrations_mode,
)
from marketescrow.integrations.messaging.base import MessagingProvider
from marketescrow.integrations.messaging.mock_provider import MockMessagingProvider
from marketescrow.integrations.messaging.termii_provider import TermiiMessagingProvider

_MOCK_SINGLETON = MockMessagingProvider()


def build_messaging_provider(settings) -> MessagingProvider:
    mode = integrations_mode(settings)
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:sms")

    provider = (getattr(settings, "sms_provider", "mock") or "mock").strip().lower()
    if provider == "mock":
        if mode == "live":
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock sms provider in live mode")
        return _MOCK_SINGLETON

    missing = []
    if not settings.termii_api_key:
        missing.append("TERMII_API_KEY")
    if not settings.termii_sender_id:
        missing.append("TERMII_SENDER_ID")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return TermiiMessagingProvider(api_key=settings.termii_api_key, sender_id=settings.termii_sender_id)


def messaging_health(settings) -> dict:
    mode = integrations_mode(settings)
    missing = []
    if getattr(settings, "sms_provider", "mock") == "termii":
        if not settings.termii_api_key:
            missing.append("TERMII_API_KEY")
        if not settings.termii_sender_id:
            missing.append("TERMII_SENDER_ID")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {
        "status": status,
        "mode": mode,
        "provider": getattr(settings, "sms_provider", "mock"),
        "missing": missing,
    }
