from __future__ import annotations

from marketescrow.integrations.messaging.base import MessagingProvider, MessageResult


class MockMessagingProvider(MessagingProvider):
    """Records messages in memory; ``[fail]`` in a message forces a provider failure."""

    name = "mock"

    def __init__(self):
        self.outbox: list[dict] = []

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        if "[fail]" in (message or "").lower():
            return MessageResult(ok=False, code="SMS_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"to": to, "message": message, "reference": reference})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})
