from __future__ import annotations

import logging

import requests

from marketescrow.integrations.messaging.base import MessagingProvider, MessageResult

logger = logging.getLogger(__name__)

TERMII_BASE = "https://api.ng.termii.com/api"


def _map_termii_error(status: int, message: str) -> str:
    msg = (message or "").lower()
    if status in (401, 403):
        return "TERMII_AUTH_FAILED"
    if status == 429:
        return "TERMII_RATE_LIMITED"
    if status in (400, 422):
        if "sender" in msg:
            return "TERMII_INVALID_SENDER"
        return "TERMII_INVALID_RECIPIENT"
    return "TERMII_PROVIDER_DOWN"


class TermiiMessagingProvider(MessagingProvider):
    name = "termii"

    def __init__(self, *, api_key: str, sender_id: str, timeout: float = 12.0):
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        payload = {
            "to": (to or "").strip(),
            "from": self.sender_id,
            "sms": message,
            "type": "plain",
            "channel": "dnd",
            "api_key": self.api_key,
        }
        try:
            r = requests.post(f"{TERMII_BASE}/sms/send", json=payload, timeout=self.timeout)
        except requests.Timeout:
            return MessageResult(ok=False, code="TERMII_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            logger.warning("termii_request_failed reference=%s err=%s", reference, type(e).__name__)
            return MessageResult(ok=False, code="TERMII_PROVIDER_DOWN", message=str(e)[:200])

        try:
            data = r.json() if r.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"payload": data}
        if 200 <= r.status_code < 300:
            return MessageResult(ok=True, code="OK", message="sent", raw=data)
        detail = str(data.get("message") or data.get("error") or "")
        return MessageResult(
            ok=False,
            code=_map_termii_error(r.status_code, detail),
            message=(detail or f"http_{r.status_code}")[:200],
            raw=data,
        )
