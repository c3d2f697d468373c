from __future__ import annotations

from dataclasses import dataclass

DELIVERY_CODE_TEMPLATE = (
    "Your delivery code is {code}. Share it with the seller only when you receive your order."
)


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class MessagingProvider:
    name = "unknown"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        raise NotImplementedError

    def send_delivery_code(self, *, to: str, code: str, order_id: str) -> MessageResult:
        return self.send_sms(
            to=to,
            message=DELIVERY_CODE_TEMPLATE.format(code=code),
            reference=f"otp:{order_id}",
        )
