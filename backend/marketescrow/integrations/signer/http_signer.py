from __future__ import annotations

import logging

import requests

from marketescrow.integrations.signer.base import EscrowCall, EscrowSigner, SignerResult

logger = logging.getLogger(__name__)


def _map_signer_error(status: int) -> str:
    if status in (401, 403):
        return "SIGNER_AUTH_FAILED"
    if status == 429:
        return "SIGNER_RATE_LIMITED"
    if status in (400, 409, 422):
        return "SIGNER_REJECTED"
    return "SIGNER_DOWN"


class HttpEscrowSigner(EscrowSigner):
    """Hands escrow calls to an external signing service over HTTPS."""

    name = "http"

    def __init__(self, *, base_url: str, api_key: str, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def submit(self, call: EscrowCall) -> SignerResult:
        headers = {"Authorization": f"Bearer {self.api_key}", "Idempotency-Key": call.reference[:120]}
        try:
            r = requests.post(
                f"{self.base_url}/v1/transactions",
                json=call.to_dict(),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            return SignerResult(ok=False, code="SIGNER_DOWN", message="timeout")
        except requests.RequestException as e:
            logger.warning("signer_request_failed reference=%s err=%s", call.reference, type(e).__name__)
            return SignerResult(ok=False, code="SIGNER_DOWN", message=str(e)[:200])

        try:
            data = r.json() if r.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"payload": data}
        if 200 <= r.status_code < 300:
            tx_hash = str(data.get("tx_hash") or "").strip()
            if not tx_hash.startswith("0x"):
                return SignerResult(ok=False, code="SIGNER_BAD_RESPONSE", message="missing tx_hash", raw=data)
            return SignerResult(ok=True, tx_hash=tx_hash, code="OK", message="submitted", raw=data)
        detail = str(data.get("message") or data.get("error") or f"http_{r.status_code}")
        return SignerResult(ok=False, code=_map_signer_error(r.status_code), message=detail[:200], raw=data)
