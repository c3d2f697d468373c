from __future__ import annotations

import hashlib

from marketescrow.integrations.signer.base import EscrowCall, EscrowSigner, SignerResult


class MockEscrowSigner(EscrowSigner):
    name = "mock"

    def __init__(self, *, fail_reason: str = ""):
        self.fail_reason = fail_reason
        self.submitted: list[EscrowCall] = []

    def submit(self, call: EscrowCall) -> SignerResult:
        if self.fail_reason:
            return SignerResult(ok=False, code="SIGNER_REJECTED", message=self.fail_reason)
        self.submitted.append(call)
        digest = hashlib.sha256(f"{call.chain}:{call.method}:{call.reference}".encode("utf-8")).hexdigest()
        return SignerResult(ok=True, tx_hash=f"0x{digest}", code="OK", message="mock_submitted")
