from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EscrowCall:
    """One escrow-contract call handed to a signing service."""

    chain: str
    chain_id: int
    escrow_address: str
    method: str
    args: list = field(default_factory=list)
    rpc_url: str = ""
    reference: str = ""

    def to_dict(self) -> dict:
        return {
            "chain": self.chain,
            "chain_id": int(self.chain_id),
            "escrow_address": self.escrow_address,
            "method": self.method,
            "args": list(self.args),
            "rpc_url": self.rpc_url,
            "reference": self.reference,
        }


@dataclass
class SignerResult:
    ok: bool
    tx_hash: str = ""
    code: str = ""
    message: str = ""
    raw: dict | None = None


class EscrowSigner:
    name = "unknown"

    def submit(self, call: EscrowCall) -> SignerResult:
        raise NotImplementedError
