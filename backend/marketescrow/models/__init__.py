from marketescrow.models.user import User
from marketescrow.models.wallet import Wallet, WalletTxn
from marketescrow.models.listing import Listing
from marketescrow.models.order import Order, MILESTONE_COLUMNS
from marketescrow.models.escrow_ledger import EscrowLedger
from marketescrow.models.order_otp import OrderOtp
from marketescrow.models.deliverable import Deliverable
from marketescrow.models.dispute import Dispute
from marketescrow.models.crypto import ChainConfig, CryptoWallet, CryptoEscrow, CryptoIntent
from marketescrow.models.audit_log import AuditLog

__all__ = [
    "User",
    "Wallet",
    "WalletTxn",
    "Listing",
    "Order",
    "MILESTONE_COLUMNS",
    "EscrowLedger",
    "OrderOtp",
    "Deliverable",
    "Dispute",
    "ChainConfig",
    "CryptoWallet",
    "CryptoEscrow",
    "CryptoIntent",
    "AuditLog",
]
