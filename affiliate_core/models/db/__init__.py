from .users import User
from .campaigns import Campaign, Deal
from .orders import Order, OrderEvent
from .wallets import Wallet, WalletTransaction, Payout
from .suspensions import Suspension
from .audit_logs import AuditLog
from .proof_extractions import ProofExtraction

__all__ = [
    "User",
    "Campaign",
    "Deal",
    "Order",
    "OrderEvent",
    "Wallet",
    "WalletTransaction",
    "Payout",
    "Suspension",
    "AuditLog",
    "ProofExtraction",
]
