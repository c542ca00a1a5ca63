from .base import ResponseBase, ErrorResponse
from .users import UserCreate, UserRead, UserCreated, UserStatusUpdate, SuspensionRead
from .orders import (
    OrderItem,
    OrderCreate,
    OrderRead,
    OrderEventRead,
    AffiliateStatusUpdate,
    PaymentStatusUpdate,
    SettleRequest,
    FreezeRequest,
    ReactivateRequest,
    ProofVerify,
)
from .wallets import (
    WalletRead,
    LedgerMovement,
    WalletTransactionRead,
    PayoutCreate,
    PayoutStatusUpdate,
    PayoutRead,
)
from .proofs import ProofSubmit, ExtractRequest, PrewarmEntry, PrewarmRequest, ExtractionRead
from .admin import AuditLogRead, DeletionCheckRead

__all__ = [
    # Base
    "ResponseBase",
    "ErrorResponse",

    # Users
    "UserCreate",
    "UserRead",
    "UserCreated",
    "UserStatusUpdate",
    "SuspensionRead",

    # Orders
    "OrderItem",
    "OrderCreate",
    "OrderRead",
    "OrderEventRead",
    "AffiliateStatusUpdate",
    "PaymentStatusUpdate",
    "SettleRequest",
    "FreezeRequest",
    "ReactivateRequest",
    "ProofVerify",

    # Wallets
    "WalletRead",
    "LedgerMovement",
    "WalletTransactionRead",
    "PayoutCreate",
    "PayoutStatusUpdate",
    "PayoutRead",

    # Proofs
    "ProofSubmit",
    "ExtractRequest",
    "PrewarmEntry",
    "PrewarmRequest",
    "ExtractionRead",

    # Admin
    "AuditLogRead",
    "DeletionCheckRead",
]
