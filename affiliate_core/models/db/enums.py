"""Central Enum definitions for core domain states.

Stored values match the strings the portals already exchange, so they are used
verbatim in DB columns, schemas and business logic.
"""
from __future__ import annotations
import enum


class UserRole(str, enum.Enum):
    SHOPPER = "shopper"
    MEDIATOR = "mediator"
    AGENCY = "agency"
    BRAND = "brand"
    ADMIN = "admin"
    OPS = "ops"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class DealType(str, enum.Enum):
    DISCOUNT = "Discount"
    REVIEW = "Review"
    RATING = "Rating"

# ------------------------------ Order Enums ------------------------------ #

class OrderStatus(str, enum.Enum):
    ORDERED = "Ordered"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    REFUNDED = "Refunded"
    FAILED = "Failed"


class AffiliateStatus(str, enum.Enum):
    UNCHECKED = "Unchecked"
    PENDING_COOLING = "Pending_Cooling"
    APPROVED_SETTLED = "Approved_Settled"
    REJECTED = "Rejected"
    FRAUD_ALERT = "Fraud_Alert"
    CAP_EXCEEDED = "Cap_Exceeded"
    FROZEN_DISPUTED = "Frozen_Disputed"


class ProofType(str, enum.Enum):
    ORDER = "order"
    PAYMENT = "payment"
    REVIEW = "review"
    RATING = "rating"
    RETURN_WINDOW = "return_window"

# ----------------------------- Ledger Enums ------------------------------ #

class WalletBucket(str, enum.Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    LOCKED = "locked"


class LedgerDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class PayoutStatus(str, enum.Enum):
    REQUESTED = "requested"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


class SuspensionAction(str, enum.Enum):
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"

__all__ = [
    "UserRole",
    "UserStatus",
    "CampaignStatus",
    "DealType",
    "OrderStatus",
    "PaymentStatus",
    "AffiliateStatus",
    "ProofType",
    "WalletBucket",
    "LedgerDirection",
    "PayoutStatus",
    "SuspensionAction",
]
