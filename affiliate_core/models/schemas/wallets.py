"""
Pydantic schemas for wallets, ledger movements and payouts.
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import WalletBucket, LedgerDirection, PayoutStatus


class WalletRead(BaseModel):
    id: int
    owner_user_id: int
    currency: str
    available_paise: int
    pending_paise: int
    locked_paise: int
    version: int
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerMovement(BaseModel):
    """Manual credit/debit against one bucket. Amounts are integer paise."""
    amount_paise: int = Field(gt=0, strict=True)
    bucket: WalletBucket = WalletBucket.AVAILABLE
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=200)
    expected_version: Optional[int] = Field(None, ge=1)
    note: Optional[str] = Field(None, max_length=500)


class WalletTransactionRead(BaseModel):
    id: int
    idempotency_key: str
    wallet_id: int
    type: str
    bucket: WalletBucket
    direction: LedgerDirection
    amount_paise: int
    balance_after_paise: int
    order_id: Optional[int]
    payout_id: Optional[int]
    details: Dict[str, Any]

    model_config = ConfigDict(from_attributes=True)


class PayoutCreate(BaseModel):
    beneficiary_user_id: int = Field(gt=0)
    amount_paise: int = Field(gt=0, strict=True)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=200)


class PayoutStatusUpdate(BaseModel):
    status: PayoutStatus
    failure_code: Optional[str] = Field(None, max_length=100)
    provider_ref: Optional[str] = Field(None, max_length=200)


class PayoutRead(BaseModel):
    id: int
    beneficiary_user_id: int
    wallet_id: int
    amount_paise: int
    status: PayoutStatus
    provider_ref: Optional[str]
    failure_code: Optional[str]
    requested_at: Optional[datetime]
    processed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
