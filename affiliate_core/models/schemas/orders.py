"""
Pydantic schemas for orders and their affiliate lifecycle.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import AffiliateStatus, PaymentStatus, ProofType


class OrderItem(BaseModel):
    product_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=500)
    quantity: int = Field(1, ge=1)
    price_paise: int = Field(ge=0)
    commission_paise: Optional[int] = Field(None, ge=0)


class OrderCreate(BaseModel):
    items: List[OrderItem] = Field(min_length=1)
    deal_id: Optional[int] = Field(None, gt=0)
    buyer_name: Optional[str] = Field(None, max_length=200)
    external_order_id: Optional[str] = Field(None, max_length=200)
    screenshots: Dict[str, str] = Field(default_factory=dict, description="proof type -> image reference")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "deal_id": 1,
            "external_order_id": "402-1234567-1234567",
            "items": [{"product_id": "B0C1", "title": "Kettle", "quantity": 1, "price_paise": 149900}],
            "screenshots": {"order": "https://cdn.example.com/proof/order-1.png"}
        }
    })


class OrderRead(BaseModel):
    id: int
    user_id: int
    brand_user_id: Optional[int]
    deal_id: Optional[int]
    mediator_code: Optional[str]
    buyer_name: Optional[str]
    external_order_id: Optional[str]
    items: List[Dict[str, Any]]
    total_paise: int
    affiliate_status: AffiliateStatus
    payment_status: PaymentStatus
    frozen: bool
    frozen_at: Optional[datetime]
    frozen_reason: Optional[str]
    reactivated_at: Optional[datetime]
    screenshots: Dict[str, str]
    verification: Dict[str, Any]
    expected_settlement_at: Optional[datetime]
    settled_at: Optional[datetime]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderEventRead(BaseModel):
    id: int
    order_id: int
    type: str
    actor_user_id: Optional[int]
    details: Dict[str, Any]
    at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class AffiliateStatusUpdate(BaseModel):
    status: AffiliateStatus
    reason: Optional[str] = Field(None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class SettleRequest(BaseModel):
    allow_early: bool = False


class FreezeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ReactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ProofVerify(BaseModel):
    proof_type: ProofType
