from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.common import Pagination


class SubmitPaymentIn(BaseModel):
    request_id: int
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = None  # falls back to DEFAULT_CURRENCY
    receipt_url: str = Field(min_length=1)
    reference_number: Optional[str] = None  # generated when omitted


class ReviewPaymentIn(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    rejection_reason: Optional[str] = None
    fraud_flagged: Optional[bool] = None
    fraud_notes: Optional[str] = None


class DisputeIn(BaseModel):
    explanation: str


class ResolveDisputeIn(BaseModel):
    approve_payment: bool
    admin_response: str


class DisputeOut(BaseModel):
    id: int
    payment_id: int
    explanation: str
    status: str
    admin_response: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentOut(BaseModel):
    id: int
    request_id: int
    user_id: int
    reference_number: str
    amount: Decimal
    currency: str
    receipt_url: str
    status: str
    rejection_reason: Optional[str] = None
    fraud_flagged: bool
    fraud_notes: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentDetailOut(PaymentOut):
    dispute: Optional[DisputeOut] = None


class PaymentListOut(BaseModel):
    payments: List[PaymentDetailOut]
    pagination: Pagination
