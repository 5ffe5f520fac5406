from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, get_engine
from app.core.errors import Forbidden, NotFound
from app.models.payment import Payment
from app.schemas.common import Pagination
from app.schemas.payments import (
    DisputeIn,
    DisputeOut,
    PaymentDetailOut,
    PaymentListOut,
    PaymentOut,
    ResolveDisputeIn,
    ReviewPaymentIn,
    SubmitPaymentIn,
)
from app.services.lifecycle import RequestLifecycleEngine

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("", response_model=PaymentListOut)
def list_payments(
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    request_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    q = db.query(Payment)
    if not caller.is_admin:
        q = q.filter(Payment.user_id == caller.user_id)
    elif user_id is not None:
        q = q.filter(Payment.user_id == user_id)

    if status and status != "all":
        q = q.filter(Payment.status == status)
    if request_id is not None:
        q = q.filter(Payment.request_id == request_id)
    if search:
        q = q.filter(Payment.reference_number.ilike(f"%{search.strip()}%"))

    total = q.count()
    items = (
        q.order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "payments": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.post("", response_model=PaymentOut, status_code=201)
def submit_payment(
    data: SubmitPaymentIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.submit_payment(
        caller,
        data.request_id,
        receipt_url=data.receipt_url,
        amount=data.amount,
        currency=data.currency,
        reference_number=data.reference_number,
    )


@router.get("/{payment_id}", response_model=PaymentDetailOut)
def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    payment = db.get(Payment, payment_id)
    if not payment:
        raise NotFound("Payment not found")
    if not caller.is_admin and payment.user_id != caller.user_id:
        raise Forbidden("You do not own this payment")
    return payment


@router.put("/{payment_id}", response_model=PaymentOut)
def review_payment(
    payment_id: int,
    data: ReviewPaymentIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.review_payment(
        caller,
        payment_id,
        data.status,
        rejection_reason=data.rejection_reason,
        fraud_flagged=data.fraud_flagged,
        fraud_notes=data.fraud_notes,
    )


@router.post("/{payment_id}/dispute", response_model=DisputeOut, status_code=201)
def file_dispute(
    payment_id: int,
    data: DisputeIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.file_dispute(caller, payment_id, data.explanation)


@router.put("/{payment_id}/dispute", response_model=DisputeOut)
def resolve_dispute(
    payment_id: int,
    data: ResolveDisputeIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.resolve_dispute(
        caller,
        payment_id,
        approve=data.approve_payment,
        admin_response=data.admin_response,
    )
