from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_blob_store, get_caller, get_db, get_engine
from app.core.errors import AccountSuspended, Forbidden, NotFound
from app.core.s3 import S3Client
from app.models.deliverable import Deliverable
from app.models.payment import Payment, PaymentStatus
from app.models.request import Request
from app.schemas.common import Pagination
from app.schemas.deliverables import (
    CreateDeliverableIn,
    DeliverableListOut,
    DeliverableOut,
)
from app.services.lifecycle import NewDeliverable, RequestLifecycleEngine

router = APIRouter(prefix="/deliverables", tags=["deliverables"])


@router.post("", response_model=DeliverableOut, status_code=201)
def upload_deliverable(
    data: CreateDeliverableIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.upload_deliverable(
        caller,
        data.request_id,
        NewDeliverable(
            file_name=data.file_name,
            file_url=data.file_url,
            file_type=data.file_type,
            file_size=data.file_size,
            description=data.description,
        ),
    )


@router.get("", response_model=DeliverableListOut)
def list_deliverables(
    request_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    if request_id is not None and not caller.is_admin:
        # single request: same gate as the request page
        access = engine.access_deliverables(caller, request_id)
        items = access.deliverables
        total = len(items)
        items = items[(page - 1) * limit : page * limit]
        return {
            "deliverables": items,
            "pagination": Pagination.build(page=page, limit=limit, total=total),
        }

    q = db.query(Deliverable)
    if request_id is not None:
        q = q.filter(Deliverable.request_id == request_id)
    elif not caller.is_admin:
        if caller.is_suspended:
            raise AccountSuspended(caller.suspended_reason)
        # only requests whose payment went through
        unlocked = (
            select(Request.id)
            .join(Payment, Payment.request_id == Request.id)
            .filter(
                Request.user_id == caller.user_id,
                Payment.status == PaymentStatus.APPROVED.value,
            )
        )
        q = q.filter(Deliverable.request_id.in_(unlocked))

    total = q.count()
    items = (
        q.order_by(Deliverable.created_at.desc(), Deliverable.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "deliverables": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.get("/{deliverable_id}/download")
def download_deliverable(
    deliverable_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
    s3: S3Client = Depends(get_blob_store),
):
    deliverable = db.get(Deliverable, deliverable_id)
    if not deliverable:
        raise NotFound("Deliverable not found")

    access = engine.access_deliverables(caller, deliverable.request_id)
    if access.locked:
        raise Forbidden("Deliverables unlock once your payment is approved")

    url = s3.download_url(deliverable.file_url)
    if not url:
        raise NotFound("Deliverable file is missing")
    # 307 keeps the GET method and clients follow it without fuss
    return RedirectResponse(url, status_code=307)
