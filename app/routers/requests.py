from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, get_engine
from app.core.errors import Forbidden, NotFound
from app.models.request import Request
from app.schemas.common import Pagination
from app.schemas.deliverables import DeliverableAccessOut, DeliverableOut
from app.schemas.files import RequestFileOut
from app.schemas.payments import PaymentDetailOut
from app.schemas.requests import (
    CreateRequestIn,
    RequestDetailOut,
    RequestListOut,
    RequestOut,
    RequestStatusIn,
    ServiceBrief,
)
from app.services.lifecycle import RequestLifecycleEngine, active_payment

router = APIRouter(prefix="/requests", tags=["requests"])


def _detail(
    engine: RequestLifecycleEngine, req: Request, caller: CallerContext
) -> RequestDetailOut:
    gate = engine.deliverable_gate(caller, req)
    payment = active_payment(req)
    base = RequestOut.model_validate(req)
    return RequestDetailOut(
        **base.model_dump(),
        service=ServiceBrief.model_validate(req.service) if req.service else None,
        payment=PaymentDetailOut.model_validate(payment) if payment else None,
        files=[RequestFileOut.model_validate(f) for f in req.files],
        deliverables=[DeliverableOut.model_validate(d) for d in gate.deliverables],
        deliverables_locked=gate.locked,
        locked_reason=gate.reason,
    )


@router.post("", response_model=RequestOut, status_code=201)
def create_request(
    data: CreateRequestIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.create_request(
        caller,
        service_id=data.service_id,
        title=data.title,
        instructions=data.instructions,
        academic_level=data.academic_level,
        deadline=data.deadline,
        notes=data.notes,
    )


@router.get("", response_model=RequestListOut)
def list_requests(
    status: Optional[str] = None,
    search: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    q = db.query(Request)
    if not caller.is_admin:
        q = q.filter(Request.user_id == caller.user_id)
    elif user_id is not None:
        q = q.filter(Request.user_id == user_id)

    if status and status != "all":
        q = q.filter(Request.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Request.title.ilike(like), Request.instructions.ilike(like)))

    total = q.count()
    items = (
        q.order_by(Request.created_at.desc(), Request.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "requests": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.get("/{request_id}", response_model=RequestDetailOut)
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    req = db.get(Request, request_id)
    if not req:
        raise NotFound("Request not found")
    if not caller.is_admin and req.user_id != caller.user_id:
        raise Forbidden("You do not own this request")
    return _detail(engine, req, caller)


@router.put("/{request_id}/status", response_model=RequestOut)
def update_request_status(
    request_id: int,
    data: RequestStatusIn,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    return engine.update_request_status(caller, request_id, data.status)


@router.get("/{request_id}/deliverables", response_model=DeliverableAccessOut)
def request_deliverables(
    request_id: int,
    caller: CallerContext = Depends(get_caller),
    engine: RequestLifecycleEngine = Depends(get_engine),
):
    access = engine.access_deliverables(caller, request_id)
    return DeliverableAccessOut(
        request_id=request_id,
        locked=access.locked,
        reason=access.reason,
        deliverables=[DeliverableOut.model_validate(d) for d in access.deliverables],
    )
