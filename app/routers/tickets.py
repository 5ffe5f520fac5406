from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, get_notifier
from app.models.ticket import Ticket
from app.schemas.common import Pagination
from app.schemas.tickets import (
    ReplyIn,
    ReplyOut,
    TicketDetailOut,
    TicketIn,
    TicketListOut,
    TicketOut,
    TicketUpdateIn,
)
from app.services import tickets as ticket_service
from app.services.notifier import Notifier

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("", response_model=TicketListOut)
def list_tickets(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    q = db.query(Ticket)
    if not caller.is_admin:
        q = q.filter(Ticket.user_id == caller.user_id)
    elif user_id is not None:
        q = q.filter(Ticket.user_id == user_id)

    if status and status != "all":
        q = q.filter(Ticket.status == status)
    if priority and priority != "all":
        q = q.filter(Ticket.priority == priority)
    if category:
        q = q.filter(Ticket.category == category)

    total = q.count()
    items = (
        q.order_by(Ticket.priority_rank.desc(), Ticket.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "tickets": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.post("", response_model=TicketOut, status_code=201)
def create_ticket(
    data: TicketIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    notifier: Notifier = Depends(get_notifier),
):
    return ticket_service.create_ticket(
        db,
        caller,
        title=data.title,
        category=data.category,
        priority=data.priority,
        request_id=data.request_id,
        content=data.content,
        notifier=notifier,
    )


@router.get("/{ticket_id}", response_model=TicketDetailOut)
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return ticket_service.get_ticket(db, caller, ticket_id)


@router.put("/{ticket_id}", response_model=TicketOut)
def update_ticket(
    ticket_id: int,
    data: TicketUpdateIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    notifier: Notifier = Depends(get_notifier),
):
    return ticket_service.update_ticket(
        db,
        caller,
        ticket_id,
        status=data.status,
        priority=data.priority,
        notifier=notifier,
    )


@router.post("/{ticket_id}/replies", response_model=ReplyOut, status_code=201)
def add_reply(
    ticket_id: int,
    data: ReplyIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    notifier: Notifier = Depends(get_notifier),
):
    return ticket_service.add_reply(db, caller, ticket_id, data.content, notifier)
