from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.errors import AccountSuspended, Forbidden, NotFound, ValidationFailed
from app.models.audit import NotificationType
from app.models.request import Request
from app.models.ticket import (
    PRIORITY_RANK,
    Ticket,
    TicketPriority,
    TicketReply,
    TicketStatus,
)
from app.services.audit import record_audit
from app.services.notifier import Notifier
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


def _priority(value: str | None) -> str:
    try:
        return TicketPriority(value or TicketPriority.MEDIUM.value).value
    except ValueError:
        raise ValidationFailed(f"Unknown priority: {value!r}")


def get_ticket(db: Session, caller: CallerContext, ticket_id: int) -> Ticket:
    ticket = db.get(Ticket, ticket_id)
    if not ticket:
        raise NotFound("Ticket not found")
    if not caller.is_admin and ticket.user_id != caller.user_id:
        raise Forbidden("You do not own this ticket")
    return ticket


def create_ticket(
    db: Session,
    caller: CallerContext,
    *,
    title: str,
    category: str,
    priority: str | None = None,
    request_id: int | None = None,
    content: str | None = None,
    notifier: Notifier | None = None,
) -> Ticket:
    if caller.is_suspended:
        raise AccountSuspended(caller.suspended_reason)
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("Title is required")
    if not (category or "").strip():
        raise ValidationFailed("Category is required")
    prio = _priority(priority)

    if request_id is not None:
        req = db.get(Request, request_id)
        if not req:
            raise NotFound("Request not found")
        if not caller.is_admin and req.user_id != caller.user_id:
            raise Forbidden("You do not own this request")

    notifier = notifier or Notifier()
    with unit_of_work(db, "create_ticket", notifier):
        ticket = Ticket(
            user_id=caller.user_id,
            request_id=request_id,
            title=title,
            category=category.strip(),
            priority=prio,
            priority_rank=PRIORITY_RANK[prio],
            status=TicketStatus.OPEN.value,
        )
        db.add(ticket)
        db.flush()

        if content and content.strip():
            db.add(
                TicketReply(
                    ticket_id=ticket.id,
                    user_id=caller.user_id,
                    content=content.strip(),
                    is_admin=caller.is_admin,
                )
            )
            db.flush()

        notifier.notify_admins(
            db,
            type=NotificationType.TICKET_CREATED,
            title="New Support Ticket",
            message=f'A new ticket "{ticket.title}" has been created.',
            link=f"/admin/tickets/{ticket.id}",
        )
        record_audit(
            db,
            user_id=caller.user_id,
            action="CREATE_TICKET",
            entity_type="TICKET",
            entity_id=ticket.id,
        )
    logger.info("Ticket #%s opened by user#%s", ticket.id, caller.user_id)
    return ticket


def update_ticket(
    db: Session,
    caller: CallerContext,
    ticket_id: int,
    *,
    status: str | None = None,
    priority: str | None = None,
    notifier: Notifier | None = None,
) -> Ticket:
    if not caller.is_admin:
        raise Forbidden("Admin role required")
    ticket = db.get(Ticket, ticket_id)
    if not ticket:
        raise NotFound("Ticket not found")

    notifier = notifier or Notifier()
    with unit_of_work(db, "update_ticket", notifier):
        changes: dict[str, str] = {}
        if status is not None:
            try:
                ticket.status = TicketStatus(status).value
            except ValueError:
                raise ValidationFailed(f"Unknown ticket status: {status!r}")
            ticket.resolved_at = (
                datetime.now(timezone.utc)
                if ticket.status in (TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value)
                else None
            )
            changes["status"] = ticket.status
        if priority is not None:
            ticket.priority = _priority(priority)
            ticket.priority_rank = PRIORITY_RANK[ticket.priority]
            changes["priority"] = ticket.priority
        if not changes:
            raise ValidationFailed("Nothing to update")
        db.flush()

        record_audit(
            db,
            user_id=caller.user_id,
            action=f"UPDATE_TICKET_STATUS_{ticket.status}",
            entity_type="TICKET",
            entity_id=ticket.id,
            changes=changes,
        )
        notifier.notify(
            db,
            user_id=ticket.user_id,
            type=NotificationType.TICKET_UPDATED,
            title="Ticket Updated",
            message=f'Your ticket "{ticket.title}" status has been updated to {ticket.status}.',
            link=f"/student/tickets/{ticket.id}",
        )
    return ticket


def add_reply(
    db: Session,
    caller: CallerContext,
    ticket_id: int,
    content: str,
    notifier: Notifier | None = None,
) -> TicketReply:
    if caller.is_suspended:
        raise AccountSuspended(caller.suspended_reason)
    ticket = get_ticket(db, caller, ticket_id)
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Reply cannot be empty")

    notifier = notifier or Notifier()
    with unit_of_work(db, "add_reply", notifier):
        reply = TicketReply(
            ticket_id=ticket.id,
            user_id=caller.user_id,
            content=content,
            is_admin=caller.is_admin,
        )
        db.add(reply)
        # a new message reopens a closed conversation
        if ticket.status == TicketStatus.CLOSED.value:
            ticket.status = TicketStatus.IN_PROGRESS.value
            ticket.resolved_at = None
        db.flush()

        if caller.is_admin:
            notifier.notify(
                db,
                user_id=ticket.user_id,
                type=NotificationType.TICKET_UPDATED,
                title="New Reply on Your Ticket",
                message=f'Admin has replied to your ticket "{ticket.title}".',
                link=f"/student/tickets/{ticket.id}",
            )
        else:
            notifier.notify_admins(
                db,
                type=NotificationType.TICKET_UPDATED,
                title="New Reply on Ticket",
                message=f'Student has replied to ticket "{ticket.title}".',
                link=f"/admin/tickets/{ticket.id}",
            )
    return reply
