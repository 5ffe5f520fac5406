from __future__ import annotations

import logging
import re

from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.models.contact import Contact, ContactStatus
from app.services.audit import record_audit
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _required(value: str | None, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationFailed(f"{label} is required")
    return value


def submit_contact(
    db: Session, *, name: str, email: str, subject: str, message: str
) -> Contact:
    """Public contact form; no account needed."""
    name = _required(name, "Name")
    email = _required(email, "Email")
    subject = _required(subject, "Subject")
    message = _required(message, "Message")
    if not _EMAIL_RE.match(email):
        raise ValidationFailed("Invalid email format")

    with unit_of_work(db, "submit_contact"):
        contact = Contact(
            name=name,
            email=email,
            subject=subject,
            message=message,
            status=ContactStatus.PENDING.value,
        )
        db.add(contact)
    logger.info("Contact message #%s received", contact.id)
    return contact


def _get_contact(db: Session, caller: CallerContext, contact_id: int) -> Contact:
    if not caller.is_admin:
        raise Forbidden("Admin role required")
    contact = db.get(Contact, contact_id)
    if not contact:
        raise NotFound("Contact not found")
    return contact


def respond_contact(
    db: Session,
    caller: CallerContext,
    contact_id: int,
    *,
    status: str | None = None,
    response: str | None = None,
) -> Contact:
    contact = _get_contact(db, caller, contact_id)
    try:
        new_status = ContactStatus(status or ContactStatus.RESPONDED.value).value
    except ValueError:
        raise ValidationFailed(f"Unknown contact status: {status!r}")

    with unit_of_work(db, "respond_contact"):
        contact.status = new_status
        if response is not None:
            contact.response = response.strip() or None
        contact.admin_id = caller.user_id
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action=f"UPDATE_CONTACT_STATUS_{new_status}",
            entity_type="CONTACT",
            entity_id=contact.id,
            changes={"status": new_status},
        )
    return contact


def delete_contact(db: Session, caller: CallerContext, contact_id: int) -> None:
    contact = _get_contact(db, caller, contact_id)
    with unit_of_work(db, "delete_contact"):
        db.delete(contact)
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="DELETE_CONTACT",
            entity_type="CONTACT",
            entity_id=contact_id,
        )
    logger.info("Contact message #%s deleted", contact_id)
