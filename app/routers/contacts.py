from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_db, require_admin
from app.models.contact import Contact
from app.schemas.common import Pagination
from app.schemas.contacts import (
    ContactIn,
    ContactListOut,
    ContactOut,
    ContactReceivedOut,
    ContactUpdateIn,
)
from app.services import contacts as contact_service

router = APIRouter(tags=["contacts"])


@router.post("/contact", response_model=ContactReceivedOut, status_code=201)
def submit_contact(data: ContactIn, db: Session = Depends(get_db)):
    contact = contact_service.submit_contact(
        db,
        name=data.name,
        email=data.email,
        subject=data.subject,
        message=data.message,
    )
    return ContactReceivedOut(id=contact.id)


@router.get("/admin/contacts", response_model=ContactListOut)
def list_contacts(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    q = db.query(Contact)
    if status and status != "all":
        q = q.filter(Contact.status == status)

    total = q.count()
    items = (
        q.order_by(Contact.created_at.desc(), Contact.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "contacts": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.put("/admin/contacts/{contact_id}", response_model=ContactOut)
def update_contact(
    contact_id: int,
    data: ContactUpdateIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    return contact_service.respond_contact(
        db, caller, contact_id, status=data.status, response=data.response
    )


@router.delete("/admin/contacts/{contact_id}", status_code=204)
def delete_contact(
    contact_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    contact_service.delete_contact(db, caller, contact_id)
    return Response(status_code=204)
