from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.errors import Forbidden, InvalidState, NotFound, ValidationFailed
from app.models.request import Request
from app.models.service import Service
from app.services.audit import record_audit
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

DEFAULT_CATALOG = [
    {
        "name": "Essay Writing",
        "slug": "essay-writing",
        "description": "Professional essay writing assistance for all academic levels",
        "estimated_turnaround": "3-7 days",
        "pricing_note": "Price depends on word count and complexity",
    },
    {
        "name": "Research Paper Assistance",
        "slug": "research-paper-assistance",
        "description": "Complete research paper support from topic selection to final draft",
        "estimated_turnaround": "1-4 weeks",
        "pricing_note": "Custom pricing based on complexity",
    },
    {
        "name": "Assignment Help",
        "slug": "assignment-help",
        "description": "Assistance with various types of academic assignments",
        "estimated_turnaround": "1-3 days",
        "pricing_note": "Fixed pricing based on assignment type",
    },
    {
        "name": "Dissertation Writing",
        "slug": "dissertation-writing",
        "description": "Comprehensive dissertation and thesis writing services",
        "estimated_turnaround": "2-6 months",
        "pricing_note": "Custom pricing per chapter",
    },
]


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug


def _require_admin(caller: CallerContext) -> None:
    if not caller.is_admin:
        raise Forbidden("Admin role required")


def _validate(fields: dict[str, Any]) -> None:
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationFailed("Service name is required")
    if "slug" in fields and not _SLUG_RE.match(fields["slug"] or ""):
        raise ValidationFailed("Slug must be lowercase words separated by dashes")
    if "price" in fields and fields["price"] is not None and Decimal(fields["price"]) < 0:
        raise ValidationFailed("Price cannot be negative")


def _ensure_slug_free(db: Session, slug: str, exclude_id: int | None = None) -> None:
    q = select(func.count(Service.id)).where(Service.slug == slug)
    if exclude_id is not None:
        q = q.where(Service.id != exclude_id)
    if db.scalar(q):
        raise InvalidState(f"Slug {slug!r} is already in use")


def get_service(db: Session, id_or_slug: str) -> Service:
    service = None
    if str(id_or_slug).isdigit():
        service = db.get(Service, int(id_or_slug))
    if service is None:
        service = db.scalar(select(Service).where(Service.slug == str(id_or_slug)))
    if service is None:
        raise NotFound("Service not found")
    return service


def create_service(db: Session, caller: CallerContext, fields: dict[str, Any]) -> Service:
    _require_admin(caller)
    fields = dict(fields)
    if not fields.get("slug"):
        fields["slug"] = slugify(fields.get("name", ""))
    _validate(fields)
    _ensure_slug_free(db, fields["slug"])

    with unit_of_work(db, "create_service"):
        service = Service(**fields)
        db.add(service)
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="CREATE_SERVICE",
            entity_type="SERVICE",
            entity_id=service.id,
            changes={"slug": service.slug},
        )
    logger.info("Service #%s (%s) created", service.id, service.slug)
    return service


def update_service(
    db: Session, caller: CallerContext, service_id: int, fields: dict[str, Any]
) -> Service:
    _require_admin(caller)
    service = db.get(Service, service_id)
    if not service:
        raise NotFound("Service not found")
    _validate(fields)
    if "slug" in fields and fields["slug"] != service.slug:
        _ensure_slug_free(db, fields["slug"], exclude_id=service.id)

    with unit_of_work(db, "update_service"):
        for key, value in fields.items():
            setattr(service, key, value)
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="UPDATE_SERVICE",
            entity_type="SERVICE",
            entity_id=service.id,
            changes={"fields": sorted(fields)},
        )
    return service


def delete_service(db: Session, caller: CallerContext, service_id: int) -> None:
    """Hard delete, refused while any request still references the service."""
    _require_admin(caller)
    service = db.get(Service, service_id)
    if not service:
        raise NotFound("Service not found")

    in_use = db.scalar(
        select(func.count(Request.id)).where(Request.service_id == service.id)
    )
    if in_use:
        raise InvalidState(
            f"Service has {in_use} request(s); deactivate it instead of deleting"
        )

    with unit_of_work(db, "delete_service"):
        db.delete(service)
        db.flush()
        record_audit(
            db,
            user_id=caller.user_id,
            action="DELETE_SERVICE",
            entity_type="SERVICE",
            entity_id=service_id,
        )
    logger.info("Service #%s deleted", service_id)


def seed_catalog(db: Session) -> None:
    with unit_of_work(db, "seed_catalog"):
        for order, item in enumerate(DEFAULT_CATALOG):
            exists = db.scalar(select(Service).where(Service.slug == item["slug"]))
            if not exists:
                db.add(Service(sort_order=order, is_active=True, **item))
