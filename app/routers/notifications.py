from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_caller, get_db, require_admin
from app.models.audit import AuditLog, Notification
from app.schemas.common import Pagination
from app.schemas.notifications import AuditLogListOut, NotificationListOut

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=NotificationListOut)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    q = db.query(Notification).filter(Notification.user_id == caller.user_id)
    total = q.count()
    items = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "notifications": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }


@router.get("/audit-logs", response_model=AuditLogListOut)
def list_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    q = db.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)

    total = q.count()
    items = (
        q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "logs": items,
        "pagination": Pagination.build(page=page, limit=limit, total=total),
    }
