from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from app.schemas.common import Pagination


class NotificationOut(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListOut(BaseModel):
    notifications: List[NotificationOut]
    pagination: Pagination


class AuditLogOut(BaseModel):
    id: int
    user_id: int
    action: str
    entity_type: str
    entity_id: int
    changes: Optional[dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogListOut(BaseModel):
    logs: List[AuditLogOut]
    pagination: Pagination
