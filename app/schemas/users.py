from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from app.schemas.common import Pagination


class SuspendIn(BaseModel):
    is_suspended: bool
    reason: Optional[str] = None


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    is_suspended: bool
    suspended_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserDetailOut(UserOut):
    request_count: int = 0
    payment_count: int = 0
    ticket_count: int = 0


class UserListOut(BaseModel):
    users: List[UserOut]
    pagination: Pagination
