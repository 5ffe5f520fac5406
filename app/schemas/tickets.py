from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.common import Pagination


class TicketIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    category: str = Field(min_length=1)
    priority: Optional[str] = None
    request_id: Optional[int] = None
    content: Optional[str] = None  # first message of the conversation


class TicketUpdateIn(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None


class ReplyIn(BaseModel):
    content: str = Field(min_length=1)


class ReplyOut(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    content: str
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TicketOut(BaseModel):
    id: int
    user_id: int
    request_id: Optional[int] = None
    title: str
    category: str
    priority: str
    status: str
    created_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TicketDetailOut(TicketOut):
    replies: List[ReplyOut] = []


class TicketListOut(BaseModel):
    tickets: List[TicketOut]
    pagination: Pagination
