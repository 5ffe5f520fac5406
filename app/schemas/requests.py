from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.common import Pagination
from app.schemas.deliverables import DeliverableOut
from app.schemas.files import RequestFileOut
from app.schemas.payments import PaymentDetailOut


class CreateRequestIn(BaseModel):
    service_id: int
    title: str = Field(min_length=1, max_length=200)
    instructions: str = ""
    academic_level: str = Field(min_length=1)
    deadline: datetime
    notes: Optional[str] = None


class RequestStatusIn(BaseModel):
    status: Literal["IN_PROGRESS", "CLOSED"]


class ServiceBrief(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class RequestOut(BaseModel):
    id: int
    user_id: int
    service_id: int
    title: str
    instructions: str
    academic_level: str
    deadline: datetime
    notes: Optional[str] = None
    status: str
    created_at: datetime
    delivered_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RequestDetailOut(RequestOut):
    service: Optional[ServiceBrief] = None
    payment: Optional[PaymentDetailOut] = None
    files: List[RequestFileOut] = []
    deliverables: List[DeliverableOut] = []
    deliverables_locked: bool = True
    locked_reason: Optional[str] = None


class RequestListOut(BaseModel):
    requests: List[RequestOut]
    pagination: Pagination
