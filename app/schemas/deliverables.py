from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.common import Pagination


class CreateDeliverableIn(BaseModel):
    request_id: int
    file_name: str = Field(min_length=1)
    file_url: str = Field(min_length=1)  # s3://bucket/key from /uploads or any URL
    file_type: str = "application/octet-stream"
    file_size: int = Field(default=0, ge=0)
    description: Optional[str] = None


class DeliverableOut(BaseModel):
    id: int
    request_id: int
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DeliverableAccessOut(BaseModel):
    request_id: int
    locked: bool
    reason: Optional[str] = None
    deliverables: List[DeliverableOut]


class DeliverableListOut(BaseModel):
    deliverables: List[DeliverableOut]
    pagination: Pagination
