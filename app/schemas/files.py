from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class RegisterFileIn(BaseModel):
    request_id: int
    storage_path: str = Field(min_length=1)  # from /uploads/presign with kind "file"
    file_name: str = Field(min_length=1)
    file_type: str = "application/octet-stream"
    file_size: int = Field(ge=0)


class RequestFileOut(BaseModel):
    id: int
    request_id: int
    user_id: int
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    created_at: datetime

    class Config:
        from_attributes = True


class RequestFileListOut(BaseModel):
    files: List[RequestFileOut]
