from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class PresignUploadIn(BaseModel):
    kind: Literal["receipt", "deliverable", "file"]
    request_id: int
    file_name: str
    content_type: str = "application/octet-stream"


class PresignUploadOut(BaseModel):
    upload_url: str
    object_key: str
    bucket: str
    storage_path: str  # pass this as receipt_url / file_url afterwards
    expires_in: int


class UploadOut(BaseModel):
    storage_path: str
    url: Optional[str] = None
    file_name: str
    content_type: str
    size: int
