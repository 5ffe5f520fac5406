from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from app.schemas.common import Pagination


class ContactIn(BaseModel):
    # presence and format are checked by the contact service
    name: str = ""
    email: str = ""
    subject: str = ""
    message: str = ""


class ContactReceivedOut(BaseModel):
    id: int
    message: str = "Thank you for contacting us. We'll get back to you soon."


class ContactUpdateIn(BaseModel):
    status: Optional[str] = None
    response: Optional[str] = None


class ContactOut(BaseModel):
    id: int
    name: str
    email: str
    subject: str
    message: str
    status: str
    response: Optional[str] = None
    admin_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContactListOut(BaseModel):
    contacts: List[ContactOut]
    pagination: Pagination
