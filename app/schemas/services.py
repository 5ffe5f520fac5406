from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ServiceIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    slug: Optional[str] = None  # derived from name when omitted
    description: str = ""
    estimated_turnaround: Optional[str] = None
    pricing_note: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    sort_order: int = 0


class ServiceUpdateIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    estimated_turnaround: Optional[str] = None
    pricing_note: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class ServiceOut(BaseModel):
    id: int
    name: str
    slug: str
    description: str
    estimated_turnaround: Optional[str] = None
    pricing_note: Optional[str] = None
    price: Decimal
    is_active: bool
    sort_order: int
    created_at: datetime

    class Config:
        from_attributes = True
