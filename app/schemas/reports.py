from __future__ import annotations

from decimal import Decimal
from typing import Dict

from pydantic import BaseModel


class FinanceSummaryOut(BaseModel):
    currency: str
    total: Decimal
    by_currency: Dict[str, Decimal]
    unconverted: Dict[str, Decimal]
    approved_payments: int
    rates: Dict[str, float]


class FinanceExportOut(BaseModel):
    storage_path: str
    url: str
    rows: int
