from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.config import settings
from app.core.deps import get_blob_store, get_caller, get_db, require_admin
from app.core.s3 import S3Client
from app.schemas.reports import FinanceExportOut, FinanceSummaryOut
from app.services import reports
from app.services.currency import normalize_currency

router = APIRouter(tags=["reports"])


@router.get("/statistics")
def statistics(
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    if caller.is_admin:
        return reports.admin_statistics(
            db, settings.reporting_currency, settings.exchange_rates
        )
    return reports.student_statistics(db, caller.user_id)


@router.get("/reports/finance", response_model=FinanceSummaryOut)
def finance_summary(
    currency: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
):
    target = normalize_currency(currency, settings.reporting_currency)
    total = reports.revenue(db, target, settings.exchange_rates)
    approved = reports.approved_count(db)
    return FinanceSummaryOut(
        currency=total.currency,
        total=total.total,
        by_currency=total.by_currency,
        unconverted=total.unconverted,
        approved_payments=approved,
        rates=settings.exchange_rates,
    )


@router.post("/reports/finance/export", response_model=FinanceExportOut)
def finance_export(
    currency: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_admin),
    s3: S3Client = Depends(get_blob_store),
):
    target = normalize_currency(currency, settings.reporting_currency)
    return reports.export_finance_parquet(db, s3, target, settings.exchange_rates)
