from __future__ import annotations

import io
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

import pyarrow as pa
import pyarrow.parquet as pq
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.s3 import S3Client
from app.models.deliverable import Deliverable
from app.models.payment import Payment, PaymentStatus
from app.models.request import Request, RequestStatus
from app.models.ticket import Ticket, TicketStatus
from app.models.user import Role, User
from app.services.currency import ConvertedTotal, convert, total_in

logger = logging.getLogger(__name__)


def _count(db: Session, model, *where) -> int:
    return int(db.scalar(select(func.count(model.id)).where(*where)) or 0)


def _approved_amounts(db: Session) -> list[tuple]:
    return db.execute(
        select(Payment.amount, Payment.currency).where(
            Payment.status == PaymentStatus.APPROVED.value
        )
    ).all()


def approved_count(db: Session) -> int:
    return _count(db, Payment, Payment.status == PaymentStatus.APPROVED.value)


def revenue(db: Session, target: str, rates: Mapping[str, float]) -> ConvertedTotal:
    """Approved payments summed in `target`, converted now; stored rows stay untouched."""
    return total_in(((a, c) for a, c in _approved_amounts(db)), target, rates)


def admin_statistics(db: Session, target: str, rates: Mapping[str, float]) -> dict:
    total = revenue(db, target, rates)
    return {
        "total_users": _count(db, User, User.role == Role.STUDENT.value),
        "suspended_users": _count(db, User, User.is_suspended.is_(True)),
        "total_requests": _count(db, Request),
        "in_progress_requests": _count(
            db, Request, Request.status == RequestStatus.IN_PROGRESS.value
        ),
        "total_payments": _count(db, Payment),
        "pending_payments": _count(
            db, Payment, Payment.status == PaymentStatus.PENDING.value
        ),
        "disputed_payments": _count(
            db, Payment, Payment.status == PaymentStatus.UNDER_REVIEW.value
        ),
        "total_deliverables": _count(db, Deliverable),
        "open_tickets": _count(db, Ticket, Ticket.status == TicketStatus.OPEN.value),
        "total_revenue": total.total,
        "revenue_currency": total.currency,
    }


def student_statistics(db: Session, user_id: int) -> dict:
    pending = (
        RequestStatus.CREATED.value,
        RequestStatus.PAYMENT_SUBMITTED.value,
        RequestStatus.PAYMENT_APPROVED.value,
    )
    return {
        "user_requests": _count(db, Request, Request.user_id == user_id),
        "pending_requests": _count(
            db, Request, Request.user_id == user_id, Request.status.in_(pending)
        ),
        "in_progress_requests": _count(
            db,
            Request,
            Request.user_id == user_id,
            Request.status == RequestStatus.IN_PROGRESS.value,
        ),
        "delivered_requests": _count(
            db,
            Request,
            Request.user_id == user_id,
            Request.status == RequestStatus.DELIVERED.value,
        ),
        "user_payments": _count(db, Payment, Payment.user_id == user_id),
        "approved_payments": _count(
            db,
            Payment,
            Payment.user_id == user_id,
            Payment.status == PaymentStatus.APPROVED.value,
        ),
        "pending_payments": _count(
            db,
            Payment,
            Payment.user_id == user_id,
            Payment.status == PaymentStatus.PENDING.value,
        ),
        "user_tickets": _count(db, Ticket, Ticket.user_id == user_id),
        "open_tickets": _count(
            db,
            Ticket,
            Ticket.user_id == user_id,
            Ticket.status == TicketStatus.OPEN.value,
        ),
    }


def finance_rows(db: Session, target: str, rates: Mapping[str, float]) -> list[dict]:
    payments = db.scalars(
        select(Payment)
        .where(Payment.status == PaymentStatus.APPROVED.value)
        .order_by(Payment.id.asc())
    ).all()

    rows = []
    for p in payments:
        converted = convert(p.amount, p.currency, target, rates)
        rows.append(
            {
                "payment_id": int(p.id),
                "request_id": int(p.request_id),
                "user_id": int(p.user_id),
                "reference_number": p.reference_number,
                "amount": str(p.amount),
                "currency": p.currency,
                "converted_amount": (str(converted) if converted is not None else None),
                "converted_currency": target,
                "reviewed_at": (p.reviewed_at.isoformat() if p.reviewed_at else None),
            }
        )
    return rows


def export_finance_parquet(
    db: Session, s3: S3Client, target: str, rates: Mapping[str, float]
) -> dict:
    rows = finance_rows(db, target, rates)
    table = pa.Table.from_pylist(
        rows,
        schema=pa.schema(
            [
                ("payment_id", pa.int64()),
                ("request_id", pa.int64()),
                ("user_id", pa.int64()),
                ("reference_number", pa.string()),
                ("amount", pa.string()),
                ("currency", pa.string()),
                ("converted_amount", pa.string()),
                ("converted_currency", pa.string()),
                ("reviewed_at", pa.string()),
            ]
        ),
    )

    # write parquet into memory
    buf = io.BytesIO()
    pq.write_table(table, buf)
    buf.seek(0)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    object_key = f"finance/payments_{ts}.parquet"
    storage_path = s3.put_bytes(
        bucket=s3.cfg.bucket_exports,
        key=object_key,
        data=buf.read(),
        content_type="application/octet-stream",
    )
    url = s3.presign_get(bucket=s3.cfg.bucket_exports, key=object_key)
    logger.info("Finance export %s written (%d rows)", storage_path, len(rows))
    return {"storage_path": storage_path, "url": url, "rows": len(rows)}
