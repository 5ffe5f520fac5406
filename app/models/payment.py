from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNDER_REVIEW = "UNDER_REVIEW"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("requests.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    reference_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    # stored exactly as submitted; conversion happens only when reporting
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    receipt_url: Mapped[str] = mapped_column(String(1000))

    status: Mapped[str] = mapped_column(
        String(32), default=PaymentStatus.PENDING.value, index=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    fraud_flagged: Mapped[bool] = mapped_column(Boolean, default=False)
    fraud_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewed_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    request = relationship("Request", back_populates="payments")
    dispute = relationship("Dispute", back_populates="payment", uselist=False)
