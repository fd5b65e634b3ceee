"""Follow-up queue for receipt emission.

A task is inserted in the same transaction that approves a payment request,
so an approved-but-unreceipted payment is always visible here.
"""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base
from qorinti.models.enums import ReceiptTaskStatus
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class ReceiptTask(Base):
    __tablename__ = "receipt_tasks"
    __table_args__ = (
        Index("ix_receipt_task_status_next_attempt", "status", "next_attempt_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    payment_request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("payment_requests.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[ReceiptTaskStatus] = mapped_column(
        String(20), nullable=False, default=ReceiptTaskStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    receipt_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("receipts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
