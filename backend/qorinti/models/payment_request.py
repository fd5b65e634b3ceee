import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base
from qorinti.models.enums import PaymentRequestStatus
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class PaymentRequest(Base):
    """A driver's claim that they paid commission off-platform.

    Nothing touches the ledger until an admin approves it.
    """

    __tablename__ = "payment_requests"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_request_amount_positive"),
        Index("ix_payment_request_driver_created", "driver_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[PaymentRequestStatus] = mapped_column(
        String(20), nullable=False, default=PaymentRequestStatus.IN_REVIEW, index=True
    )
    # Populated on approval only
    applied_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    debt_before: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    debt_after: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    applied_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("driver_transactions.id", ondelete="RESTRICT"), nullable=True
    )
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Populated on rejection only
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
