import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base
from qorinti.models.enums import TransactionSource, TransactionStatus
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow

# Trip id the mobile app used to mark commission payments before the
# source column existed. Still emitted in exports for old clients.
COMMISSION_PAYMENT_MARKER = "__PAGO_COMISION__"


class DriverTransaction(Base):
    """Append-only money movement for a driver.

    commission_amount is signed: positive charges debt, negative pays it down.
    """

    __tablename__ = "driver_transactions"
    __table_args__ = (
        CheckConstraint(
            "(source = 'TRIP') = (trip_id IS NOT NULL)",
            name="ck_driver_transaction_trip_id_matches_source",
        ),
        Index("ix_driver_transaction_driver_created", "driver_id", "created_at"),
        Index(
            "uq_driver_transaction_trip_charge",
            "driver_id",
            "trip_id",
            unique=True,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    source: Mapped[TransactionSource] = mapped_column(String(30), nullable=False)
    trip_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[TransactionStatus] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def source_ref(self) -> str:
        """Trip id, or the legacy marker for commission payments."""
        if self.source == TransactionSource.TRIP:
            return self.trip_id
        return COMMISSION_PAYMENT_MARKER
