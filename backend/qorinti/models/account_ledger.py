import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base
from qorinti.models.enums import AccountStatus
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class AccountLedger(Base):
    __tablename__ = "account_ledgers"
    __table_args__ = (
        CheckConstraint("commission_debt >= 0", name="ck_account_ledger_debt_non_negative"),
    )

    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("drivers.id", ondelete="RESTRICT"), primary_key=True
    )
    available_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    held_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    commission_debt: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    lifetime_income_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    lifetime_commission_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[AccountStatus] = mapped_column(String(20), nullable=False, default=AccountStatus.ACTIVE)
    last_transaction_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    last_transaction_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_driver_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
