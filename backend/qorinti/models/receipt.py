import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base
from qorinti.models.enums import DocumentType
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    payment_request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("payment_requests.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    document_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)
    series: Mapped[str] = mapped_column(String(10), nullable=False)
    number: Mapped[str] = mapped_column(String(20), nullable=False)
    series_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pdf_url: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
