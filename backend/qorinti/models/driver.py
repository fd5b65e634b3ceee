import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qorinti.database import Base
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class Driver(Base):
    """Driver directory entry.

    Several name columns coexist because drivers were registered by
    different app versions; see utils.display_name for the resolution order.
    """

    __tablename__ = "drivers"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    first_names: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_names: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # RUC (11 digits) makes the driver eligible for a factura
    tax_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # DNI
    national_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    user: Mapped["User | None"] = relationship("User", back_populates="driver", lazy="raise")
