import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qorinti.database import Base
from qorinti.models.enums import UserRole
from qorinti.models.types import GUID
from qorinti.utils.clock import utcnow


class User(Base):
    """Identity record mirrored from the identity provider.

    The id is the provider's user id; the ledger trusts it as-is.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    driver: Mapped["Driver | None"] = relationship(
        "Driver", back_populates="user", uselist=False, lazy="raise"
    )
