from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from qorinti.database import Base


class ReceiptSequence(Base):
    """Per-series document counter. Row-locked while a number is allocated."""

    __tablename__ = "receipt_sequences"

    series: Mapped[str] = mapped_column(String(10), primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
