import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from qorinti.models.enums import AccountStatus, ReceiptTaskStatus
from qorinti.schemas.finance import MAX_AMOUNT


class ApprovePaymentRequest(BaseModel):
    admin_note: str | None = Field(None, max_length=1000)


class RejectPaymentRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class TripCommissionCreate(BaseModel):
    trip_id: str = Field(min_length=1, max_length=64)
    gross_amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    rate: Decimal | None = Field(None, gt=0, le=1)
    # Held until an admin settles or voids the charge
    pending: bool = False


class LedgerStatusUpdate(BaseModel):
    status: AccountStatus
    reason: str | None = Field(None, max_length=500)


class ReceiptTaskResponse(BaseModel):
    id: uuid.UUID
    payment_request_id: uuid.UUID
    driver_id: uuid.UUID
    amount: Decimal
    status: ReceiptTaskStatus
    attempts: int
    last_error: str | None
    next_attempt_at: datetime | None
    receipt_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}
