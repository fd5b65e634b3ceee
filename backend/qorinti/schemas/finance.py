import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from qorinti.models.enums import (
    AccountStatus,
    DocumentType,
    PaymentRequestStatus,
    TransactionSource,
    TransactionStatus,
)

MAX_AMOUNT = Decimal("1000000")


class LedgerResponse(BaseModel):
    driver_id: uuid.UUID
    available_balance: Decimal
    held_balance: Decimal
    commission_debt: Decimal
    lifetime_income_total: Decimal
    lifetime_commission_total: Decimal
    status: AccountStatus
    last_transaction_id: uuid.UUID | None
    last_transaction_at: datetime | None
    last_driver_note: str | None
    last_admin_note: str | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: uuid.UUID
    driver_id: uuid.UUID
    source: TransactionSource
    trip_id: str | None
    source_ref: str
    gross_amount: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    reference: str | None
    status: TransactionStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentRequestCreate(BaseModel):
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    reference: str | None = Field(None, max_length=120)
    notes: str | None = Field(None, max_length=1000)


class ManualPaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    reference: str | None = Field(None, max_length=120)
    notes: str | None = Field(None, max_length=1000)


class PaymentRequestResponse(BaseModel):
    id: uuid.UUID
    driver_id: uuid.UUID
    amount: Decimal
    reference: str | None
    notes: str | None
    status: PaymentRequestStatus
    applied_amount: Decimal | None
    debt_before: Decimal | None
    debt_after: Decimal | None
    applied_transaction_id: uuid.UUID | None
    admin_note: str | None
    rejection_reason: str | None
    reviewed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ReceiptResponse(BaseModel):
    id: uuid.UUID
    payment_request_id: uuid.UUID
    document_type: DocumentType
    series: str
    number: str
    series_number: str
    amount: Decimal
    issue_date: datetime
    pdf_url: str

    model_config = {"from_attributes": True}
