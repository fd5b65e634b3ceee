"""Settlement engine: every write to a driver's finances goes through here.

Each operation validates its input before touching the store, then does all
reads, checks and writes inside ``ledger_lock`` for the driver. Functions
flush but never commit; the request session (or job) owns the transaction,
so a failure anywhere rolls back the ledger, the transaction log and the
payment request together.
"""
import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qorinti.config import settings
from qorinti.metrics import (
    MANUAL_PAYMENTS_RECORDED,
    PAYMENT_REQUESTS_REVIEWED,
    PAYMENT_REQUESTS_SUBMITTED,
    TRIP_COMMISSIONS_CHARGED,
)
from qorinti.models.account_ledger import AccountLedger
from qorinti.models.driver_transaction import DriverTransaction
from qorinti.models.enums import (
    AccountStatus,
    PaymentRequestStatus,
    ReceiptTaskStatus,
    TransactionSource,
    TransactionStatus,
)
from qorinti.models.payment_request import PaymentRequest
from qorinti.models.receipt_task import ReceiptTask
from qorinti.services.errors import (
    BusinessRuleError,
    InvalidStateError,
    PaymentRequestNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from qorinti.services.ledger import get_payment_request, ledger_lock
from qorinti.utils.clock import utcnow
from qorinti.utils.money import ZERO, clamp_non_negative, round2, to_decimal
from qorinti.utils.text import clean_optional

logger = structlog.get_logger()


def _positive_amount(amount) -> Decimal:
    try:
        value = round2(amount)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if value <= ZERO:
        raise ValidationError("Amount must be greater than 0")
    return value


def _commission_payment_transaction(
    driver_id: uuid.UUID, amount: Decimal, reference: str | None
) -> DriverTransaction:
    return DriverTransaction(
        id=uuid.uuid4(),
        driver_id=driver_id,
        source=TransactionSource.COMMISSION_PAYMENT,
        trip_id=None,
        gross_amount=ZERO,
        commission_amount=-amount,
        net_amount=ZERO,
        reference=reference,
        status=TransactionStatus.SETTLED,
    )


def _apply_debt_change(
    ledger: AccountLedger,
    new_debt: Decimal,
    tx: DriverTransaction,
    driver_note: str | None = None,
    admin_note: str | None = None,
) -> None:
    ledger.commission_debt = clamp_non_negative(round2(new_debt))
    ledger.last_transaction_id = tx.id
    ledger.last_transaction_at = utcnow()
    if driver_note:
        ledger.last_driver_note = driver_note
    if admin_note:
        ledger.last_admin_note = admin_note


def _book_trip_charge(ledger: AccountLedger, tx: DriverTransaction) -> None:
    """Move a settled trip charge into the debt and the lifetime totals."""
    _apply_debt_change(ledger, round2(ledger.commission_debt) + tx.commission_amount, tx)
    ledger.lifetime_income_total = round2(ledger.lifetime_income_total + tx.gross_amount)
    ledger.lifetime_commission_total = round2(ledger.lifetime_commission_total + tx.commission_amount)


# --- Driver claims ---


async def submit_payment_request(
    db: AsyncSession,
    driver_id: uuid.UUID,
    amount,
    reference: str | None = None,
    notes: str | None = None,
) -> PaymentRequest:
    """Record a driver's claim of an off-platform commission payment.

    The ledger is only created if missing; debt changes on approval.
    """
    value = _positive_amount(amount)

    async with ledger_lock(db, driver_id):
        request = PaymentRequest(
            id=uuid.uuid4(),
            driver_id=driver_id,
            amount=value,
            reference=clean_optional(reference),
            notes=clean_optional(notes),
            status=PaymentRequestStatus.IN_REVIEW,
        )
        db.add(request)

    PAYMENT_REQUESTS_SUBMITTED.inc()
    logger.info(
        "payment_request_submitted",
        driver_id=str(driver_id),
        payment_request_id=str(request.id),
        amount=str(value),
    )
    return request


# --- Admin review ---


async def _load_request_in_review(
    db: AsyncSession, driver_id: uuid.UUID, request_id: uuid.UUID
) -> PaymentRequest:
    request = await get_payment_request(db, driver_id, request_id, for_update=True)
    if request is None:
        raise PaymentRequestNotFoundError("Payment request not found")
    if request.status != PaymentRequestStatus.IN_REVIEW:
        raise InvalidStateError(
            f"Payment request is {PaymentRequestStatus(request.status).value}, not IN_REVIEW"
        )
    return request


async def approve_payment_request(
    db: AsyncSession,
    driver_id: uuid.UUID,
    request_id: uuid.UUID,
    admin_note: str | None = None,
    reviewed_by: uuid.UUID | None = None,
) -> PaymentRequest:
    """Apply an approved claim against the driver's commission debt.

    The applied amount is capped at the debt read under the lock, so a
    claim that overstates the debt (or raced with another payment) can
    never push the debt below zero. A receipt task is queued in the same
    transaction; the caller schedules emission once the commit succeeded.
    """
    admin_note = clean_optional(admin_note)

    async with ledger_lock(db, driver_id) as ledger:
        request = await _load_request_in_review(db, driver_id, request_id)

        debt_before = round2(ledger.commission_debt)
        if debt_before <= ZERO:
            raise BusinessRuleError("Driver has no pending debt to settle")

        requested = round2(request.amount)
        applied = round2(min(requested, debt_before))
        debt_after = clamp_non_negative(round2(debt_before - applied))

        tx = _commission_payment_transaction(driver_id, applied, request.reference)
        db.add(tx)
        # Transaction row must exist before the request references it
        await db.flush()

        _apply_debt_change(ledger, debt_after, tx, driver_note=request.notes, admin_note=admin_note)

        request.status = PaymentRequestStatus.APPROVED
        request.applied_amount = applied
        request.debt_before = debt_before
        request.debt_after = debt_after
        request.applied_transaction_id = tx.id
        request.admin_note = admin_note
        request.reviewed_by = reviewed_by
        request.reviewed_at = utcnow()

        db.add(ReceiptTask(
            id=uuid.uuid4(),
            payment_request_id=request.id,
            driver_id=driver_id,
            amount=applied,
            status=ReceiptTaskStatus.PENDING,
            next_attempt_at=utcnow(),
        ))

    PAYMENT_REQUESTS_REVIEWED.labels(outcome="approved").inc()
    logger.info(
        "payment_request_approved",
        driver_id=str(driver_id),
        payment_request_id=str(request_id),
        requested=str(requested),
        applied=str(applied),
        debt_before=str(debt_before),
        debt_after=str(debt_after),
        transaction_id=str(tx.id),
    )
    return request


async def reject_payment_request(
    db: AsyncSession,
    driver_id: uuid.UUID,
    request_id: uuid.UUID,
    reason: str | None = None,
    reviewed_by: uuid.UUID | None = None,
) -> PaymentRequest:
    """Close a claim without touching the ledger."""
    async with ledger_lock(db, driver_id):
        request = await _load_request_in_review(db, driver_id, request_id)
        request.status = PaymentRequestStatus.REJECTED
        request.rejection_reason = clean_optional(reason)
        request.reviewed_by = reviewed_by
        request.reviewed_at = utcnow()

    PAYMENT_REQUESTS_REVIEWED.labels(outcome="rejected").inc()
    logger.info(
        "payment_request_rejected",
        driver_id=str(driver_id),
        payment_request_id=str(request_id),
    )
    return request


# --- Direct ledger movements ---


async def record_manual_payment(
    db: AsyncSession,
    driver_id: uuid.UUID,
    amount,
    reference: str | None = None,
    notes: str | None = None,
) -> DriverTransaction:
    """Driver self-service payment, applied immediately without review.

    Unlike approvals, the amount is not capped: anything above the debt
    (beyond a one cent tolerance) is refused. No receipt is issued.
    """
    value = _positive_amount(amount)

    async with ledger_lock(db, driver_id) as ledger:
        debt = round2(ledger.commission_debt)
        if debt <= ZERO:
            raise BusinessRuleError("No pending commission debt")
        remaining = round2(debt - value)
        if remaining < -settings.MANUAL_PAYMENT_TOLERANCE:
            raise BusinessRuleError("Amount exceeds pending debt")

        tx = _commission_payment_transaction(driver_id, value, clean_optional(reference))
        db.add(tx)
        _apply_debt_change(ledger, remaining, tx, driver_note=clean_optional(notes))

    MANUAL_PAYMENTS_RECORDED.inc()
    logger.info(
        "manual_payment_recorded",
        driver_id=str(driver_id),
        transaction_id=str(tx.id),
        amount=str(value),
        debt_before=str(debt),
        debt_after=str(ledger.commission_debt),
    )
    return tx


async def charge_trip_commission(
    db: AsyncSession,
    driver_id: uuid.UUID,
    trip_id: str,
    gross_amount,
    rate=None,
    pending: bool = False,
) -> DriverTransaction:
    """Charge the platform commission for a trip the client paid directly.

    One charge per (driver, trip). The debt grows regardless of the
    account status: a blocked driver still owes what they earned. A
    ``pending`` charge leaves the ledger untouched until it is settled;
    voiding it drops the charge.
    """
    trip_id = clean_optional(trip_id)
    if not trip_id:
        raise ValidationError("trip_id is required")
    gross = _positive_amount(gross_amount)
    try:
        rate = to_decimal(rate) if rate is not None else settings.TRIP_COMMISSION_RATE
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if not Decimal("0") < rate <= Decimal("1"):
        raise ValidationError("Commission rate must be in (0, 1]")

    commission = round2(gross * rate)
    net = round2(gross - commission)

    async with ledger_lock(db, driver_id) as ledger:
        existing = await db.execute(
            select(DriverTransaction.id).where(
                DriverTransaction.driver_id == driver_id,
                DriverTransaction.source == TransactionSource.TRIP,
                DriverTransaction.trip_id == trip_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise BusinessRuleError("Commission already charged for this trip")

        tx = DriverTransaction(
            id=uuid.uuid4(),
            driver_id=driver_id,
            source=TransactionSource.TRIP,
            trip_id=trip_id,
            gross_amount=gross,
            commission_amount=commission,
            net_amount=net,
            status=TransactionStatus.PENDING if pending else TransactionStatus.SETTLED,
        )
        db.add(tx)
        if not pending:
            _book_trip_charge(ledger, tx)

    TRIP_COMMISSIONS_CHARGED.inc()
    logger.info(
        "trip_commission_charged",
        driver_id=str(driver_id),
        trip_id=trip_id,
        gross=str(gross),
        commission=str(commission),
        pending=pending,
        debt_after=str(ledger.commission_debt),
    )
    return tx


async def set_account_status(
    db: AsyncSession, driver_id: uuid.UUID, status: AccountStatus
) -> AccountLedger:
    async with ledger_lock(db, driver_id) as ledger:
        previous = ledger.status
        ledger.status = status
    logger.info(
        "account_status_changed",
        driver_id=str(driver_id),
        previous=str(AccountStatus(previous).value),
        status=status.value,
    )
    return ledger


# --- Transaction status ---

ALLOWED_TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.PENDING: {TransactionStatus.SETTLED, TransactionStatus.VOID},
    TransactionStatus.SETTLED: set(),  # Terminal
    TransactionStatus.VOID: set(),  # Terminal
}


async def _transition_transaction(
    db: AsyncSession, transaction_id: uuid.UUID, new: TransactionStatus
) -> DriverTransaction:
    tx = await db.get(DriverTransaction, transaction_id)
    if tx is None:
        raise TransactionNotFoundError("Transaction not found")

    async with ledger_lock(db, tx.driver_id) as ledger:
        await db.refresh(tx)
        current = TransactionStatus(tx.status)
        if new not in ALLOWED_TRANSACTION_TRANSITIONS[current]:
            raise InvalidStateError(f"Cannot transition transaction from '{current.value}' to '{new.value}'")
        tx.status = new
        # Only trip charges are ever created PENDING
        if new == TransactionStatus.SETTLED and tx.source == TransactionSource.TRIP:
            _book_trip_charge(ledger, tx)

    logger.info("transaction_status_changed", transaction_id=str(transaction_id), status=new.value)
    return tx


async def settle_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> DriverTransaction:
    return await _transition_transaction(db, transaction_id, TransactionStatus.SETTLED)


async def void_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> DriverTransaction:
    return await _transition_transaction(db, transaction_id, TransactionStatus.VOID)

