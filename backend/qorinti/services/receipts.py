"""Receipt emission for approved commission payments.

Runs after the approval has committed. A failure here is recorded on the
ReceiptTask and retried with back-off; it never reaches the approval.
"""
import uuid
from datetime import timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qorinti.config import settings
from qorinti.database import async_session
from qorinti.metrics import RECEIPTS_EMITTED
from qorinti.models.driver import Driver
from qorinti.models.enums import DocumentType, ReceiptTaskStatus
from qorinti.models.payment_request import PaymentRequest
from qorinti.models.receipt import Receipt
from qorinti.models.receipt_sequence import ReceiptSequence
from qorinti.models.receipt_task import ReceiptTask
from qorinti.models.user import User
from qorinti.receipts.generator import render_receipt_pdf
from qorinti.services.errors import InvalidStateError, ReceiptEmissionError, ReceiptTaskNotFoundError
from qorinti.services.ledger import dialect_insert
from qorinti.services.storage import upload_file_bytes
from qorinti.utils.clock import utcnow
from qorinti.utils.display_name import get_display_name
from qorinti.utils.money import round2

logger = structlog.get_logger()

NUMBER_WIDTH = 8


def choose_document_type(tax_id: str | None) -> DocumentType:
    """Drivers with a RUC get a factura, everyone else a boleta."""
    if tax_id and tax_id.strip():
        return DocumentType.INVOICE
    return DocumentType.RECEIPT


def series_for(document_type: DocumentType) -> str:
    if document_type == DocumentType.INVOICE:
        return settings.INVOICE_SERIES
    return settings.RECEIPT_SERIES


def payee_document(driver: Driver | None) -> str:
    if driver is None:
        return "-"
    for value in (driver.tax_id, driver.national_id):
        if value and value.strip():
            return value.strip()
    return "-"


def receipt_storage_key(driver_id: uuid.UUID, series_number: str) -> str:
    return f"receipts/{driver_id}/{series_number}.pdf"


async def allocate_series_number(db: AsyncSession, series: str) -> tuple[str, str]:
    """Take the next number of ``series``.

    The counter row stays locked until the caller's transaction ends, so a
    rolled back emission gives its number back.
    Returns ``(number, series_number)``.
    """
    stmt = (
        select(ReceiptSequence)
        .where(ReceiptSequence.series == series)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    sequence = (await db.execute(stmt)).scalar_one_or_none()
    if sequence is None:
        insert = dialect_insert(db)
        await db.execute(
            insert(ReceiptSequence)
            .values(series=series, last_number=0)
            .on_conflict_do_nothing(index_elements=["series"])
        )
        sequence = (await db.execute(stmt)).scalar_one()

    sequence.last_number += 1
    await db.flush()
    number = str(sequence.last_number).zfill(NUMBER_WIDTH)
    return number, f"{series}-{number}"


async def get_receipt_for_payment(db: AsyncSession, payment_request_id: uuid.UUID) -> Receipt | None:
    result = await db.execute(
        select(Receipt).where(Receipt.payment_request_id == payment_request_id)
    )
    return result.scalar_one_or_none()


async def emit_receipt(db: AsyncSession, task: ReceiptTask) -> Receipt:
    """One emission attempt: number, render, upload, index.

    Idempotent per payment request: an existing receipt is returned as-is.

    Raises:
        ReceiptEmissionError: on any failure; nothing is flushed in that case
            except the sequence bump, which the caller's rollback undoes.
    """
    existing = await get_receipt_for_payment(db, task.payment_request_id)
    if existing is not None:
        return existing

    request = await db.get(PaymentRequest, task.payment_request_id)
    if request is None:
        raise ReceiptEmissionError(f"Payment request {task.payment_request_id} not found")

    driver = await db.get(Driver, task.driver_id)
    user = None
    if driver is not None and driver.user_id is not None:
        user = await db.get(User, driver.user_id)

    document_type = choose_document_type(driver.tax_id if driver else None)
    series = series_for(document_type)
    number, series_number = await allocate_series_number(db, series)
    issue_date = utcnow()
    amount = round2(task.amount)

    receipt_data = {
        "document_type": document_type,
        "series_number": series_number,
        "issue_date": issue_date,
        "payee_name": get_display_name(driver, user),
        "payee_document": payee_document(driver),
        "amount": amount,
        "reference": request.reference,
    }

    try:
        pdf_bytes = await render_receipt_pdf(receipt_data)
        pdf_url = await upload_file_bytes(
            pdf_bytes, receipt_storage_key(task.driver_id, series_number), "application/pdf"
        )
    except Exception as exc:
        raise ReceiptEmissionError(
            f"Receipt {series_number} failed: {type(exc).__name__}: {exc}"
        ) from exc

    receipt = Receipt(
        id=uuid.uuid4(),
        payment_request_id=task.payment_request_id,
        driver_id=task.driver_id,
        document_type=document_type,
        series=series,
        number=number,
        series_number=series_number,
        amount=amount,
        issue_date=issue_date,
        pdf_url=pdf_url,
    )
    db.add(receipt)
    await db.flush()
    return receipt


def _backoff(attempts: int) -> timedelta:
    return timedelta(seconds=settings.RECEIPT_RETRY_BASE_SECONDS * 2 ** max(attempts - 1, 0))


async def _load_task(db: AsyncSession, task_id: uuid.UUID) -> ReceiptTask | None:
    result = await db.execute(
        select(ReceiptTask)
        .where(ReceiptTask.id == task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _record_failure(
    session_factory: async_sessionmaker, task_id: uuid.UUID, error: Exception
) -> ReceiptTaskStatus | None:
    try:
        async with session_factory() as db:
            task = await _load_task(db, task_id)
            if task is None:
                return None
            task.attempts += 1
            task.last_error = str(error)[:2000]
            if task.attempts >= settings.RECEIPT_MAX_ATTEMPTS:
                task.status = ReceiptTaskStatus.FAILED
                task.next_attempt_at = None
            else:
                task.next_attempt_at = utcnow() + _backoff(task.attempts)
            status = ReceiptTaskStatus(task.status)
            attempts = task.attempts
            await db.commit()
    except Exception:
        logger.exception("receipt_task_update_failed", task_id=str(task_id))
        return None

    if status == ReceiptTaskStatus.FAILED:
        logger.error("receipt_task_gave_up", task_id=str(task_id), attempts=attempts)
    return status


async def process_receipt_task(
    task_id: uuid.UUID, session_factory: async_sessionmaker | None = None
) -> ReceiptTaskStatus | None:
    """Run one emission attempt for a queued task in its own session.

    Never raises: failures are logged, counted and written back to the task.
    Returns the task status afterwards, or None if the task does not exist.
    """
    factory = session_factory or async_session
    try:
        async with factory() as db:
            task = await _load_task(db, task_id)
            if task is None:
                logger.warning("receipt_task_not_found", task_id=str(task_id))
                return None
            if task.status != ReceiptTaskStatus.PENDING:
                logger.info("receipt_task_skipped", task_id=str(task_id), status=task.status)
                return ReceiptTaskStatus(task.status)

            receipt = await emit_receipt(db, task)
            task.status = ReceiptTaskStatus.DONE
            task.attempts += 1
            task.receipt_id = receipt.id
            task.last_error = None
            task.next_attempt_at = None
            series_number = receipt.series_number
            payment_request_id = task.payment_request_id
            await db.commit()
    except Exception as exc:
        RECEIPTS_EMITTED.labels(status="error").inc()
        logger.exception(
            "receipt_emission_failed",
            task_id=str(task_id),
            error_type=type(exc).__name__,
        )
        return await _record_failure(factory, task_id, exc)

    RECEIPTS_EMITTED.labels(status="success").inc()
    logger.info(
        "receipt_emitted",
        task_id=str(task_id),
        payment_request_id=str(payment_request_id),
        series_number=series_number,
    )
    return ReceiptTaskStatus.DONE


async def due_receipt_task_ids(db: AsyncSession, limit: int) -> list[uuid.UUID]:
    result = await db.execute(
        select(ReceiptTask.id)
        .where(
            ReceiptTask.status == ReceiptTaskStatus.PENDING,
            (ReceiptTask.next_attempt_at.is_(None)) | (ReceiptTask.next_attempt_at <= utcnow()),
        )
        .order_by(ReceiptTask.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_receipt_tasks(
    db: AsyncSession,
    status: ReceiptTaskStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ReceiptTask]:
    stmt = select(ReceiptTask)
    if status is not None:
        stmt = stmt.where(ReceiptTask.status == status)
    stmt = stmt.order_by(ReceiptTask.created_at.desc()).offset(offset).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def requeue_receipt_task(db: AsyncSession, task_id: uuid.UUID) -> ReceiptTask:
    """Give a PENDING or FAILED task a fresh set of attempts, due now."""
    task = await _load_task(db, task_id)
    if task is None:
        raise ReceiptTaskNotFoundError("Receipt task not found")
    if task.status == ReceiptTaskStatus.DONE:
        raise InvalidStateError("Receipt already emitted")
    task.status = ReceiptTaskStatus.PENDING
    task.attempts = 0
    task.next_attempt_at = utcnow()
    await db.flush()
    logger.info("receipt_task_requeued", task_id=str(task_id))
    return task


async def get_receipt_task_for_payment(
    db: AsyncSession, payment_request_id: uuid.UUID
) -> ReceiptTask | None:
    result = await db.execute(
        select(ReceiptTask).where(ReceiptTask.payment_request_id == payment_request_id)
    )
    return result.scalar_one_or_none()
