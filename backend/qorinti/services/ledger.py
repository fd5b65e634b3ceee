"""Account ledger store, transaction log and payment request queue.

Passive state: reads, the per-driver lock, and live views. Every mutation
lives in qorinti.services.settlement and runs inside ``ledger_lock``.
"""
import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from contextlib import asynccontextmanager
from typing import TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qorinti.config import settings
from qorinti.database import async_session
from qorinti.models.account_ledger import AccountLedger
from qorinti.models.driver import Driver
from qorinti.models.driver_transaction import DriverTransaction
from qorinti.models.enums import PaymentRequestStatus
from qorinti.models.payment_request import PaymentRequest
from qorinti.services.errors import DriverNotFoundError, StorageError

logger = structlog.get_logger()

T = TypeVar("T")


def dialect_insert(db: AsyncSession):
    if db.bind.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


async def ensure_ledger(
    db: AsyncSession, driver_id: uuid.UUID, for_update: bool = False
) -> AccountLedger:
    """Return the driver's ledger, creating a zeroed one if it is missing.

    Uses INSERT .. ON CONFLICT DO NOTHING so two concurrent first accesses
    both end up reading the same row.
    """
    stmt = select(AccountLedger).where(AccountLedger.driver_id == driver_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    ledger = (await db.execute(stmt)).scalar_one_or_none()
    if ledger is not None:
        return ledger

    if await db.get(Driver, driver_id) is None:
        raise DriverNotFoundError(f"Driver {driver_id} not found")

    insert = dialect_insert(db)
    await db.execute(
        insert(AccountLedger)
        .values(driver_id=driver_id)
        .on_conflict_do_nothing(index_elements=["driver_id"])
    )
    ledger = (await db.execute(stmt)).scalar_one()
    logger.info("account_ledger_created", driver_id=str(driver_id))
    return ledger


@asynccontextmanager
async def ledger_lock(db: AsyncSession, driver_id: uuid.UUID) -> AsyncIterator[AccountLedger]:
    """Serialize money movements for one driver.

    Yields the driver's ledger row selected FOR UPDATE. Reads and checks
    done inside the block cannot be invalidated by a concurrent writer for
    the same driver until the surrounding transaction ends. Store failures
    surface as StorageError; domain errors pass through untouched.
    """
    try:
        ledger = await ensure_ledger(db, driver_id, for_update=True)
        yield ledger
        await db.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "ledger_storage_failed",
            driver_id=str(driver_id),
            error_type=type(exc).__name__,
        )
        raise StorageError("Ledger store unavailable, please retry") from exc


async def get_ledger(db: AsyncSession, driver_id: uuid.UUID) -> AccountLedger:
    try:
        return await ensure_ledger(db, driver_id)
    except SQLAlchemyError as exc:
        raise StorageError("Ledger store unavailable, please retry") from exc


async def list_transactions(
    db: AsyncSession, driver_id: uuid.UUID, limit: int | None = None
) -> list[DriverTransaction]:
    limit = limit or settings.TRANSACTIONS_DEFAULT_LIMIT
    result = await db.execute(
        select(DriverTransaction)
        .where(DriverTransaction.driver_id == driver_id)
        .order_by(DriverTransaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_payment_requests(
    db: AsyncSession, driver_id: uuid.UUID, limit: int | None = None
) -> list[PaymentRequest]:
    limit = limit or settings.PAYMENT_REQUESTS_DEFAULT_LIMIT
    result = await db.execute(
        select(PaymentRequest)
        .where(PaymentRequest.driver_id == driver_id)
        .order_by(PaymentRequest.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_payment_requests_by_status(
    db: AsyncSession,
    status: PaymentRequestStatus | None = PaymentRequestStatus.IN_REVIEW,
    limit: int = 50,
    offset: int = 0,
) -> list[PaymentRequest]:
    """Admin review queue, oldest first so claims are handled in arrival order."""
    stmt = select(PaymentRequest)
    if status is not None:
        stmt = stmt.where(PaymentRequest.status == status)
    stmt = stmt.order_by(PaymentRequest.created_at.asc()).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_payment_request(
    db: AsyncSession,
    driver_id: uuid.UUID,
    request_id: uuid.UUID,
    for_update: bool = False,
) -> PaymentRequest | None:
    stmt = select(PaymentRequest).where(
        PaymentRequest.id == request_id,
        PaymentRequest.driver_id == driver_id,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


# --- Live views ---


async def _watch(
    fetch: Callable[[AsyncSession], Awaitable[T]],
    fingerprint: Callable[[T], Hashable],
    session_factory: async_sessionmaker,
    poll_seconds: float,
) -> AsyncIterator[T]:
    """Poll ``fetch`` in a fresh session and yield whenever the result changed.

    The first snapshot is always yielded.
    """
    last: Hashable | None = None
    first = True
    while True:
        async with session_factory() as db:
            snapshot = await fetch(db)
            await db.commit()
        current = fingerprint(snapshot)
        if first or current != last:
            first = False
            last = current
            yield snapshot
        await asyncio.sleep(poll_seconds)


def _ledger_fingerprint(ledger: AccountLedger) -> Hashable:
    return (
        ledger.commission_debt,
        ledger.available_balance,
        ledger.held_balance,
        ledger.status,
        ledger.last_transaction_id,
        ledger.updated_at,
    )


def _rows_fingerprint(rows: list) -> Hashable:
    return tuple((row.id, row.status, row.updated_at) for row in rows)


def watch_ledger(
    driver_id: uuid.UUID,
    session_factory: async_sessionmaker = async_session,
    poll_seconds: float | None = None,
) -> AsyncIterator[AccountLedger]:
    return _watch(
        lambda db: ensure_ledger(db, driver_id),
        _ledger_fingerprint,
        session_factory,
        poll_seconds or settings.LIVE_VIEW_POLL_SECONDS,
    )


def watch_transactions(
    driver_id: uuid.UUID,
    limit: int | None = None,
    session_factory: async_sessionmaker = async_session,
    poll_seconds: float | None = None,
) -> AsyncIterator[list[DriverTransaction]]:
    return _watch(
        lambda db: list_transactions(db, driver_id, limit),
        _rows_fingerprint,
        session_factory,
        poll_seconds or settings.LIVE_VIEW_POLL_SECONDS,
    )


def watch_payment_requests(
    driver_id: uuid.UUID,
    limit: int | None = None,
    session_factory: async_sessionmaker = async_session,
    poll_seconds: float | None = None,
) -> AsyncIterator[list[PaymentRequest]]:
    return _watch(
        lambda db: list_payment_requests(db, driver_id, limit),
        _rows_fingerprint,
        session_factory,
        poll_seconds or settings.LIVE_VIEW_POLL_SECONDS,
    )
