"""Ledger store, transaction log, request queue and live views."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import give_debt
from qorinti.models.account_ledger import AccountLedger
from qorinti.models.driver import Driver
from qorinti.models.driver_transaction import DriverTransaction
from qorinti.models.enums import PaymentRequestStatus, TransactionSource, TransactionStatus
from qorinti.models.payment_request import PaymentRequest
from qorinti.services.errors import DriverNotFoundError, StorageError
from qorinti.services.ledger import (
    ensure_ledger,
    get_ledger,
    get_payment_request,
    ledger_lock,
    list_payment_requests,
    list_payment_requests_by_status,
    list_transactions,
    watch_ledger,
    watch_payment_requests,
    watch_transactions,
)
from qorinti.services.settlement import submit_payment_request


@pytest.mark.asyncio
async def test_ensure_ledger_creates_zeroed_row(db: AsyncSession, driver: Driver):
    ledger = await ensure_ledger(db, driver.id)

    assert ledger.driver_id == driver.id
    assert ledger.commission_debt == Decimal("0.00")
    assert ledger.available_balance == Decimal("0.00")
    assert ledger.held_balance == Decimal("0.00")
    assert ledger.status == "ACTIVE"


@pytest.mark.asyncio
async def test_ensure_ledger_is_idempotent(db: AsyncSession, driver: Driver):
    first = await ensure_ledger(db, driver.id)
    second = await ensure_ledger(db, driver.id)
    third = await ensure_ledger(db, driver.id, for_update=True)

    assert first is second is third
    count = await db.execute(
        select(func.count()).select_from(AccountLedger).where(AccountLedger.driver_id == driver.id)
    )
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_ensure_ledger_unknown_driver(db: AsyncSession):
    with pytest.raises(DriverNotFoundError):
        await ensure_ledger(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_ledger_lock_wraps_store_failures(db: AsyncSession, driver: Driver):
    with pytest.raises(StorageError) as exc_info:
        async with ledger_lock(db, driver.id):
            raise OperationalError("UPDATE account_ledgers", {}, Exception("database is locked"))
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_ledger_lock_flushes_changes(db: AsyncSession, driver: Driver):
    driver_id = driver.id
    async with ledger_lock(db, driver_id) as ledger:
        ledger.last_admin_note = "checked"

    db.expire_all()
    ledger = await get_ledger(db, driver_id)
    assert ledger.last_admin_note == "checked"


def _tx(driver_id: uuid.UUID, trip_id: str, created_at: datetime) -> DriverTransaction:
    return DriverTransaction(
        id=uuid.uuid4(),
        driver_id=driver_id,
        source=TransactionSource.TRIP,
        trip_id=trip_id,
        gross_amount=Decimal("10.00"),
        commission_amount=Decimal("1.50"),
        net_amount=Decimal("8.50"),
        status=TransactionStatus.SETTLED,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_list_transactions_newest_first_and_limited(db: AsyncSession, driver: Driver, other_driver: Driver):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(5):
        db.add(_tx(driver.id, f"trip-{i}", base + timedelta(minutes=i)))
    db.add(_tx(other_driver.id, "trip-other", base + timedelta(hours=1)))
    await db.flush()

    rows = await list_transactions(db, driver.id, limit=3)

    assert [row.trip_id for row in rows] == ["trip-4", "trip-3", "trip-2"]


@pytest.mark.asyncio
async def test_list_payment_requests_newest_first(db: AsyncSession, driver: Driver):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(3):
        db.add(PaymentRequest(
            id=uuid.uuid4(),
            driver_id=driver.id,
            amount=Decimal("5.00"),
            reference=f"OP-{i}",
            created_at=base + timedelta(minutes=i),
        ))
    await db.flush()

    rows = await list_payment_requests(db, driver.id)

    assert [row.reference for row in rows] == ["OP-2", "OP-1", "OP-0"]


@pytest.mark.asyncio
async def test_review_queue_is_oldest_first(db: AsyncSession, driver: Driver, other_driver: Driver):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    db.add(PaymentRequest(
        id=uuid.uuid4(), driver_id=other_driver.id, amount=Decimal("1.00"),
        reference="late", created_at=base + timedelta(hours=2),
    ))
    db.add(PaymentRequest(
        id=uuid.uuid4(), driver_id=driver.id, amount=Decimal("1.00"),
        reference="early", created_at=base,
    ))
    db.add(PaymentRequest(
        id=uuid.uuid4(), driver_id=driver.id, amount=Decimal("1.00"),
        reference="done", status=PaymentRequestStatus.REJECTED, created_at=base,
    ))
    await db.flush()

    queue = await list_payment_requests_by_status(db)
    assert [row.reference for row in queue] == ["early", "late"]

    everything = await list_payment_requests_by_status(db, status=None)
    assert len(everything) == 3


@pytest.mark.asyncio
async def test_get_payment_request_scoped_to_driver(db: AsyncSession, driver: Driver, other_driver: Driver):
    request = await submit_payment_request(db, driver.id, Decimal("5.00"))

    assert (await get_payment_request(db, driver.id, request.id)).id == request.id
    assert await get_payment_request(db, other_driver.id, request.id) is None


# --- Live views ---


@pytest.mark.asyncio
async def test_watch_ledger_yields_first_snapshot_and_changes(db: AsyncSession, driver: Driver, session_factory):
    await give_debt(db, driver.id, "10.00")
    await db.commit()

    stream = watch_ledger(driver.id, session_factory=session_factory, poll_seconds=0.01)
    try:
        first = await stream.__anext__()
        assert first.commission_debt == Decimal("10.00")

        await give_debt(db, driver.id, "5.00")
        await db.commit()

        second = await stream.__anext__()
        assert second.commission_debt == Decimal("15.00")
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_watch_transactions_yields_new_rows(db: AsyncSession, driver: Driver, session_factory):
    await db.commit()

    stream = watch_transactions(driver.id, session_factory=session_factory, poll_seconds=0.01)
    try:
        assert await stream.__anext__() == []

        await give_debt(db, driver.id, "5.00", trip_id="trip-live")
        await db.commit()

        rows = await stream.__anext__()
        assert [row.trip_id for row in rows] == ["trip-live"]
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_watch_payment_requests_reports_status_change(db: AsyncSession, driver: Driver, session_factory):
    request = await submit_payment_request(db, driver.id, Decimal("5.00"))
    await db.commit()

    stream = watch_payment_requests(driver.id, session_factory=session_factory, poll_seconds=0.01)
    try:
        rows = await stream.__anext__()
        assert rows[0].status == PaymentRequestStatus.IN_REVIEW

        request.status = PaymentRequestStatus.REJECTED
        await db.commit()

        rows = await stream.__anext__()
        assert rows[0].status == PaymentRequestStatus.REJECTED
    finally:
        await stream.aclose()
