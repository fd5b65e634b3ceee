import uuid
from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qorinti.database import get_db
from qorinti.dependencies import get_current_driver, get_session_factory, get_streaming_driver
from qorinti.models.driver import Driver
from qorinti.models.user import User
from qorinti.schemas.finance import (
    LedgerResponse,
    ManualPaymentCreate,
    PaymentRequestCreate,
    PaymentRequestResponse,
    ReceiptResponse,
    TransactionResponse,
)
from qorinti.services import ledger as ledger_service
from qorinti.services import settlement
from qorinti.services.receipts import get_receipt_for_payment
from qorinti.utils.rate_limit import LIST_RATE_LIMIT, STREAM_RATE_LIMIT, WRITE_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/finance", tags=["finance"])

_transactions_adapter = TypeAdapter(list[TransactionResponse])
_payment_requests_adapter = TypeAdapter(list[PaymentRequestResponse])


def sse_event(payload: bytes | str, event: str) -> str:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    return f"event: {event}\ndata: {payload}\n\n"


def _event_stream(snapshots: AsyncIterator, encode, event: str) -> StreamingResponse:
    async def body():
        async for snapshot in snapshots:
            yield sse_event(encode(snapshot), event)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# --- Ledger ---


@router.get("/ledger", response_model=LedgerResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def get_my_ledger(
    request: Request,
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Current balances and commission debt. Created with zeros on first access."""
    _, driver = current
    return await ledger_service.get_ledger(db, driver.id)


@router.get("/ledger/stream")
@limiter.limit(STREAM_RATE_LIMIT)
async def stream_my_ledger(
    request: Request,
    driver: Driver = Depends(get_streaming_driver),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Server-sent `ledger` events: the current ledger, then every change."""
    return _event_stream(
        ledger_service.watch_ledger(driver.id, session_factory=session_factory),
        lambda ledger: LedgerResponse.model_validate(ledger).model_dump_json(),
        "ledger",
    )


# --- Transactions ---


@router.get("/transactions", response_model=list[TransactionResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_transactions(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Most recent transactions first."""
    _, driver = current
    return await ledger_service.list_transactions(db, driver.id, limit)


@router.get("/transactions/stream")
@limiter.limit(STREAM_RATE_LIMIT)
async def stream_my_transactions(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    driver: Driver = Depends(get_streaming_driver),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return _event_stream(
        ledger_service.watch_transactions(driver.id, limit, session_factory=session_factory),
        lambda rows: _transactions_adapter.dump_json(
            [TransactionResponse.model_validate(row) for row in rows]
        ),
        "transactions",
    )


@router.post(
    "/manual-payments",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(WRITE_RATE_LIMIT)
async def record_manual_payment(
    request: Request,
    body: ManualPaymentCreate,
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Apply a self-service payment immediately. Must not exceed the debt."""
    _, driver = current
    return await settlement.record_manual_payment(
        db, driver.id, body.amount, reference=body.reference, notes=body.notes
    )


# --- Payment requests ---


@router.get("/payment-requests", response_model=list[PaymentRequestResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_payment_requests(
    request: Request,
    limit: int = Query(100, ge=1, le=200),
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    _, driver = current
    return await ledger_service.list_payment_requests(db, driver.id, limit)


@router.get("/payment-requests/stream")
@limiter.limit(STREAM_RATE_LIMIT)
async def stream_my_payment_requests(
    request: Request,
    limit: int = Query(100, ge=1, le=200),
    driver: Driver = Depends(get_streaming_driver),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return _event_stream(
        ledger_service.watch_payment_requests(driver.id, limit, session_factory=session_factory),
        lambda rows: _payment_requests_adapter.dump_json(
            [PaymentRequestResponse.model_validate(row) for row in rows]
        ),
        "payment_requests",
    )


@router.get("/payment-requests/{request_id}", response_model=PaymentRequestResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def get_my_payment_request(
    request: Request,
    request_id: uuid.UUID,
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    _, driver = current
    payment_request = await ledger_service.get_payment_request(db, driver.id, request_id)
    if payment_request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment request not found")
    return payment_request


@router.post(
    "/payment-requests",
    response_model=PaymentRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(WRITE_RATE_LIMIT)
async def submit_payment_request(
    request: Request,
    body: PaymentRequestCreate,
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Declare an off-platform commission payment for admin review."""
    _, driver = current
    return await settlement.submit_payment_request(
        db, driver.id, body.amount, reference=body.reference, notes=body.notes
    )


# --- Receipts ---


@router.get("/receipts/{payment_request_id}", response_model=ReceiptResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def get_my_receipt(
    request: Request,
    payment_request_id: uuid.UUID,
    current: tuple[User, Driver] = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    _, driver = current
    receipt = await get_receipt_for_payment(db, payment_request_id)
    if receipt is None or receipt.driver_id != driver.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return receipt
