import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from qorinti.database import get_db
from qorinti.dependencies import get_current_admin
from qorinti.models.audit_log import AuditLog
from qorinti.models.enums import PaymentRequestStatus, ReceiptTaskStatus, TransactionStatus
from qorinti.models.user import User
from qorinti.schemas.admin import (
    ApprovePaymentRequest,
    LedgerStatusUpdate,
    ReceiptTaskResponse,
    RejectPaymentRequest,
    TripCommissionCreate,
)
from qorinti.schemas.finance import LedgerResponse, PaymentRequestResponse, TransactionResponse
from qorinti.services import ledger as ledger_service
from qorinti.services import settlement
from qorinti.services.receipts import get_receipt_task_for_payment, list_receipt_tasks, requeue_receipt_task
from qorinti.services.scheduler import schedule_receipt_emission
from qorinti.utils.rate_limit import (
    ADMIN_BULK_RATE_LIMIT,
    ADMIN_RATE_LIMIT,
    ADMIN_RETRY_RATE_LIMIT,
    limiter,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


# --- 1. Review queue ---


@router.get("/payment-requests", response_model=list[PaymentRequestResponse])
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_payment_requests(
    request: Request,
    status_filter: PaymentRequestStatus | None = Query(PaymentRequestStatus.IN_REVIEW, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Payment requests by status, oldest first. Defaults to the pending review queue."""
    return await ledger_service.list_payment_requests_by_status(db, status_filter, limit, offset)


@router.post(
    "/drivers/{driver_id}/payment-requests/{request_id}/approve",
    response_model=PaymentRequestResponse,
)
@limiter.limit(ADMIN_RATE_LIMIT)
async def approve_payment_request(
    request: Request,
    driver_id: uuid.UUID,
    request_id: uuid.UUID,
    body: ApprovePaymentRequest | None = None,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Apply the claim against the driver's debt and queue its receipt.

    The receipt job is only scheduled once the approval is committed.
    """
    admin_note = body.admin_note if body else None
    payment_request = await settlement.approve_payment_request(
        db, driver_id, request_id, admin_note=admin_note, reviewed_by=admin.id
    )
    db.add(AuditLog(
        action="approve_payment_request",
        admin_user_id=admin.id,
        target_driver_id=driver_id,
        detail=admin_note,
        metadata_json={
            "payment_request_id": str(request_id),
            "applied_amount": str(payment_request.applied_amount),
            "debt_before": str(payment_request.debt_before),
            "debt_after": str(payment_request.debt_after),
        },
    ))
    task = await get_receipt_task_for_payment(db, request_id)
    await db.commit()

    if task is not None:
        schedule_receipt_emission(task.id)

    logger.info(
        "payment_request_approved_by_admin",
        payment_request_id=str(request_id),
        admin_id=str(admin.id),
    )
    return payment_request


@router.post(
    "/drivers/{driver_id}/payment-requests/{request_id}/reject",
    response_model=PaymentRequestResponse,
)
@limiter.limit(ADMIN_RATE_LIMIT)
async def reject_payment_request(
    request: Request,
    driver_id: uuid.UUID,
    request_id: uuid.UUID,
    body: RejectPaymentRequest | None = None,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    payment_request = await settlement.reject_payment_request(
        db, driver_id, request_id, reason=reason, reviewed_by=admin.id
    )
    db.add(AuditLog(
        action="reject_payment_request",
        admin_user_id=admin.id,
        target_driver_id=driver_id,
        detail=payment_request.rejection_reason,
        metadata_json={"payment_request_id": str(request_id)},
    ))
    await db.flush()
    return payment_request


# --- 2. Ledger movements ---


@router.get("/drivers/{driver_id}/ledger", response_model=LedgerResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def get_driver_ledger(
    request: Request,
    driver_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.get_ledger(db, driver_id)


@router.post(
    "/drivers/{driver_id}/trip-commissions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(ADMIN_BULK_RATE_LIMIT)
async def charge_trip_commission(
    request: Request,
    driver_id: uuid.UUID,
    body: TripCommissionCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Charge the commission of a trip the client paid to the driver directly."""
    tx = await settlement.charge_trip_commission(
        db, driver_id, body.trip_id, body.gross_amount, rate=body.rate, pending=body.pending
    )
    db.add(AuditLog(
        action="charge_trip_commission",
        admin_user_id=admin.id,
        target_driver_id=driver_id,
        metadata_json={
            "trip_id": body.trip_id,
            "gross_amount": str(tx.gross_amount),
            "commission_amount": str(tx.commission_amount),
            "status": TransactionStatus(tx.status).value,
        },
    ))
    await db.flush()
    return tx


@router.patch("/drivers/{driver_id}/ledger/status", response_model=LedgerResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def set_ledger_status(
    request: Request,
    driver_id: uuid.UUID,
    body: LedgerStatusUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    ledger = await settlement.set_account_status(db, driver_id, body.status)
    db.add(AuditLog(
        action="set_account_status",
        admin_user_id=admin.id,
        target_driver_id=driver_id,
        detail=body.reason,
        metadata_json={"status": body.status.value},
    ))
    await db.flush()
    return ledger


@router.post("/transactions/{transaction_id}/settle", response_model=TransactionResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def settle_transaction(
    request: Request,
    transaction_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    tx = await settlement.settle_transaction(db, transaction_id)
    db.add(AuditLog(
        action="settle_transaction",
        admin_user_id=admin.id,
        target_driver_id=tx.driver_id,
        metadata_json={"transaction_id": str(transaction_id)},
    ))
    await db.flush()
    return tx


@router.post("/transactions/{transaction_id}/void", response_model=TransactionResponse)
@limiter.limit(ADMIN_RATE_LIMIT)
async def void_transaction(
    request: Request,
    transaction_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    tx = await settlement.void_transaction(db, transaction_id)
    db.add(AuditLog(
        action="void_transaction",
        admin_user_id=admin.id,
        target_driver_id=tx.driver_id,
        metadata_json={"transaction_id": str(transaction_id)},
    ))
    await db.flush()
    return tx


# --- 3. Receipt follow-up ---


@router.get("/receipt-tasks", response_model=list[ReceiptTaskResponse])
@limiter.limit(ADMIN_RATE_LIMIT)
async def list_tasks(
    request: Request,
    status_filter: ReceiptTaskStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approved payments whose receipt is pending, failed or done."""
    return await list_receipt_tasks(db, status_filter, limit, offset)


@router.post("/receipt-tasks/{task_id}/retry", response_model=ReceiptTaskResponse)
@limiter.limit(ADMIN_RETRY_RATE_LIMIT)
async def retry_task(
    request: Request,
    task_id: uuid.UUID,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    task = await requeue_receipt_task(db, task_id)
    db.add(AuditLog(
        action="retry_receipt",
        admin_user_id=admin.id,
        target_driver_id=task.driver_id,
        metadata_json={"receipt_task_id": str(task_id)},
    ))
    await db.commit()

    schedule_receipt_emission(task.id)
    return task
