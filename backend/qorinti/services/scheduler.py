# Receipt jobs run on APScheduler. With REDIS_URL set, one-shot emission jobs
# live in a RedisJobStore and outlast a restart; otherwise the in-memory store
# is used. `retry_pending_receipts` picks up whatever a lost job left PENDING.

from datetime import datetime, timezone
from urllib.parse import urlparse

import redis.asyncio as aioredis
import structlog
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from redis.exceptions import RedisError

from qorinti.config import settings
from qorinti.database import async_session
from qorinti.metrics import SCHEDULER_JOB_RUNS
from qorinti.models.enums import ReceiptTaskStatus
from qorinti.services.receipts import due_receipt_task_ids, process_receipt_task

logger = structlog.get_logger()

SCHEDULER_BATCH_SIZE = 20
RETRY_INTERVAL_MINUTES = 1
JOB_LOCK_PREFIX = "qorinti:job_lock:"


def _build_jobstores(redis_url: str) -> dict:
    if not redis_url:
        return {}
    try:
        from apscheduler.jobstores.redis import RedisJobStore

        url = urlparse(redis_url)
        store = RedisJobStore(
            host=url.hostname or "localhost",
            port=url.port or 6379,
            db=int(url.path.lstrip("/") or 0),
            password=url.password,
            ssl=url.scheme == "rediss",
        )
    except Exception as exc:
        logger.warning("scheduler_jobstore_fallback", error=str(exc), store="memory")
        return {}
    logger.info("scheduler_jobstore_ready", store="redis")
    return {"default": store}


scheduler = AsyncIOScheduler(jobstores=_build_jobstores(settings.REDIS_URL))


async def _acquire_scheduler_lock(job_name: str, ttl: int = 300) -> bool:
    """Claim `job_name` across workers (Redis SET NX) until released.

    `ttl` only bounds a lock left behind by a crashed worker. Without Redis,
    or when Redis cannot be reached, every worker runs the job; receipt
    processing is idempotent per task so a double run is harmless.
    """
    if not settings.REDIS_URL:
        return True
    client = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
    try:
        return bool(await client.set(f"{JOB_LOCK_PREFIX}{job_name}", "1", nx=True, ex=ttl))
    except RedisError as exc:
        logger.warning("scheduler_lock_unavailable", job=job_name, error=str(exc))
        return True
    finally:
        await client.aclose()


async def _release_scheduler_lock(job_name: str) -> None:
    if not settings.REDIS_URL:
        return
    client = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
    try:
        await client.delete(f"{JOB_LOCK_PREFIX}{job_name}")
    except RedisError as exc:
        # Expires on its own after the ttl
        logger.warning("scheduler_lock_release_failed", job=job_name, error=str(exc))
    finally:
        await client.aclose()


def _record_run(job_name: str, status: ReceiptTaskStatus | None) -> None:
    SCHEDULER_JOB_RUNS.labels(
        job_name=job_name,
        status="success" if status == ReceiptTaskStatus.DONE else "error",
    ).inc()


def _log_job_error(event) -> None:
    if event.exception:
        logger.error("scheduler_job_failed", job_id=event.job_id, error=str(event.exception))


async def emit_receipt_job(task_id: str) -> None:
    """One-shot job scheduled right after an approval commits."""
    lock_name = f"emit_receipt_{task_id}"
    if not await _acquire_scheduler_lock(lock_name, ttl=120):
        logger.info("emit_receipt_lock_held", task_id=task_id)
        return
    try:
        _record_run("emit_receipt", await process_receipt_task(task_id))
    finally:
        await _release_scheduler_lock(lock_name)


def schedule_receipt_emission(task_id) -> None:
    task_id = str(task_id)
    scheduler.add_job(
        emit_receipt_job,
        "date",
        run_date=datetime.now(timezone.utc),
        args=[task_id],
        id=f"emit_receipt_{task_id}",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    logger.info("receipt_emission_scheduled", task_id=task_id)


async def retry_pending_receipts() -> int:
    """Retry PENDING receipt tasks whose back-off has elapsed.

    At most SCHEDULER_BATCH_SIZE tasks per run, oldest first; the rest wait
    for the next interval. Returns how many tasks were attempted.
    """
    if not await _acquire_scheduler_lock("retry_pending_receipts", ttl=300):
        return 0
    try:
        async with async_session() as db:
            task_ids = await due_receipt_task_ids(db, SCHEDULER_BATCH_SIZE)

        for task_id in task_ids:
            _record_run("retry_pending_receipts", await process_receipt_task(task_id))
    finally:
        await _release_scheduler_lock("retry_pending_receipts")

    if task_ids:
        logger.info("pending_receipts_retried", count=len(task_ids))
    return len(task_ids)


def start_scheduler() -> None:
    scheduler.add_job(
        retry_pending_receipts,
        "interval",
        minutes=RETRY_INTERVAL_MINUTES,
        id="retry_pending_receipts",
        replace_existing=True,
        misfire_grace_time=300,
    )
    scheduler.add_listener(_log_job_error, EVENT_JOB_ERROR)
    scheduler.start()
    logger.info("scheduler_started", retry_interval_minutes=RETRY_INTERVAL_MINUTES)
