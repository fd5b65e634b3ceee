import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from qorinti.config import settings
from qorinti.models.enums import ReceiptTaskStatus
from qorinti.services.scheduler import (
    JOB_LOCK_PREFIX,
    RETRY_INTERVAL_MINUTES,
    _acquire_scheduler_lock,
    _release_scheduler_lock,
    emit_receipt_job,
    schedule_receipt_emission,
    start_scheduler,
)


def test_schedule_receipt_emission_adds_one_shot_job():
    task_id = uuid.uuid4()
    mock_scheduler = MagicMock()

    with patch("qorinti.services.scheduler.scheduler", mock_scheduler):
        schedule_receipt_emission(task_id)

    args, kwargs = mock_scheduler.add_job.call_args
    assert args[0] is emit_receipt_job
    assert args[1] == "date"
    assert kwargs["args"] == [str(task_id)]
    assert kwargs["id"] == f"emit_receipt_{task_id}"
    assert kwargs["replace_existing"] is True


def test_start_scheduler_registers_retry_job():
    mock_scheduler = MagicMock()

    with patch("qorinti.services.scheduler.scheduler", mock_scheduler):
        start_scheduler()

    job_ids = [call.kwargs["id"] for call in mock_scheduler.add_job.call_args_list]
    assert job_ids == ["retry_pending_receipts"]
    assert mock_scheduler.add_job.call_args.kwargs["minutes"] == RETRY_INTERVAL_MINUTES
    mock_scheduler.add_listener.assert_called_once()
    mock_scheduler.start.assert_called_once()


@pytest.mark.asyncio
async def test_emit_receipt_job_processes_task():
    task_id = str(uuid.uuid4())
    process = AsyncMock(return_value=ReceiptTaskStatus.DONE)

    with patch("qorinti.services.scheduler.process_receipt_task", process):
        await emit_receipt_job(task_id)

    process.assert_awaited_once_with(task_id)


@pytest.mark.asyncio
async def test_emit_receipt_job_skips_when_lock_held():
    process = AsyncMock()

    with (
        patch("qorinti.services.scheduler._acquire_scheduler_lock", AsyncMock(return_value=False)),
        patch("qorinti.services.scheduler.process_receipt_task", process),
    ):
        await emit_receipt_job(str(uuid.uuid4()))

    process.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_job_skips_when_lock_held():
    from qorinti.services.scheduler import retry_pending_receipts

    with patch("qorinti.services.scheduler._acquire_scheduler_lock", AsyncMock(return_value=False)):
        assert await retry_pending_receipts() == 0


@pytest.mark.asyncio
async def test_emit_receipt_job_releases_lock():
    task_id = str(uuid.uuid4())
    release = AsyncMock()

    with (
        patch("qorinti.services.scheduler._acquire_scheduler_lock", AsyncMock(return_value=True)),
        patch("qorinti.services.scheduler._release_scheduler_lock", release),
        patch("qorinti.services.scheduler.process_receipt_task", AsyncMock(return_value=ReceiptTaskStatus.PENDING)),
    ):
        await emit_receipt_job(task_id)

    release.assert_awaited_once_with(f"emit_receipt_{task_id}")


@pytest.mark.asyncio
async def test_emit_receipt_job_releases_lock_on_error():
    release = AsyncMock()

    with (
        patch("qorinti.services.scheduler._acquire_scheduler_lock", AsyncMock(return_value=True)),
        patch("qorinti.services.scheduler._release_scheduler_lock", release),
        patch("qorinti.services.scheduler.process_receipt_task", AsyncMock(side_effect=RuntimeError("boom"))),
        pytest.raises(RuntimeError),
    ):
        await emit_receipt_job(str(uuid.uuid4()))

    release.assert_awaited_once()


@pytest.mark.asyncio
async def test_retry_job_releases_lock_for_next_interval():
    from qorinti.services.scheduler import retry_pending_receipts

    session = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    release = AsyncMock()

    with (
        patch("qorinti.services.scheduler._acquire_scheduler_lock", AsyncMock(return_value=True)),
        patch("qorinti.services.scheduler._release_scheduler_lock", release),
        patch("qorinti.services.scheduler.async_session", return_value=session),
        patch("qorinti.services.scheduler.due_receipt_task_ids", AsyncMock(return_value=["t-1", "t-2"])),
        patch("qorinti.services.scheduler.process_receipt_task", AsyncMock(return_value=ReceiptTaskStatus.DONE)),
    ):
        assert await retry_pending_receipts() == 2

    release.assert_awaited_once_with("retry_pending_receipts")


def _redis_client(**overrides) -> AsyncMock:
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    for name, value in overrides.items():
        setattr(client, name, value)
    return client


@pytest.mark.asyncio
async def test_lock_round_trip_against_redis(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "redis://cache:6379/0")
    client = _redis_client()

    with patch("redis.asyncio.from_url", return_value=client):
        assert await _acquire_scheduler_lock("retry_pending_receipts", ttl=300) is True
        await _release_scheduler_lock("retry_pending_receipts")

    key = f"{JOB_LOCK_PREFIX}retry_pending_receipts"
    client.set.assert_awaited_once_with(key, "1", nx=True, ex=300)
    client.delete.assert_awaited_once_with(key)
    assert client.aclose.await_count == 2


@pytest.mark.asyncio
async def test_lock_held_elsewhere(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "redis://cache:6379/0")
    client = _redis_client(set=AsyncMock(return_value=None))

    with patch("redis.asyncio.from_url", return_value=client):
        assert await _acquire_scheduler_lock("emit_receipt_x", ttl=120) is False


@pytest.mark.asyncio
async def test_unreachable_redis_lets_the_job_run(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "redis://cache:6379/0")
    down = RedisConnectionError("connection refused")
    client = _redis_client(set=AsyncMock(side_effect=down), delete=AsyncMock(side_effect=down))

    with patch("redis.asyncio.from_url", return_value=client):
        assert await _acquire_scheduler_lock("emit_receipt_x") is True
        await _release_scheduler_lock("emit_receipt_x")
