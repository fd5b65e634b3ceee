"""Tests for the /health endpoint and the ledger error mapping."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient

from qorinti.main import ledger_error_status
from qorinti.services.errors import (
    BusinessRuleError,
    DriverNotFoundError,
    InvalidStateError,
    LedgerError,
    PaymentRequestNotFoundError,
    ReceiptEmissionError,
    ReceiptTaskNotFoundError,
    StorageError,
    TransactionNotFoundError,
    ValidationError,
)


def _mock_session(execute=None) -> AsyncMock:
    mock_session = AsyncMock()
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    mock_session.execute = execute or AsyncMock()
    return mock_session


@pytest.mark.asyncio
async def test_health_check_ok(client: AsyncClient):
    mock_scheduler = MagicMock()
    mock_scheduler.running = True

    with (
        patch("qorinti.main.async_session", return_value=_mock_session()),
        patch("qorinti.services.scheduler.scheduler", mock_scheduler),
    ):
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected", "scheduler": "running"}


@pytest.mark.asyncio
async def test_health_check_scheduler_stopped(client: AsyncClient):
    mock_scheduler = MagicMock()
    mock_scheduler.running = False

    with (
        patch("qorinti.main.async_session", return_value=_mock_session()),
        patch("qorinti.services.scheduler.scheduler", mock_scheduler),
    ):
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["scheduler"] == "stopped"
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_health_check_degraded_in_production(client: AsyncClient):
    """A stopped scheduler means receipts are not emitted: degraded in production."""
    mock_scheduler = MagicMock()
    mock_scheduler.running = False

    with (
        patch("qorinti.main.async_session", return_value=_mock_session()),
        patch("qorinti.services.scheduler.scheduler", mock_scheduler),
        patch("qorinti.main.settings") as mock_settings,
    ):
        mock_settings.is_production = True
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_health_check_db_unreachable(client: AsyncClient):
    failing = _mock_session(execute=AsyncMock(side_effect=OSError("connection refused")))

    with patch("qorinti.main.async_session", return_value=failing):
        response = await client.get("/health")

    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy", "database": "disconnected", "scheduler": "unknown"}


@pytest.mark.parametrize(
    "exc, expected",
    [
        (PaymentRequestNotFoundError("x"), 404),
        (TransactionNotFoundError("x"), 404),
        (ReceiptTaskNotFoundError("x"), 404),
        (DriverNotFoundError("x"), 404),
        (ValidationError("x"), 422),
        (InvalidStateError("x"), 409),
        (BusinessRuleError("x"), 409),
        (StorageError("x"), 503),
        (ReceiptEmissionError("x"), 500),
        (LedgerError("x"), 500),
    ],
)
def test_ledger_error_status(exc, expected):
    assert ledger_error_status(exc) == expected


@pytest.mark.asyncio
async def test_metrics_open_in_development(client: AsyncClient):
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "qorinti_payment_requests_submitted_total" in response.text


@pytest.mark.asyncio
async def test_metrics_require_key_when_configured(client: AsyncClient):
    with patch("qorinti.main.settings") as mock_settings:
        mock_settings.METRICS_API_KEY = "scrape-key"
        mock_settings.is_production = False
        denied = await client.get("/metrics", headers={"x-metrics-key": "wrong"})
        allowed = await client.get("/metrics", headers={"x-metrics-key": "scrape-key"})

    assert denied.status_code == 403
    assert allowed.status_code == 200
