import hmac
from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator, metrics
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.responses import Response

from qorinti.admin.routes import router as admin_router
from qorinti.config import settings
from qorinti.database import async_session
from qorinti.finance.routes import router as finance_router
from qorinti.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from qorinti.services.errors import (
    BusinessRuleError,
    DriverNotFoundError,
    InvalidStateError,
    LedgerError,
    PaymentRequestNotFoundError,
    ReceiptTaskNotFoundError,
    StorageError,
    TransactionNotFoundError,
    ValidationError,
)
from qorinti.utils.rate_limit import limiter


def configure_logging() -> None:
    """JSON lines in production, coloured console output elsewhere."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
    )


configure_logging()
logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.APP_ENV,
        traces_sample_rate=0.1,
        send_default_pii=False,
    )


async def _check_alembic_migration_version() -> None:
    """Warn when the database schema is behind the migration head. Never raises."""
    try:
        from alembic.config import Config
        from alembic.runtime.migration import MigrationContext
        from alembic.script import ScriptDirectory

        head = ScriptDirectory.from_config(Config("alembic.ini")).get_current_head()
        async with async_session() as session:
            conn = await session.connection()
            current = await conn.run_sync(
                lambda sync_conn: MigrationContext.configure(sync_conn).get_current_revision()
            )
    except Exception as exc:
        logger.warning("alembic_version_check_failed", error=str(exc))
        return

    if current == head:
        logger.info("alembic_version_ok", version=current)
    else:
        logger.warning("alembic_version_mismatch", current=current, head=head)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from qorinti.services.scheduler import scheduler, start_scheduler

    logger.info("qorinti_startup", env=settings.APP_ENV)
    await _check_alembic_migration_version()
    start_scheduler()
    yield
    scheduler.shutdown(wait=True)
    logger.info("qorinti_shutdown")


app = FastAPI(
    title="Qorinti Ledger API",
    description="Driver commission ledger and payment settlement for the Qorinti marketplace",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Most specific first; the first isinstance match wins
_LEDGER_ERROR_STATUS: list[tuple[type[LedgerError], int]] = [
    (PaymentRequestNotFoundError, 404),
    (TransactionNotFoundError, 404),
    (ReceiptTaskNotFoundError, 404),
    (DriverNotFoundError, 404),
    (ValidationError, 422),
    (InvalidStateError, 409),
    (BusinessRuleError, 409),
    (StorageError, 503),
]


def ledger_error_status(exc: LedgerError) -> int:
    for exc_type, status_code in _LEDGER_ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    status_code = ledger_error_status(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "ledger_request_rejected",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=status_code,
        detail=str(exc),
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Log and hide unexpected failures; development keeps the traceback."""
    logger.exception("unhandled_exception", path=request.url.path)
    if settings.APP_ENV == "development":
        raise exc
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Starlette runs middleware in reverse order of registration
if settings.is_production:
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Authorization", "Content-Type"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8081", "http://localhost:19006"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)
app.add_middleware(RequestContextMiddleware)

# Request size metrics are left out: streamed responses carry no Content-Length
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics", ".*/stream"],
).add(
    metrics.requests(metric_namespace="qorinti", metric_subsystem="http"),
).add(
    metrics.latency(
        metric_namespace="qorinti",
        metric_subsystem="http",
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
    ),
).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus scrape endpoint, guarded by the x-metrics-key header."""
    if not settings.METRICS_API_KEY:
        if settings.is_production:
            raise HTTPException(status_code=503, detail="Metrics not available")
    elif not hmac.compare_digest(request.headers.get("x-metrics-key", ""), settings.METRICS_API_KEY):
        raise HTTPException(status_code=403, detail="Invalid metrics API key")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(finance_router)
app.include_router(admin_router)


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Database connectivity and whether receipt jobs are being scheduled."""
    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("health_database_unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "scheduler": "unknown"},
        )

    from qorinti.services.scheduler import scheduler

    scheduler_state = "running" if scheduler.running else "stopped"
    # Without the scheduler approvals still work but receipts stall
    degraded = settings.is_production and scheduler_state != "running"
    return {
        "status": "degraded" if degraded else "ok",
        "database": "connected",
        "scheduler": scheduler_state,
    }
