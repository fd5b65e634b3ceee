import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

# Client supplied ids end up in logs
_REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9\-]{1,64}$")
SLOW_REQUEST_MS = 1000


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, is_production: bool = False):
        super().__init__(app)
        self.is_production = is_production

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # Receipt URLs and balances must not be cached by intermediaries
        if request.url.path.startswith(("/finance", "/admin")) and "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        if self.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to every log line of the request and time it."""

    async def dispatch(self, request: Request, call_next) -> Response:
        supplied = request.headers.get("X-Request-ID", "")
        request_id = supplied if _REQUEST_ID_RE.match(supplied) else str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()

        elapsed_ms = (time.monotonic() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"
        if elapsed_ms > SLOW_REQUEST_MS:
            logger.warning(
                "slow_request",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=round(elapsed_ms, 1),
                status_code=response.status_code,
            )
        return response
