from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from qorinti.config import settings


def get_real_ip(request: Request) -> str:
    """Client IP for rate limiting.

    With TRUSTED_PROXY_COUNT = 0 the X-Forwarded-For header is ignored, so a
    client cannot pick its own bucket. Otherwise the address appended by the
    outermost trusted proxy is used.
    """
    if settings.TRUSTED_PROXY_COUNT > 0:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            hops = [hop.strip() for hop in forwarded.split(",")]
            return hops[max(0, len(hops) - settings.TRUSTED_PROXY_COUNT)]
    return get_remote_address(request)


def _storage_uri() -> str:
    # Shared Redis keeps limits consistent across workers
    if settings.REDIS_URL and "localhost" not in settings.REDIS_URL:
        return settings.REDIS_URL
    return "memory://"


_strict = settings.is_production

limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=_storage_uri(),
    default_limits=["60/minute" if _strict else "200/minute"],
)

# Money movements initiated by drivers
WRITE_RATE_LIMIT = "10/minute" if _strict else "30/minute"
LIST_RATE_LIMIT = "30/minute" if _strict else "100/minute"
# Opening a live view
STREAM_RATE_LIMIT = "6/minute" if _strict else "30/minute"
# Admin back office
ADMIN_RATE_LIMIT = "30/minute"
ADMIN_BULK_RATE_LIMIT = "60/minute"
ADMIN_RETRY_RATE_LIMIT = "10/minute"
