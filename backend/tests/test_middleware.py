import pytest
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from qorinti.middleware import RequestContextMiddleware, SecurityHeadersMiddleware


def _app(is_production: bool) -> Starlette:
    async def plain(request: Request):
        return PlainTextResponse("OK")

    async def cached(request: Request):
        return PlainTextResponse("OK", headers={"Cache-Control": "no-cache"})

    test_app = Starlette(routes=[
        Route("/", plain),
        Route("/finance/ledger", plain),
        Route("/finance/ledger/stream", cached),
    ])
    test_app.add_middleware(SecurityHeadersMiddleware, is_production=is_production)
    return test_app


@pytest.mark.asyncio
async def test_security_headers_in_production():
    transport = ASGITransport(app=_app(is_production=True))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/")

    assert response.status_code == 200
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Referrer-Policy"] == "no-referrer"
    assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
    assert "Content-Security-Policy" in response.headers


@pytest.mark.asyncio
async def test_no_hsts_in_dev():
    transport = ASGITransport(app=_app(is_production=False))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/")

    assert "Strict-Transport-Security" not in response.headers
    assert "Cache-Control" not in response.headers


@pytest.mark.asyncio
async def test_finance_responses_are_not_stored():
    transport = ASGITransport(app=_app(is_production=False))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ledger = await ac.get("/finance/ledger")
        stream = await ac.get("/finance/ledger/stream")

    assert ledger.headers["Cache-Control"] == "no-store"
    # An explicit header from the route is kept
    assert stream.headers["Cache-Control"] == "no-cache"


@pytest.mark.asyncio
async def test_request_id_echoed_or_replaced():
    async def plain(request: Request):
        return PlainTextResponse("OK")

    test_app = Starlette(routes=[Route("/", plain)])
    test_app.add_middleware(RequestContextMiddleware)

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        kept = await ac.get("/", headers={"X-Request-ID": "abc-123"})
        replaced = await ac.get("/", headers={"X-Request-ID": "bad id with spaces"})

    assert kept.headers["X-Request-ID"] == "abc-123"
    assert replaced.headers["X-Request-ID"] != "bad id with spaces"
    assert len(replaced.headers["X-Request-ID"]) == 36
    assert kept.headers["X-Process-Time"].endswith("ms")
