import os
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["R2_ENDPOINT_URL"] = ""  # Force mock storage in tests
os.environ["REDIS_URL"] = ""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qorinti.auth.service import create_access_token
from qorinti.database import Base, get_db
from qorinti.main import app
from qorinti.models.driver import Driver
from qorinti.models.enums import UserRole
from qorinti.models.user import User
from qorinti.services.settlement import charge_trip_commission

# Use SQLite for tests (in-memory, one shared connection)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def session_factory(db: AsyncSession) -> async_sessionmaker:
    """Factory for code that opens its own sessions (jobs, live views).

    Shares the in-memory database with ``db``; commit ``db`` before use.
    """
    return test_session


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from qorinti.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def driver_user(db: AsyncSession) -> User:
    user = User(
        id=uuid.uuid4(),
        email="rosa@test.pe",
        role=UserRole.DRIVER,
        display_name="Rosa",
    )
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def driver(db: AsyncSession, driver_user: User) -> Driver:
    d = Driver(
        id=uuid.uuid4(),
        user_id=driver_user.id,
        full_name="Rosa Quispe",
        national_id="45678912",
    )
    db.add(d)
    await db.flush()
    return d


@pytest_asyncio.fixture
async def other_driver(db: AsyncSession) -> Driver:
    user = User(id=uuid.uuid4(), email="juan@test.pe", role=UserRole.DRIVER)
    db.add(user)
    await db.flush()
    d = Driver(id=uuid.uuid4(), user_id=user.id, first_names="Juan", last_names="Mamani")
    db.add(d)
    await db.flush()
    return d


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    user = User(
        id=uuid.uuid4(),
        email="admin@test.pe",
        role=UserRole.ADMIN,
    )
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def client_user(db: AsyncSession) -> User:
    user = User(id=uuid.uuid4(), email="client@test.pe", role=UserRole.CLIENT)
    db.add(user)
    await db.flush()
    return user


async def give_debt(db: AsyncSession, driver_id: uuid.UUID, commission: str, trip_id: str | None = None):
    """Put ``commission`` of debt on the driver through a full-rate trip charge."""
    return await charge_trip_commission(
        db,
        driver_id,
        trip_id or f"trip-{uuid.uuid4().hex[:8]}",
        Decimal(commission),
        rate=Decimal("1"),
    )


def token_for(user: User) -> str:
    return create_access_token(str(user.id))


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
