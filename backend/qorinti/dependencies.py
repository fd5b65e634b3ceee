"""FastAPI dependencies resolving the bearer token to a user, driver or admin."""
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qorinti.auth.service import decode_access_token
from qorinti.database import async_session, get_db
from qorinti.models.driver import Driver
from qorinti.models.enums import UserRole
from qorinti.models.user import User

bearer = HTTPBearer()


def _token_subject(token: str) -> uuid.UUID:
    subject = decode_access_token(token)
    try:
        return uuid.UUID(subject or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )


async def _load_active_user(db: AsyncSession, token: str) -> User:
    user = await db.get(User, _token_subject(token))
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user


async def _load_driver(db: AsyncSession, user: User) -> Driver:
    if user.role != UserRole.DRIVER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only drivers can access their ledger",
        )
    driver = (
        await db.execute(select(Driver).where(Driver.user_id == user.id))
    ).scalar_one_or_none()
    if driver is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Driver profile not found")
    return driver


def get_session_factory() -> async_sessionmaker:
    """Sessions for work that outlives the request, such as live views."""
    return async_session


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await _load_active_user(db, credentials.credentials)


async def get_current_driver(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[User, Driver]:
    """The caller must be a DRIVER linked to a driver directory entry."""
    return user, await _load_driver(db, user)


async def get_streaming_driver(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> Driver:
    """Same checks as ``get_current_driver`` in a session closed before returning.

    Live views stay open indefinitely; the request-scoped session would keep
    its pooled connection until the client disconnects.
    """
    async with session_factory() as db:
        user = await _load_active_user(db, credentials.credentials)
        return await _load_driver(db, user)


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
