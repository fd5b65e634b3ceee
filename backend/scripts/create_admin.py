"""Create an admin user in the Qorinti ledger database.

The identity provider owns credentials; this only mirrors the account so the
admin endpoints accept its tokens.

Usage:
    python scripts/create_admin.py admin@qorinti.pe [display name]
"""

import asyncio
import sys

from sqlalchemy import select

from qorinti.auth.service import create_access_token
from qorinti.database import async_session
from qorinti.models.enums import UserRole
from qorinti.models.user import User


async def create_admin(email: str, display_name: str | None = None) -> None:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        existing = result.scalar_one_or_none()
        if existing:
            print(f"Error: User with email '{email}' already exists.")
            sys.exit(1)

        user = User(
            email=email,
            role=UserRole.ADMIN,
            display_name=display_name,
        )
        db.add(user)
        await db.commit()

        print(f"Admin user created successfully: {email} (id={user.id})")
        print(f"Access token: {create_access_token(str(user.id))}")


def main() -> None:
    if len(sys.argv) not in (2, 3):
        print("Usage: python scripts/create_admin.py <email> [display name]")
        sys.exit(1)

    email = sys.argv[1]
    display_name = sys.argv[2] if len(sys.argv) == 3 else None

    asyncio.run(create_admin(email, display_name))


if __name__ == "__main__":
    main()
