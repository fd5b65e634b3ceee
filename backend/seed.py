"""Seed script for the Qorinti ledger backend.

Creates baseline data for local runs:
- 1 admin user
- 2 drivers (one with a RUC, one with a DNI only), each with a ledger
- a few direct-payment trips so both drivers owe commission
- 1 pending payment request to review

Idempotent: existing users are reused and trip charges are only made once.
Run with: python seed.py
"""

import asyncio
import sys
from decimal import Decimal

from qorinti.config import settings

if settings.APP_ENV == "production":
    print("ERROR: Cannot seed production database.")
    sys.exit(1)

from sqlalchemy import select

from qorinti.auth.service import create_access_token
from qorinti.database import async_session
from qorinti.models.driver import Driver
from qorinti.models.enums import PaymentRequestStatus, UserRole
from qorinti.models.payment_request import PaymentRequest
from qorinti.models.user import User
from qorinti.services.errors import BusinessRuleError
from qorinti.services.settlement import charge_trip_commission, submit_payment_request

SEED_USERS = [
    {"email": "admin@qorinti.pe", "role": UserRole.ADMIN, "display_name": "Admin Qorinti"},
    {"email": "rosa.quispe@qorinti.pe", "role": UserRole.DRIVER, "display_name": "Rosa"},
    {"email": "juan.mamani@qorinti.pe", "role": UserRole.DRIVER, "display_name": None},
]

SEED_DRIVERS = [
    {
        "email": "rosa.quispe@qorinti.pe",
        "full_name": "Rosa Quispe Huamán",
        "tax_id": "10456789123",
        "national_id": "45678912",
        "trips": [("seed-trip-001", Decimal("120.00")), ("seed-trip-002", Decimal("85.50"))],
    },
    {
        "email": "juan.mamani@qorinti.pe",
        "first_names": "Juan Carlos",
        "last_names": "Mamani",
        "national_id": "70123456",
        "trips": [("seed-trip-101", Decimal("60.00"))],
    },
]


async def seed() -> None:
    async with async_session() as db:
        user_map: dict[str, User] = {}

        for user_data in SEED_USERS:
            result = await db.execute(select(User).where(User.email == user_data["email"]))
            existing = result.scalar_one_or_none()
            if existing:
                print(f"  [skip] User {user_data['email']} already exists")
                user_map[user_data["email"]] = existing
                continue
            user = User(**user_data)
            db.add(user)
            await db.flush()
            user_map[user_data["email"]] = user
            print(f"  [created] User {user_data['email']} ({user_data['role'].value})")

        for driver_data in SEED_DRIVERS:
            user = user_map[driver_data["email"]]
            result = await db.execute(select(Driver).where(Driver.user_id == user.id))
            driver = result.scalar_one_or_none()
            if driver is None:
                driver = Driver(
                    user_id=user.id,
                    full_name=driver_data.get("full_name"),
                    first_names=driver_data.get("first_names"),
                    last_names=driver_data.get("last_names"),
                    tax_id=driver_data.get("tax_id"),
                    national_id=driver_data.get("national_id"),
                )
                db.add(driver)
                await db.flush()
                print(f"  [created] Driver for {driver_data['email']}")

            for trip_id, gross in driver_data["trips"]:
                try:
                    tx = await charge_trip_commission(db, driver.id, trip_id, gross)
                    print(f"  [created] Commission {tx.commission_amount} for {trip_id}")
                except BusinessRuleError:
                    print(f"  [skip] Trip {trip_id} already charged")

            result = await db.execute(
                select(PaymentRequest).where(
                    PaymentRequest.driver_id == driver.id,
                    PaymentRequest.status == PaymentRequestStatus.IN_REVIEW,
                )
            )
            if result.scalars().first() is None:
                await submit_payment_request(
                    db, driver.id, Decimal("10.00"), reference="YAPE-SEED", notes="Pago por Yape"
                )
                print(f"  [created] Payment request for {driver_data['email']}")

        await db.commit()

        print("\nAccess tokens (valid for local runs only):")
        for email, user in user_map.items():
            print(f"  {email}: {create_access_token(str(user.id))}")
        print("\nSeed completed successfully.")


if __name__ == "__main__":
    print("Seeding Qorinti database...")
    asyncio.run(seed())
