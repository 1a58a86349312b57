"""Seed the database with demo courts and customers.

Run with: python -m scripts.seed
Creates the tables, a handful of courts of each type, some customers, and
prints a staff access token for trying the API.
"""

import asyncio

from sqlalchemy import select

from canchaya.core.auth import create_access_token
from canchaya.core.database import async_session_factory, engine
from canchaya.models import Base, Court, CourtStatus, Customer

# Rates in cents (ARS)
COURTS = [
    {"name": "Fútbol 5 - Cancha 1", "court_type": "futbol5", "hourly_rate_cents": 3500000},
    {"name": "Fútbol 5 - Cancha 2", "court_type": "futbol5", "hourly_rate_cents": 3500000},
    {"name": "Fútbol 7", "court_type": "futbol7", "hourly_rate_cents": 5000000, "operating_hours": "09:00-23:00"},
    {"name": "Pádel 1", "court_type": "padel", "hourly_rate_cents": 1800000},
    {"name": "Pádel 2", "court_type": "padel", "hourly_rate_cents": 1800000, "status": CourtStatus.MAINTENANCE},
    {"name": "Tenis", "court_type": "tenis", "hourly_rate_cents": 1500000, "operating_hours": "08:00-20:00"},
]

CUSTOMERS = [
    {"first_name": "Lucía", "last_name": "Fernández", "phone": "+54 11 5555-0101", "email": "lucia@example.com"},
    {"first_name": "Martín", "last_name": "Gómez", "phone": "+54 11 5555-0102"},
    {"first_name": "Sofía", "last_name": "Rodríguez", "phone": "+54 11 5555-0103", "email": "sofia@example.com"},
    {"first_name": "Diego", "last_name": "López", "phone": "+54 11 5555-0104"},
    {"first_name": "Valentina", "last_name": "Martínez", "email": "valen@example.com"},
]


async def seed():
    # Create tables (in dev; production uses migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Court).limit(1))
        if result.scalar_one_or_none():
            print("Database already seeded, skipping.")
            return

        for court_data in COURTS:
            db.add(Court(**court_data))
        for customer_data in CUSTOMERS:
            db.add(Customer(**customer_data))
        await db.commit()

    await engine.dispose()

    print(f"Seeded: {len(COURTS)} courts, {len(CUSTOMERS)} customers")
    print("Staff token (60 min):")
    print(f"  {create_access_token('seed-staff', email='staff@example.com')}")


if __name__ == "__main__":
    asyncio.run(seed())
