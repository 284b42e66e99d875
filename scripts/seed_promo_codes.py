"""Seed launch promo codes into the database."""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from credit_ledger.core.config import settings
from credit_ledger.services.promo_registry import PromoCodeExistsError, PromoRegistry


DEFAULT_PROMO_CODES = [
    {
        "code": "WELCOME500",
        "credits_amount": 500,
        "max_uses": 1000,
        "description": "Welcome bonus for new tenants",
    },
    {
        "code": "LAUNCH2500",
        "credits_amount": 2500,
        "max_uses": 100,
        "description": "Launch week bonus on any credit package",
    },
]


async def seed_promo_codes():
    """Seed default promo codes into the database."""
    engine = create_async_engine(settings.DATABASE_URL, echo=True)
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        registry = PromoRegistry(session)
        created = 0
        for promo_data in DEFAULT_PROMO_CODES:
            try:
                await registry.create_promo_code(created_by="seed", **promo_data)
            except PromoCodeExistsError:
                print(f"Promo code '{promo_data['code']}' already exists, skipping")
                continue

            created += 1
            print(f"Created promo code: {promo_data['code']}")

        print(f"\nSeeded {created} promo codes successfully!")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_promo_codes())
