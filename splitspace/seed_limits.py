"""
Database seeding script for tier transaction limits.

Writes the configured default and verified limits into transaction_limits
so admins can adjust them later through the API.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from splitspace.app.core.config import settings
from splitspace.app.db.session import AsyncSessionLocal
from splitspace.app.models.enums import VerificationTier
from splitspace.app.models.transaction_limit import TransactionLimit
from splitspace.app.services.limits import LimitChecker

TIER_DEFAULTS = {
    VerificationTier.DEFAULT: (
        settings.default_daily_limit,
        settings.default_per_transaction_limit,
        settings.default_min_transaction,
    ),
    VerificationTier.VERIFIED: (
        settings.verified_daily_limit,
        settings.verified_per_transaction_limit,
        settings.verified_min_transaction,
    ),
}


async def seed_limits():
    """Insert a limits row for every tier that has none yet."""
    async with AsyncSessionLocal() as db:
        print("🌱 Starting limits seeding...")

        for tier, (daily, per_tx, minimum) in TIER_DEFAULTS.items():
            existing = await db.execute(select(TransactionLimit).where(TransactionLimit.tier == tier))
            if existing.scalar_one_or_none():
                print(f"⚠️  Limits for tier '{tier.value}' already exist, skipping")
                continue

            await LimitChecker.upsert_limits(
                db, tier, daily_limit=daily, per_transaction_limit=per_tx, min_transaction=minimum
            )
            print(f"✅ Tier '{tier.value}': daily={daily} per_tx={per_tx} min={minimum}")

        print("🎉 Limits seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed_limits())
