"""Seed the default subscription tiers.

Run with: python -m scripts.seed_tiers
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from canvascue.core.config import settings
from canvascue.core.database import Database
from canvascue.core.observability import setup_observability, shutdown_observability
from canvascue.modules.tiers.catalog import TierCatalog

logger = logging.getLogger("scripts.seed_tiers")


async def seed_tiers() -> None:
    """Create tables if needed and upsert the default tiers."""
    database = Database.from_settings(settings)
    try:
        await database.create_all()
        async with database.session() as session:
            tiers = await TierCatalog(session).seed_default_tiers()

        logger.info(f"Tiers seeded successfully: {len(tiers)} active")
        for tier in tiers:
            logger.info(
                f"  L{tier.level} {tier.display_name}: "
                f"${tier.monthly_price / 100:.2f}/mo, "
                f"{tier.designs_per_month} designs, "
                f"{tier.simultaneous_designs} at a time"
            )
    finally:
        await database.dispose()


if __name__ == "__main__":
    setup_observability(settings)
    try:
        asyncio.run(seed_tiers())
    finally:
        shutdown_observability()
