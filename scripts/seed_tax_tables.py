"""
Seed Statutory Tax Tables

Creates the schema if needed and inserts the system-wide PITA 2011 and
Nigeria Tax Act 2025 PAYE tables. Tables that already exist are left alone,
so the script is safe to run on every deploy.
"""

import asyncio
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import close_db, init_db, session_scope
from app.services.tax_table_service import TaxTableService


async def seed_tax_tables():
    """Seed the statutory tax tables and list what is in force."""
    await init_db()

    async with session_scope() as session:
        service = TaxTableService(session)
        created = await service.seed_statutory_tables()
        for table in created:
            print(f"  ✓ created {table.name} ({table.law_version.value}, from {table.effective_from})")

        print("\nSystem tax tables:")
        for table in await service.list_tables():
            bands = ", ".join(f"{band.rate}%" for band in table.bands)
            until = table.effective_to or "open"
            print(f"  {table.name}: {table.effective_from} -> {until} [{bands}]")

    await close_db()
    print(f"\n✓ {len(created)} tax table(s) seeded")


if __name__ == "__main__":
    asyncio.run(seed_tax_tables())
