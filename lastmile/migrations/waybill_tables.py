"""
Database Migration Script for the Last-Mile Waybill Pool

Creates the waybill pool table and its indexes:
- last_mile_awb_numbers: one row per pre-provisioned carrier waybill

Also provides seed_waybill_range() for loading a block of waybills issued by
the carrier. Provisioning is append-only; existing rows are never touched.

Usage:
    python -m lastmile.migrations.waybill_tables
    python -m lastmile.migrations.waybill_tables --seed-start 310000001 --seed-count 5000
"""
import asyncio
import logging

from sqlalchemy import text

logger = logging.getLogger(__name__)


async def migrate_waybill_tables(engine):
    """
    Create the waybill pool table if it doesn't exist.

    This is an idempotent migration - safe to run multiple times.
    """
    logger.info("Starting waybill tables migration...")

    async with engine.begin() as conn:
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS last_mile_awb_numbers (
                id SERIAL PRIMARY KEY,
                awb VARCHAR(50) NOT NULL,
                vendor VARCHAR(50) NOT NULL,
                series VARCHAR(50) NOT NULL,
                is_used BOOLEAN NOT NULL DEFAULT FALSE,
                is_test BOOLEAN NOT NULL DEFAULT FALSE,
                used_at TIMESTAMP WITH TIME ZONE,
                conflict_at TIMESTAMP WITH TIME ZONE,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                modified_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                CONSTRAINT uq_last_mile_awb_vendor_series_awb UNIQUE (vendor, series, awb)
            )
        """))
        logger.info("Created/verified last_mile_awb_numbers table")

        # Tables provisioned before conflict tracking existed
        await conn.execute(text("""
            ALTER TABLE last_mile_awb_numbers
            ADD COLUMN IF NOT EXISTS conflict_at TIMESTAMP WITH TIME ZONE
        """))

        for idx_sql in [
            "CREATE INDEX IF NOT EXISTS ix_last_mile_awb_pool_lookup "
            "ON last_mile_awb_numbers(vendor, series, is_used, is_test)",
            "CREATE INDEX IF NOT EXISTS ix_last_mile_awb_vendor_awb "
            "ON last_mile_awb_numbers(vendor, awb)",
        ]:
            await conn.execute(text(idx_sql))

    logger.info("Waybill tables migration complete!")


async def seed_waybill_range(engine, vendor: str, series: str, start: int, count: int, is_test: bool = False) -> int:
    """
    Provision `count` sequential waybills starting at `start`.

    Waybills that already exist for (vendor, series) are skipped.

    Returns:
        Number of rows inserted
    """
    if count <= 0:
        return 0

    rows = [
        {"awb": str(start + offset), "vendor": vendor, "series": series, "is_test": is_test}
        for offset in range(count)
    ]

    count_sql = text("""
        SELECT COUNT(*) FROM last_mile_awb_numbers
        WHERE vendor = :vendor AND series = :series
    """)

    async with engine.begin() as conn:
        before = (await conn.execute(count_sql, {"vendor": vendor, "series": series})).scalar() or 0
        await conn.execute(
            text("""
                INSERT INTO last_mile_awb_numbers (awb, vendor, series, is_used, is_test)
                VALUES (:awb, :vendor, :series, FALSE, :is_test)
                ON CONFLICT (vendor, series, awb) DO NOTHING
            """),
            rows,
        )
        after = (await conn.execute(count_sql, {"vendor": vendor, "series": series})).scalar() or 0
        inserted = after - before

    logger.info(
        f"Seeded {vendor}/{series} waybills {start}..{start + count - 1}: "
        f"{inserted} inserted, {count - inserted} already present"
    )
    return inserted


async def run_migration(seed_start=None, seed_count=0, vendor=None, series=None):
    """Run the migration using the app's database engine."""
    from lastmile.core.config import settings
    from lastmile.core.database import engine

    await migrate_waybill_tables(engine)

    if seed_start is not None and seed_count:
        await seed_waybill_range(
            engine,
            vendor or settings.WAYBILL_DEFAULT_VENDOR,
            series or settings.WAYBILL_DEFAULT_SERIES,
            seed_start,
            seed_count,
        )


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument("--seed-start", type=int, help="First waybill number to provision")
    parser.add_argument("--seed-count", type=int, default=0, help="Number of waybills to provision")
    parser.add_argument("--vendor", help="Vendor (defaults to WAYBILL_DEFAULT_VENDOR)")
    parser.add_argument("--series", help="Series (defaults to WAYBILL_DEFAULT_SERIES)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migration(args.seed_start, args.seed_count, args.vendor, args.series))
