"""
Tests for the waybill table migration and seeding.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from lastmile.migrations.waybill_tables import migrate_waybill_tables, seed_waybill_range


def make_engine(conn):
    engine = MagicMock()
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=conn)
    transaction.__aexit__ = AsyncMock(return_value=False)
    engine.begin = MagicMock(return_value=transaction)
    return engine


def scalar_result(value):
    result = MagicMock()
    result.scalar.return_value = value
    return result


@pytest.mark.asyncio
async def test_migration_is_idempotent_ddl():
    conn = MagicMock()
    conn.execute = AsyncMock()

    await migrate_waybill_tables(make_engine(conn))

    statements = [str(call.args[0]) for call in conn.execute.await_args_list]
    assert any("CREATE TABLE IF NOT EXISTS last_mile_awb_numbers" in s for s in statements)
    assert any("ADD COLUMN IF NOT EXISTS conflict_at" in s for s in statements)
    assert all("IF NOT EXISTS" in s for s in statements)


@pytest.mark.asyncio
async def test_seed_inserts_sequential_codes():
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=[scalar_result(0), MagicMock(), scalar_result(3)])

    inserted = await seed_waybill_range(make_engine(conn), "NAQUEL", "PRIME", 310000001, 3)

    assert inserted == 3
    insert_call = conn.execute.await_args_list[1]
    assert "ON CONFLICT (vendor, series, awb) DO NOTHING" in str(insert_call.args[0])
    rows = insert_call.args[1]
    assert [r["awb"] for r in rows] == ["310000001", "310000002", "310000003"]
    assert all(r["vendor"] == "NAQUEL" and r["series"] == "PRIME" for r in rows)
    assert all(r["is_test"] is False for r in rows)


@pytest.mark.asyncio
async def test_seed_reports_existing_rows():
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=[scalar_result(5), MagicMock(), scalar_result(6)])

    inserted = await seed_waybill_range(make_engine(conn), "NAQUEL", "PRIME", 310000001, 3)

    assert inserted == 1


@pytest.mark.asyncio
async def test_seed_nothing_to_do():
    engine = MagicMock()

    assert await seed_waybill_range(engine, "NAQUEL", "PRIME", 310000001, 0) == 0
    engine.begin.assert_not_called()
