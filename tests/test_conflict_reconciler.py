"""
Tests for the conflict reconciler.
"""
import pytest

from conftest import VENDOR


class TestMarkConsumed:
    """Test recording carrier-side conflicts."""

    @pytest.mark.asyncio
    async def test_marks_available_waybill_used(self, reconciler, allocator):
        outcome = await reconciler.mark_consumed("310000004")

        assert outcome.found is True
        assert outcome.already_consumed is False
        assert outcome.message == "Waybill marked as used successfully"
        status = await allocator.check_availability("310000004")
        assert status.available is False
        assert status.used_at is not None

    @pytest.mark.asyncio
    async def test_already_taken_waybill(self, reconciler, allocator):
        allocation = await allocator.take()

        outcome = await reconciler.mark_consumed(allocation.code)

        assert outcome.found is True
        assert outcome.already_consumed is True

    @pytest.mark.asyncio
    async def test_idempotent(self, reconciler):
        first = await reconciler.mark_consumed("310000004")
        second = await reconciler.mark_consumed("310000004")

        assert first.already_consumed is False
        assert second.already_consumed is True

    @pytest.mark.asyncio
    async def test_unknown_waybill_is_not_created(self, reconciler, pool_store):
        outcome = await reconciler.mark_consumed("777777777")

        assert outcome.found is False
        assert await pool_store.get_record("777777777", VENDOR) is None

    @pytest.mark.asyncio
    async def test_conflicted_waybill_is_never_released(self, reconciler, allocator):
        allocation = await allocator.take()
        await reconciler.mark_consumed(allocation.code)

        outcome = await allocator.release(allocation.code)

        assert outcome.released is False
        status = await allocator.check_availability(allocation.code)
        assert status.available is False

    @pytest.mark.asyncio
    async def test_conflicted_waybill_is_never_reallocated(self, reconciler, allocator):
        await reconciler.mark_consumed("310000001")
        await allocator.release("310000001")

        allocation = await allocator.take()

        assert allocation.code == "310000002"

    @pytest.mark.asyncio
    async def test_records_conflict_marker(self, reconciler, pool_store):
        await reconciler.mark_consumed("310000003")

        record = await pool_store.get_record("310000003", VENDOR)
        assert record.is_used is True
        assert record.conflict_at is not None
