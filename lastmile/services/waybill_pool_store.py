"""
Waybill Pool Store

Durable record of waybill availability per (vendor, series).

CONTRACT: take_next() is the only way a waybill leaves the pool and it MUST be
atomic - selecting the lowest available code and marking it used happen as
one serializable unit, so two concurrent callers can never receive the same
waybill. Any store implementation has to preserve this:
- SQLAlchemyWaybillPoolStore: SELECT ... FOR UPDATE SKIP LOCKED in one transaction
- InMemoryWaybillPoolStore: asyncio.Lock around select + mark

Stores expose only the primitives the allocator and the conflict reconciler
need. They are not a general CRUD layer.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from lastmile.core.exceptions import PoolStoreUnavailableError
from lastmile.models.waybill import WaybillNumber

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Store Data Classes
# =============================================================================

@dataclass
class WaybillAllocation:
    """A waybill handed out by the allocator. Not persisted."""
    code: str
    id: Optional[int]
    vendor: str
    series: str


@dataclass
class WaybillRecord:
    """Snapshot of one pool row."""
    id: int
    code: str
    vendor: str
    series: str
    is_used: bool = False
    is_test: bool = False
    used_at: Optional[datetime] = None
    conflict_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


@dataclass
class PoolCounts:
    """Aggregate counts for a (vendor, series) sub-pool, test rows excluded."""
    total: int
    used: int
    lowest_available: Optional[str] = None
    highest_used: Optional[str] = None

    @property
    def available(self) -> int:
        return self.total - self.used


@dataclass
class MarkConsumedOutcome:
    """Result of recording a carrier-side conflict."""
    code: str
    vendor: str
    already_consumed: bool


# =============================================================================
# Store Interface
# =============================================================================

class WaybillPoolStore(ABC):
    """Abstract pool store. See module docstring for the atomicity contract."""

    @abstractmethod
    async def take_next(self, vendor: str, series: str) -> Optional[WaybillAllocation]:
        """
        Atomically claim the lowest available, non-test waybill.

        Returns:
            The claimed waybill, or None if nothing could be claimed
        """

    @abstractmethod
    async def get_counts(self, vendor: str, series: str) -> PoolCounts:
        """Read-only aggregate over the sub-pool."""

    @abstractmethod
    async def release(self, code: str, vendor: str) -> bool:
        """
        Return a waybill to the pool.

        Conflict-consumed and test waybills are never released.

        Returns:
            True if a row went from used to available
        """

    @abstractmethod
    async def mark_consumed(self, code: str, vendor: str) -> Optional[MarkConsumedOutcome]:
        """
        Permanently consume a waybill the carrier already holds.

        Returns:
            Outcome, or None if the code is unknown (nothing is created)
        """

    @abstractmethod
    async def get_record(self, code: str, vendor: str) -> Optional[WaybillRecord]:
        """Read-only lookup of a single waybill."""


# =============================================================================
# SQLAlchemy Implementation
# =============================================================================

class SQLAlchemyWaybillPoolStore(WaybillPoolStore):
    """
    Pool store backed by the last_mile_awb_numbers table.

    Each operation runs in its own short session/transaction. SKIP LOCKED
    moves concurrent takers on to the next row instead of blocking.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def take_next(self, vendor: str, series: str) -> Optional[WaybillAllocation]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        select(WaybillNumber)
                        .where(
                            WaybillNumber.vendor == vendor,
                            WaybillNumber.series == series,
                            WaybillNumber.is_used.is_(False),
                            WaybillNumber.is_test.is_(False),
                        )
                        .order_by(WaybillNumber.awb.asc())
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        return None

                    now = _utcnow()
                    row.is_used = True
                    row.used_at = now
                    row.modified_at = now

                    return WaybillAllocation(
                        code=row.awb,
                        id=row.id,
                        vendor=row.vendor,
                        series=row.series,
                    )
        except SQLAlchemyError as e:
            logger.error(f"Waybill take failed for {vendor}/{series}: {e}")
            raise PoolStoreUnavailableError(
                f"Failed to allocate waybill number: {e}",
                details={"vendor": vendor, "series": series},
            ) from e

    async def get_counts(self, vendor: str, series: str) -> PoolCounts:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        func.count(WaybillNumber.id),
                        func.coalesce(
                            func.sum(case((WaybillNumber.is_used.is_(True), 1), else_=0)), 0
                        ),
                        func.min(case((WaybillNumber.is_used.is_(False), WaybillNumber.awb))),
                        func.max(case((WaybillNumber.is_used.is_(True), WaybillNumber.awb))),
                    ).where(
                        WaybillNumber.vendor == vendor,
                        WaybillNumber.series == series,
                        WaybillNumber.is_test.is_(False),
                    )
                )
                total, used, lowest_available, highest_used = result.one()
        except SQLAlchemyError as e:
            raise PoolStoreUnavailableError(
                f"Failed to fetch waybill stats: {e}",
                details={"vendor": vendor, "series": series},
            ) from e

        return PoolCounts(
            total=int(total or 0),
            used=int(used or 0),
            lowest_available=lowest_available,
            highest_used=highest_used,
        )

    async def release(self, code: str, vendor: str) -> bool:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        update(WaybillNumber)
                        .where(
                            WaybillNumber.awb == code,
                            WaybillNumber.vendor == vendor,
                            WaybillNumber.is_used.is_(True),
                            WaybillNumber.is_test.is_(False),
                            WaybillNumber.conflict_at.is_(None),
                        )
                        .values(is_used=False, modified_at=_utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    return (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            raise PoolStoreUnavailableError(
                f"Failed to release waybill {code}: {e}",
                details={"code": code, "vendor": vendor},
            ) from e

    async def mark_consumed(self, code: str, vendor: str) -> Optional[MarkConsumedOutcome]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        select(WaybillNumber)
                        .where(WaybillNumber.awb == code, WaybillNumber.vendor == vendor)
                        .with_for_update()
                    )
                    rows = result.scalars().all()
                    if not rows:
                        return None

                    already_consumed = all(row.is_used for row in rows)
                    now = _utcnow()
                    for row in rows:
                        if not row.is_used:
                            row.is_used = True
                            row.used_at = now
                        if not row.is_conflict_consumed:
                            row.conflict_at = now
                        row.modified_at = now

                    return MarkConsumedOutcome(
                        code=code,
                        vendor=vendor,
                        already_consumed=already_consumed,
                    )
        except SQLAlchemyError as e:
            raise PoolStoreUnavailableError(
                f"Failed to mark waybill as used: {e}",
                details={"code": code, "vendor": vendor},
            ) from e

    async def get_record(self, code: str, vendor: str) -> Optional[WaybillRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(WaybillNumber)
                    .where(WaybillNumber.awb == code, WaybillNumber.vendor == vendor)
                    .order_by(WaybillNumber.id.asc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PoolStoreUnavailableError(
                f"Failed to check waybill availability: {e}",
                details={"code": code, "vendor": vendor},
            ) from e

        if row is None:
            return None
        return _record_from_row(row)


def _record_from_row(row: WaybillNumber) -> WaybillRecord:
    return WaybillRecord(
        id=row.id,
        code=row.awb,
        vendor=row.vendor,
        series=row.series,
        is_used=bool(row.is_used),
        is_test=bool(row.is_test),
        used_at=row.used_at,
        conflict_at=row.conflict_at,
        modified_at=row.modified_at,
    )


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryWaybillPoolStore(WaybillPoolStore):
    """
    Mutex-guarded in-process pool.

    Same contract as the database store; used by tests and local tooling.
    Returned records are copies, so callers cannot mutate pool state.
    """

    def __init__(self):
        self._records: Dict[int, WaybillRecord] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def provision(
        self,
        vendor: str,
        series: str,
        codes: Iterable[str],
        is_test: bool = False,
        is_used: bool = False,
    ) -> List[WaybillRecord]:
        """Add waybills to the pool (the out-of-band provisioning step)."""
        created = []
        for code in codes:
            record = WaybillRecord(
                id=self._next_id,
                code=str(code),
                vendor=vendor,
                series=series,
                is_used=is_used,
                is_test=is_test,
                modified_at=_utcnow(),
            )
            self._records[record.id] = record
            self._next_id += 1
            created.append(replace(record))
        return created

    def _matching(self, code: str, vendor: str) -> List[WaybillRecord]:
        return [r for r in self._records.values() if r.code == code and r.vendor == vendor]

    def _sub_pool(self, vendor: str, series: str) -> List[WaybillRecord]:
        return [
            r for r in self._records.values()
            if r.vendor == vendor and r.series == series and not r.is_test
        ]

    async def take_next(self, vendor: str, series: str) -> Optional[WaybillAllocation]:
        async with self._lock:
            candidates = [r for r in self._sub_pool(vendor, series) if not r.is_used]
            if not candidates:
                return None

            record = min(candidates, key=lambda r: r.code)
            now = _utcnow()
            record.is_used = True
            record.used_at = now
            record.modified_at = now
            return WaybillAllocation(
                code=record.code,
                id=record.id,
                vendor=record.vendor,
                series=record.series,
            )

    async def get_counts(self, vendor: str, series: str) -> PoolCounts:
        async with self._lock:
            records = self._sub_pool(vendor, series)
            available = [r.code for r in records if not r.is_used]
            used = [r.code for r in records if r.is_used]
            return PoolCounts(
                total=len(records),
                used=len(used),
                lowest_available=min(available) if available else None,
                highest_used=max(used) if used else None,
            )

    async def release(self, code: str, vendor: str) -> bool:
        async with self._lock:
            released = False
            for record in self._matching(code, vendor):
                if record.is_used and not record.is_test and record.conflict_at is None:
                    record.is_used = False
                    record.modified_at = _utcnow()
                    released = True
            return released

    async def mark_consumed(self, code: str, vendor: str) -> Optional[MarkConsumedOutcome]:
        async with self._lock:
            records = self._matching(code, vendor)
            if not records:
                return None

            already_consumed = all(r.is_used for r in records)
            now = _utcnow()
            for record in records:
                if not record.is_used:
                    record.is_used = True
                    record.used_at = now
                if record.conflict_at is None:
                    record.conflict_at = now
                record.modified_at = now
            return MarkConsumedOutcome(code=code, vendor=vendor, already_consumed=already_consumed)

    async def get_record(self, code: str, vendor: str) -> Optional[WaybillRecord]:
        async with self._lock:
            records = sorted(self._matching(code, vendor), key=lambda r: r.id)
            return replace(records[0]) if records else None
