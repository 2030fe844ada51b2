"""
WaybillNumber model for the last-mile waybill pool

One row per pre-provisioned carrier waybill. Rows are created by out-of-band
provisioning and never deleted by the service; only the allocator and the
conflict reconciler mutate them.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Index, UniqueConstraint
)

from lastmile.core.database import Base


class WaybillNumber(Base):
    """
    A carrier waybill in the pre-provisioned pool.

    is_used flips to True when the allocator hands the waybill out. Release is
    the only way back to False, and it is refused once conflict_at is set
    (the carrier already holds that waybill).
    """
    __tablename__ = "last_mile_awb_numbers"
    __table_args__ = (
        UniqueConstraint("vendor", "series", "awb", name="uq_last_mile_awb_vendor_series_awb"),
        Index("ix_last_mile_awb_pool_lookup", "vendor", "series", "is_used", "is_test"),
        Index("ix_last_mile_awb_vendor_awb", "vendor", "awb"),
    )

    id = Column(Integer, primary_key=True, index=True)

    awb = Column(String(50), nullable=False)
    vendor = Column(String(50), nullable=False)  # e.g. NAQUEL
    series = Column(String(50), nullable=False)  # e.g. PRIME

    is_used = Column(Boolean, default=False, nullable=False)
    is_test = Column(Boolean, default=False, nullable=False)  # Never allocated

    used_at = Column(DateTime(timezone=True), nullable=True)
    conflict_at = Column(DateTime(timezone=True), nullable=True)  # Carrier said "already exists"
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    modified_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_conflict_consumed(self) -> bool:
        return self.conflict_at is not None

    def __repr__(self) -> str:
        return f"<WaybillNumber {self.vendor}/{self.series}/{self.awb} used={self.is_used}>"
