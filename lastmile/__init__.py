"""Last-mile waybill pool and carrier submission service."""

__version__ = "1.4.0"
