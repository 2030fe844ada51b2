"""
Shipping Module

- BaseWaybillCarrier interface for all last-mile carrier implementations
- CarrierFactory for dependency injection
"""
from lastmile.modules.shipping.carriers import CarrierFactory
from lastmile.modules.shipping.carriers.base import BaseWaybillCarrier

__all__ = [
    "CarrierFactory",
    "BaseWaybillCarrier",
]
