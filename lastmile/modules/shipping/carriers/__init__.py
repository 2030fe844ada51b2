"""
Carrier Registry and Factory

CarrierFactory creates carrier instances based on CarrierCode.
"""
from typing import Dict, List, Type
import logging

from lastmile.modules.shipping.carriers.base import BaseWaybillCarrier, CarrierCode

logger = logging.getLogger(__name__)

# Registry of carrier implementations
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseWaybillCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.NAQUEL)
        class NaquelCarrier(BaseWaybillCarrier):
            ...
    """
    def decorator(cls: Type[BaseWaybillCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.info(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """Factory for creating carrier instances."""

    @classmethod
    def get_carrier(cls, carrier_code: CarrierCode, **kwargs) -> BaseWaybillCarrier:
        """
        Get a carrier instance.

        Args:
            carrier_code: The carrier to get
            **kwargs: Passed through to the carrier constructor

        Raises:
            ValueError: No implementation registered for the code
        """
        carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
        if not carrier_cls:
            logger.warning(f"No implementation registered for carrier: {carrier_code.value}")
            raise ValueError(f"Unsupported carrier: {carrier_code.value}")

        return carrier_cls(**kwargs)

    @classmethod
    def get_registered_carriers(cls) -> List[CarrierCode]:
        """Get list of all registered carrier codes."""
        return list(_CARRIER_REGISTRY.keys())


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from lastmile.modules.shipping.carriers.naquel import NaquelCarrier  # noqa: E402, F401
