"""
Base Waybill Carrier Interface

All last-mile carriers implement this interface. A carrier only registers a
manifest against a waybill number and reports what it said back; it never
touches the waybill pool. Interpreting the answer (conflict, defect, terminal)
is the submission orchestrator's job.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class CarrierCode(str, Enum):
    """Supported last-mile carriers."""
    NAQUEL = "NAQUEL"


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class WaybillManifest:
    """
    Shipment details handed to the carrier.

    Reference data is resolved upstream: city_code is already the carrier's
    city code and monetary values are already converted to currency.
    """
    seller_first_name: str
    seller_last_name: str
    seller_email: str
    seller_mobile: str
    consignee_first_name: str
    consignee_last_name: str
    consignee_email: str
    consignee_mobile: str
    consignee_address: str
    consignee_country_code: str
    city_code: str
    weight: float
    product_description: str
    declared_value: float
    pieces: int = 1
    unit_type: str = "PCS"
    unit_cost: Optional[float] = None
    currency: str = "USD"
    hs_code: str = ""
    invoice_no: str = ""
    reference: str = ""
    seller_country_code: str = "AE"
    load_type_id: int = 36

    @property
    def seller_name(self) -> str:
        return f"{self.seller_first_name} {self.seller_last_name}".strip()

    @property
    def consignee_name(self) -> str:
        return f"{self.consignee_first_name} {self.consignee_last_name}".strip()

    @property
    def effective_unit_cost(self) -> float:
        if self.unit_cost is not None:
            return self.unit_cost
        if self.pieces > 1:
            return round(self.declared_value / self.pieces, 2)
        return self.declared_value


@dataclass
class CarrierSubmissionResult:
    """What the carrier said about one submission."""
    waybill_no: Optional[str]  # Carrier echo of the submitted waybill
    booking_ref_no: Optional[str] = None
    has_error: bool = False
    message: str = ""
    raw_response: Optional[Any] = None


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseWaybillCarrier(ABC):
    """Abstract base class for waybill carriers."""

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code enum value."""
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""
        pass

    @abstractmethod
    async def submit_waybill(
        self,
        manifest: WaybillManifest,
        waybill_no: str,
    ) -> CarrierSubmissionResult:
        """
        Register a manifest with the carrier under the given waybill number.

        Carrier-reported errors come back as has_error=True, not as exceptions.

        Raises:
            CarrierTransportError: Network failure or carrier 5xx
            CarrierResponseError: Response could not be parsed
        """
        pass

    async def close(self) -> None:
        """Release any underlying connections."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
