"""
Waybill Schemas

Pydantic models for waybill pool and submission API requests and responses.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from lastmile.modules.shipping.carriers.base import WaybillManifest


# ==================== Pool Schemas ====================


class AllocateRequest(BaseModel):
    """Allocate the next waybill. Vendor/series default from settings."""
    vendor: Optional[str] = Field(None, max_length=50)
    series: Optional[str] = Field(None, max_length=50)


class AllocateResponse(BaseModel):
    success: bool = True
    waybill_no: str
    id: Optional[int] = None
    vendor: str
    series: str


class WaybillCodeRequest(BaseModel):
    """Release or mark-used request for a single waybill."""
    waybill_no: str = Field(..., min_length=1, max_length=50)
    vendor: Optional[str] = Field(None, max_length=50)

    @field_validator("waybill_no")
    @classmethod
    def strip_waybill_no(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("waybill_no must not be blank")
        return v


class ReleaseResponse(BaseModel):
    success: bool = True
    waybill_no: str
    vendor: str
    released: bool
    message: str


class MarkUsedResponse(BaseModel):
    success: bool = True
    waybill_no: str
    vendor: str
    found: bool
    already_consumed: bool
    message: str


class AvailabilityResponse(BaseModel):
    waybill_no: str
    exists: bool
    available: bool
    used_at: Optional[datetime] = None
    message: str


class PoolStatsResponse(BaseModel):
    vendor: str
    series: str
    total: int
    used: int
    available: int
    next_available: Optional[str] = None
    last_used: Optional[str] = None


# ==================== Submission Schemas ====================


class ManifestPayload(BaseModel):
    """Shipment manifest. City code and currency values are pre-resolved."""
    seller_first_name: str = Field(..., min_length=1, max_length=100)
    seller_last_name: str = Field("", max_length=100)
    seller_email: str = Field(..., max_length=100)
    seller_mobile: str = Field(..., max_length=20)
    consignee_first_name: str = Field(..., min_length=1, max_length=100)
    consignee_last_name: str = Field("", max_length=100)
    consignee_email: str = Field("", max_length=100)
    consignee_mobile: str = Field(..., max_length=20)
    consignee_address: str = Field(..., min_length=1, max_length=250)
    consignee_country_code: str = Field(..., min_length=2, max_length=2)
    city_code: str = Field(..., min_length=1, max_length=10)
    weight: float = Field(..., gt=0)
    product_description: str = Field(..., min_length=1, max_length=250)
    declared_value: float = Field(..., ge=0)
    pieces: int = Field(1, ge=1)
    unit_type: str = "PCS"
    unit_cost: Optional[float] = Field(None, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    hs_code: str = ""
    invoice_no: str = ""
    reference: str = Field("", max_length=50)
    seller_country_code: str = Field("AE", min_length=2, max_length=2)
    load_type_id: int = 36

    @field_validator("consignee_country_code", "seller_country_code", "currency")
    @classmethod
    def upper_codes(cls, v):
        return v.upper()

    def to_manifest(self) -> WaybillManifest:
        return WaybillManifest(**self.model_dump())


class SubmitRequest(BaseModel):
    """Submit a manifest to the carrier."""
    manifest: ManifestPayload
    use_custom_waybill: bool = False
    waybill_no: Optional[str] = Field(None, max_length=50)
    vendor: Optional[str] = Field(None, max_length=50)
    series: Optional[str] = Field(None, max_length=50)

    @model_validator(mode="after")
    def require_waybill_for_custom(self):
        if self.use_custom_waybill and not (self.waybill_no and self.waybill_no.strip()):
            raise ValueError("waybill_no is required when use_custom_waybill is true")
        return self


class SubmitResponse(BaseModel):
    success: bool = True
    waybill_no: str
    carrier_waybill_no: Optional[str] = None
    booking_ref_no: Optional[str] = None
    reference: str
    message: str = ""
    attempts: int
    conflicted_waybills: List[str] = []
    skipped_waybills: List[str] = []
    is_custom: bool = False
    correlation_id: Optional[str] = None


# ==================== Error Schema ====================


class ErrorResponse(BaseModel):
    """Structured failure body returned for every waybill error."""
    success: bool = False
    error: str
    message: str
    details: Dict[str, Any] = {}
    timestamp: datetime
