"""
Last Mile Waybills Exception Hierarchy

Structured exception classes for the waybill pool and the carrier submission
flow. All exceptions include code, message, and details so callers can tell
"add more waybills" apart from "carrier is down" without parsing strings.

Exception Hierarchy:
    WaybillBaseError
    ├── WaybillPoolError
    │   ├── PoolExhaustedError
    │   ├── PoolNotConfiguredError
    │   ├── PoolContentionError
    │   ├── PoolStoreUnavailableError
    │   └── WaybillAllocationFailedError
    ├── CarrierError
    │   ├── CarrierConflictError
    │   │   └── CustomWaybillConflictError
    │   ├── CarrierTransientDefectError
    │   │   └── CustomWaybillDefectError
    │   ├── CarrierTerminalError
    │   ├── CarrierTransportError
    │   ├── TransportFailureError
    │   └── CarrierResponseError
    └── RetrySafetyLimitExceededError
"""
from typing import Optional, Dict, Any, List


class WaybillBaseError(Exception):
    """
    Base exception for all waybill service errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "WAYBILL_ERROR"
    default_severity: str = "P2"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# POOL ERRORS
# =============================================================================

class WaybillPoolError(WaybillBaseError):
    """Base exception for waybill pool errors."""
    default_code = "WAYBILL_POOL_ERROR"
    default_severity = "P1"


class PoolExhaustedError(WaybillPoolError):
    """Every waybill in the (vendor, series) sub-pool has been used."""
    default_code = "WAYBILL_LIMIT_REACHED"
    default_severity = "P0"  # Shipments stop until the pool is topped up

    def __init__(self, vendor: str, series: str, total: int, used: int, **kwargs):
        self.vendor = vendor
        self.series = series
        self.total = total
        self.used = used
        details = kwargs.pop("details", {})
        details.update({
            "vendor": vendor,
            "series": series,
            "total": total,
            "used": used,
        })
        super().__init__(
            f"All {total} waybills are used for vendor: {vendor}, series: {series}",
            details=details,
            **kwargs,
        )


class PoolNotConfiguredError(WaybillPoolError):
    """No waybills were ever provisioned for the (vendor, series)."""
    default_code = "WAYBILL_POOL_NOT_CONFIGURED"
    default_severity = "P0"

    def __init__(self, vendor: str, series: str, **kwargs):
        self.vendor = vendor
        self.series = series
        details = kwargs.pop("details", {})
        details.update({"vendor": vendor, "series": series})
        super().__init__(
            f"No waybill numbers configured for vendor: {vendor}, series: {series}. "
            "Please add waybill numbers to the database.",
            details=details,
            **kwargs,
        )


class PoolContentionError(WaybillPoolError):
    """Available waybills exist but all of them are locked by concurrent takers."""
    default_code = "WAYBILL_POOL_CONTENTION"
    default_severity = "P3"
    retryable = True

    def __init__(self, vendor: str, series: str, available: int, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"vendor": vendor, "series": series, "available": available})
        super().__init__(
            f"All {available} available waybills for {vendor}/{series} are locked by other requests",
            details=details,
            **kwargs,
        )


class PoolStoreUnavailableError(WaybillPoolError):
    """The pool store could not be reached or the transaction failed."""
    default_code = "WAYBILL_STORE_UNAVAILABLE"
    retryable = True


class WaybillAllocationFailedError(WaybillPoolError):
    """Allocation kept failing for system reasons until the attempt budget ran out."""
    default_code = "WAYBILL_ALLOCATION_FAILED"

    def __init__(self, message: str, attempts: int, **kwargs):
        self.attempts = attempts
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# CARRIER ERRORS
# =============================================================================

class CarrierError(WaybillBaseError):
    """Base exception for carrier integration errors."""
    default_code = "CARRIER_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        waybill_no: Optional[str] = None,
        carrier_message: Optional[str] = None,
        **kwargs
    ):
        self.waybill_no = waybill_no
        self.carrier_message = carrier_message
        details = kwargs.pop("details", {})
        details.setdefault("waybill_no", waybill_no)
        if carrier_message is not None:
            details.setdefault("carrier_message", carrier_message)
        super().__init__(message, details=details, **kwargs)


class CarrierConflictError(CarrierError):
    """Carrier reports the waybill as already registered on its side."""
    default_code = "WAYBILL_ALREADY_EXISTS"
    default_severity = "P2"
    retryable = True


class CustomWaybillConflictError(CarrierConflictError):
    """Caller-supplied waybill already exists at the carrier; no pool to rotate through."""
    default_code = "CUSTOM_WAYBILL_CONFLICT"
    retryable = False


class CarrierTransientDefectError(CarrierError):
    """Known carrier defect while saving waybill details (code 120)."""
    default_code = "CARRIER_DEFECT_120"
    default_severity = "P2"
    retryable = True


class CustomWaybillDefectError(CarrierTransientDefectError):
    """Caller-supplied waybill hit the code 120 defect."""
    default_code = "CUSTOM_WAYBILL_ERROR_120"
    retryable = False


class CarrierTerminalError(CarrierError):
    """Any other carrier-reported error; the message is surfaced verbatim."""
    default_code = "NAQUEL_API_ERROR"

    def __init__(self, carrier_message: str, waybill_no: Optional[str] = None, released: bool = False, **kwargs):
        details = kwargs.pop("details", {})
        details["released"] = released
        self.released = released
        super().__init__(
            carrier_message,
            waybill_no=waybill_no,
            carrier_message=carrier_message,
            details=details,
            **kwargs,
        )


class CarrierTransportError(CarrierError):
    """A single carrier call failed at the network/HTTP level."""
    default_code = "CARRIER_TRANSPORT_ERROR"
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class TransportFailureError(CarrierError):
    """Carrier stayed unreachable for every allowed transport attempt."""
    default_code = "CARRIER_TRANSPORT_FAILED"
    default_severity = "P0"

    def __init__(self, message: str, attempts: int, **kwargs):
        self.attempts = attempts
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        super().__init__(message, details=details, **kwargs)


class CarrierResponseError(CarrierError):
    """Carrier answered with something that is not a waybill result."""
    default_code = "CARRIER_BAD_RESPONSE"


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================

class RetrySafetyLimitExceededError(WaybillBaseError):
    """
    Submission loop hit its hard ceiling.

    Distinct from pool exhaustion: the pool still had waybills, but the carrier
    kept rejecting them.
    """
    default_code = "WAYBILL_RETRY_SAFETY_LIMIT"
    default_severity = "P0"

    def __init__(
        self,
        attempts: int,
        limit: int,
        conflicted: Optional[List[str]] = None,
        skipped: Optional[List[str]] = None,
        **kwargs
    ):
        self.attempts = attempts
        self.limit = limit
        self.conflicted = list(conflicted or [])
        self.skipped = list(skipped or [])
        details = kwargs.pop("details", {})
        details.update({
            "attempts": attempts,
            "safety_limit": limit,
            "conflicted_waybills": self.conflicted,
            "skipped_waybills": self.skipped,
        })
        super().__init__(
            f"Safety limit reached: {attempts} consecutive waybills were rejected by the carrier",
            details=details,
            **kwargs,
        )
