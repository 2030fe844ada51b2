"""
Tests for settings validation and the error taxonomy.
"""
import pytest
from pydantic import ValidationError

from lastmile.core.config import Settings
from lastmile.core.error_handler import sanitize_error_message, status_code_for
from lastmile.core.exceptions import (
    CarrierResponseError,
    CarrierTerminalError,
    CarrierTransportError,
    CustomWaybillConflictError,
    CustomWaybillDefectError,
    PoolContentionError,
    PoolExhaustedError,
    PoolNotConfiguredError,
    PoolStoreUnavailableError,
    RetrySafetyLimitExceededError,
    TransportFailureError,
    WaybillAllocationFailedError,
)


class TestSettings:
    """Test configuration validation."""

    def test_database_url_converted_to_asyncpg(self):
        s = Settings(DATABASE_URL="postgres://u:p@db:5432/lastmile", ENVIRONMENT="development")
        assert s.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/lastmile"

    def test_defaults(self):
        s = Settings(DATABASE_URL="postgresql+asyncpg://u:p@db/lastmile", ENVIRONMENT="development")

        assert s.WAYBILL_DEFAULT_VENDOR == "NAQUEL"
        assert s.WAYBILL_DEFAULT_SERIES == "PRIME"
        assert s.WAYBILL_RETRY_DELAY_SECONDS == 0.5
        assert s.WAYBILL_MAX_RETRY_ATTEMPTS == 50

    def test_production_rejects_insecure_config(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                DATABASE_URL="postgresql+asyncpg://u:p@localhost/lastmile",
                ENVIRONMENT="production",
                DEBUG=True,
                API_BEARER_TOKEN="",
            )

        message = str(exc_info.value)
        assert "DEBUG=True is forbidden" in message
        assert "API_BEARER_TOKEN is required" in message
        assert "Localhost DATABASE_URL" in message

    def test_safety_ceiling_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(
                DATABASE_URL="postgresql+asyncpg://u:p@db/lastmile",
                ENVIRONMENT="development",
                WAYBILL_MAX_RETRY_ATTEMPTS=0,
            )


class TestErrorTaxonomy:
    """Test error codes and HTTP status mapping."""

    def test_codes(self):
        assert PoolExhaustedError("NAQUEL", "PRIME", 5, 5).code == "WAYBILL_LIMIT_REACHED"
        assert WaybillAllocationFailedError("failed", attempts=10).code == "WAYBILL_ALLOCATION_FAILED"
        assert CustomWaybillConflictError("dup").code == "CUSTOM_WAYBILL_CONFLICT"
        assert CustomWaybillDefectError("120").code == "CUSTOM_WAYBILL_ERROR_120"
        assert CarrierTerminalError("bad city").code == "NAQUEL_API_ERROR"

    def test_status_codes(self):
        assert status_code_for(PoolExhaustedError("NAQUEL", "PRIME", 5, 5)) == 400
        assert status_code_for(PoolNotConfiguredError("NAQUEL", "PRIME")) == 400
        assert status_code_for(PoolContentionError("NAQUEL", "PRIME", available=2)) == 503
        assert status_code_for(PoolStoreUnavailableError("down")) == 503
        assert status_code_for(WaybillAllocationFailedError("failed", attempts=10)) == 503
        assert status_code_for(CustomWaybillConflictError("dup")) == 409
        assert status_code_for(CustomWaybillDefectError("120")) == 502
        assert status_code_for(CarrierTerminalError("bad city")) == 502
        assert status_code_for(CarrierResponseError("not xml")) == 502
        assert status_code_for(CarrierTransportError("timeout")) == 503
        assert status_code_for(TransportFailureError("down", attempts=10)) == 503
        assert status_code_for(RetrySafetyLimitExceededError(attempts=50, limit=50)) == 500

    def test_to_dict(self):
        error = RetrySafetyLimitExceededError(
            attempts=50, limit=50, conflicted=["1", "2"], skipped=["3"]
        )
        data = error.to_dict()

        assert data["error_type"] == "RetrySafetyLimitExceededError"
        assert data["code"] == "WAYBILL_RETRY_SAFETY_LIMIT"
        assert data["severity"] == "P0"
        assert data["details"]["conflicted_waybills"] == ["1", "2"]
        assert data["details"]["skipped_waybills"] == ["3"]

    def test_retryable_flags(self):
        assert PoolContentionError("NAQUEL", "PRIME", available=1).retryable is True
        assert CarrierTransportError("timeout").retryable is True
        assert CustomWaybillConflictError("dup").retryable is False
        assert PoolExhaustedError("NAQUEL", "PRIME", 5, 5).retryable is False

    def test_sanitize_hides_driver_details(self):
        assert "asyncpg" not in sanitize_error_message("asyncpg.exceptions.ConnectionDoesNotExistError")
        assert sanitize_error_message("Invalid Consignee City Code") == "Invalid Consignee City Code"
