"""
Naquel Carrier Implementation

Registers manifests with Naquel through the SOAP UpdateWaybill operation.

Naquel reports business errors inside a 200 response (HasError=true plus a
free-text Message). Those are returned as-is; only network failures, 5xx and
unreadable bodies raise.
"""
import logging
import xml.etree.ElementTree as ET
from typing import Dict, Optional

import httpx

from lastmile.core.config import settings
from lastmile.core.exceptions import CarrierResponseError, CarrierTransportError
from lastmile.modules.shipping.carriers import register_carrier
from lastmile.modules.shipping.carriers.base import (
    BaseWaybillCarrier,
    CarrierCode,
    CarrierSubmissionResult,
    WaybillManifest,
)

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
TEMPURI_NS = "http://tempuri.org/"
UPDATE_WAYBILL_ACTION = "http://tempuri.org/UpdateWaybill"

# Fixed manifest values Naquel expects for prepaid cross-border shipments
CLIENT_COUNTRY_CODE = "AE"
CLIENT_CITY_CODE = "DXB"
BILLING_TYPE = "1"
CURRENCY_ID = "4"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _fmt_number(value: float) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


@register_carrier(CarrierCode.NAQUEL)
class NaquelCarrier(BaseWaybillCarrier):
    """
    Naquel SOAP client.

    Usage:
        async with NaquelCarrier() as carrier:
            result = await carrier.submit_waybill(manifest, "310000001")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        password: Optional[str] = None,
        version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.NAQUEL_API_URL
        self.client_id = client_id if client_id is not None else settings.NAQUEL_CLIENT_ID
        self.password = password if password is not None else settings.NAQUEL_PASSWORD
        self.version = version or settings.NAQUEL_VERSION
        self.timeout = timeout or settings.NAQUEL_TIMEOUT_SECONDS
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.NAQUEL

    @property
    def carrier_name(self) -> str:
        return "Naquel Express"

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== Request ====================

    def build_update_waybill_envelope(self, manifest: WaybillManifest, waybill_no: str) -> str:
        """Build the UpdateWaybill SOAP envelope for a manifest."""
        ET.register_namespace("soap", SOAP_ENV_NS)
        envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
        body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        update = ET.SubElement(body, "UpdateWaybill", {"xmlns": TEMPURI_NS})
        details = ET.SubElement(update, "ManifestShipmentDetails")

        client_info = ET.SubElement(details, "ClientInfo")
        self._add_fields(client_info, {
            "ClientID": self.client_id,
            "Password": self.password,
            "Version": self.version,
        })
        client_address = ET.SubElement(client_info, "ClientAddress")
        self._add_fields(client_address, {
            "PhoneNumber": manifest.seller_mobile,
            "FirstAddress": " ",
            "CountryCode": CLIENT_COUNTRY_CODE,
            "CityCode": CLIENT_CITY_CODE,
        })
        client_contact = ET.SubElement(client_info, "ClientContact")
        self._add_fields(client_contact, {
            "Name": manifest.seller_name,
            "Email": manifest.seller_email,
            "PhoneNumber": manifest.seller_mobile,
        })

        consignee = ET.SubElement(details, "ConsigneeInfo")
        self._add_fields(consignee, {
            "ConsigneeName": manifest.consignee_name,
            "Email": manifest.consignee_email,
            "PhoneNumber": manifest.consignee_mobile,
            "Address": manifest.consignee_address,
            "CountryCode": manifest.consignee_country_code,
            "CityCode": manifest.city_code,
        })

        invoice = ET.SubElement(details, "_CommercialInvoice")
        invoice_line = ET.SubElement(invoice, "CommercialInvoiceDetailList")
        self._add_fields(invoice_line, {
            "Quantity": manifest.pieces,
            "UnitType": manifest.unit_type,
            "CountryofManufacture": manifest.seller_country_code,
            "Description": manifest.product_description,
            "UnitCost": manifest.effective_unit_cost,
            "CustomsCommodityCode": manifest.hs_code,
            "Currency": manifest.currency,
        })
        self._add_fields(invoice, {"InvoiceNo": manifest.invoice_no})

        self._add_fields(details, {
            "BillingType": BILLING_TYPE,
            "PicesCount": 1,
            "Weight": manifest.weight,
            "CODCharge": 0,
            "LoadTypeID": manifest.load_type_id,
            "RefNo": manifest.reference,
            "DeclareValue": manifest.declared_value,
            "GoodDesc": manifest.product_description,
            "InsuredValue": 0,
            "GeneratePiecesBarCodes": "true",
            "CreateBooking": "true",
            "PickUpPoint": " ",
            "CustomDutyAmount": 0,
            "GoodsVATAmount": 0,
            "IsCustomDutyPayByConsignee": "false",
            "CurrenyID": CURRENCY_ID,
            "IsRTO": "false",
        })

        self._add_fields(update, {"WaybillNo": waybill_no})

        return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(envelope, encoding="unicode")

    @staticmethod
    def _add_fields(parent: ET.Element, fields: Dict[str, object]) -> None:
        for name, value in fields.items():
            child = ET.SubElement(parent, name)
            child.text = _fmt_number(value) if isinstance(value, (int, float)) else str(value or "")

    # ==================== Response ====================

    def parse_update_waybill_response(self, body: str) -> CarrierSubmissionResult:
        """
        Extract UpdateWaybillResult from the SOAP response.

        Raises:
            CarrierResponseError: Body is not XML or has no UpdateWaybillResult
        """
        try:
            root = ET.fromstring(body.encode("utf-8"))
        except ET.ParseError as e:
            raise CarrierResponseError(
                f"Naquel returned unparseable response: {e}",
                details={"raw": body[:500]},
            ) from e

        result_node = next(
            (el for el in root.iter() if _local_name(el.tag) == "UpdateWaybillResult"),
            None,
        )
        if result_node is None:
            raise CarrierResponseError(
                "Naquel response did not contain UpdateWaybillResult",
                details={"raw": body[:500]},
            )

        fields = {_local_name(child.tag): (child.text or "").strip() for child in result_node}

        return CarrierSubmissionResult(
            waybill_no=fields.get("WaybillNo") or None,
            booking_ref_no=fields.get("BookingRefNo") or None,
            has_error=fields.get("HasError", "").lower() == "true",
            message=fields.get("Message", ""),
            raw_response=body,
        )

    # ==================== Submission ====================

    async def submit_waybill(
        self,
        manifest: WaybillManifest,
        waybill_no: str,
    ) -> CarrierSubmissionResult:
        client = await self._get_http_client()
        payload = self.build_update_waybill_envelope(manifest, waybill_no)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": UPDATE_WAYBILL_ACTION,
        }

        try:
            response = await client.post(self.base_url, content=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Naquel API request failed for waybill {waybill_no}: {e}")
            raise CarrierTransportError(
                f"Network error: {e}",
                waybill_no=waybill_no,
            ) from e

        logger.debug(f"Naquel UpdateWaybill {waybill_no} -> {response.status_code}")

        if response.status_code >= 500:
            logger.error(f"Naquel API error: {response.status_code} - {response.text[:500]}")
            raise CarrierTransportError(
                f"Naquel API returned HTTP {response.status_code}",
                status_code=response.status_code,
                waybill_no=waybill_no,
            )

        if response.status_code >= 400:
            logger.error(f"Naquel API rejected request: {response.status_code} - {response.text[:500]}")
            raise CarrierResponseError(
                f"Naquel API returned HTTP {response.status_code}",
                waybill_no=waybill_no,
                details={"status_code": response.status_code, "raw": response.text[:500]},
            )

        result = self.parse_update_waybill_response(response.text)
        logger.info(
            f"Naquel UpdateWaybill {waybill_no}: has_error={result.has_error} "
            f"waybill={result.waybill_no} booking_ref={result.booking_ref_no}"
        )
        return result
