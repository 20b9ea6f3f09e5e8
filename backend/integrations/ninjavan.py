"""
NinjaVan Courier Integration Client

Handles OAuth (client credentials), order creation, cancellation and
waybill download against the NinjaVan REST API. Token caching lives in
fulfillment.courier; this client only talks HTTP.

Endpoints (country code prefixed, e.g. /my):
    POST   /{cc}/2.0/oauth/access_token
    POST   /{cc}/4.1/orders
    DELETE /{cc}/2.2/orders/{tracking_number}
    GET    /{cc}/2.0/reports/waybill?tids=...
"""

from dataclasses import dataclass
from datetime import date, timedelta

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.errors import GatewayError

logger = structlog.get_logger()

SERVICE_TIMEZONE = "Asia/Kuala_Lumpur"
DEFAULT_TOKEN_TTL_SECONDS = 3600
ALREADY_CANCELLED_CODE = "ORDER_ALREADY_CANCELLED"
ALREADY_CANCELLED_MESSAGE = "Order is already cancelled"


@dataclass
class SenderAddress:
    name: str
    phone: str
    email: str | None
    address1: str
    address2: str | None
    postcode: str
    city: str
    state: str


@dataclass
class Parcel:
    """One outbound shipment, as captured on the sale record."""

    customer_name: str
    phone: str
    address: str
    postcode: str
    city: str
    state: str
    price: float
    payment_method: str  # COD | CASH
    product_name: str
    quantity: int = 1
    id_sale: str | None = None
    marketer_id_staff: str | None = None


def split_address(address: str) -> tuple[str, str]:
    """address1 holds the first 100 chars, address2 the next 100."""
    if len(address) <= 100:
        return address, ""
    return address[:100], address[100:200]


def _timeslot() -> dict:
    return {"start_time": "09:00", "end_time": "18:00", "timezone": SERVICE_TIMEZONE}


def build_order_payload(
    sender: SenderAddress,
    parcel: Parcel,
    tracking_id: str,
    *,
    merchant_prefix: str,
    today: date | None = None,
) -> dict:
    """Build the 4.1 order body for a scheduled-pickup parcel."""
    today = today or date.today()
    pickup_date = today.isoformat()
    delivery_date = (today + timedelta(days=2)).isoformat()
    address1, address2 = split_address(parcel.address)

    cod_amount = round(parcel.price) if parcel.payment_method == "COD" else 0
    marketer = f" ({parcel.marketer_id_staff})" if parcel.marketer_id_staff else ""

    return {
        "service_type": "Parcel",
        "service_level": "Standard",
        "requested_tracking_number": tracking_id,
        "reference": {"merchant_order_number": f"{merchant_prefix}-{tracking_id}"},
        "from": {
            "name": sender.name,
            "phone_number": sender.phone,
            "email": sender.email,
            "address": {
                "address1": sender.address1,
                "address2": sender.address2 or "",
                "country": "MY",
                "postcode": sender.postcode,
                "city": sender.city,
                "state": sender.state,
            },
        },
        "to": {
            "name": parcel.customer_name,
            "phone_number": parcel.phone,
            "address": {
                "address1": address1,
                "address2": address2,
                "country": "MY",
                "postcode": parcel.postcode,
                "city": parcel.city,
                "state": parcel.state,
            },
        },
        "parcel_job": {
            "is_pickup_required": True,
            "pickup_service_type": "Scheduled",
            "pickup_service_level": "Standard",
            "pickup_date": pickup_date,
            "pickup_timeslot": _timeslot(),
            "pickup_approx_volume": "Half-Van Load",
            "delivery_start_date": delivery_date,
            "delivery_timeslot": _timeslot(),
            "delivery_instructions": f"{parcel.product_name}{marketer} ({pickup_date})",
            "cash_on_delivery": cod_amount,
            "insured_value": round(parcel.price),
            "dimensions": {"weight": 0.5},
        },
    }


def is_already_cancelled(body: dict) -> bool:
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    return body.get("description") == ALREADY_CANCELLED_CODE or data.get("message") == ALREADY_CANCELLED_MESSAGE


class NinjaVanClient:
    """Client for NinjaVan API interactions."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.client_id = client_id
        self.client_secret = client_secret
        self.transport = transport
        self.timeout = settings.http_timeout_seconds
        self.base_url = f"{settings.ninjavan_base_url.rstrip('/')}/{settings.ninjavan_country_code}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    @staticmethod
    def _body(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text[:500]}
        return body if isinstance(body, dict) else {"data": body}

    async def request_token(self) -> tuple[str, int]:
        """Exchange client credentials for (access_token, expires_in)."""
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/2.0/oauth/access_token",
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
            )
        if not response.is_success:
            logger.error("courier.ninjavan.auth_failed", status=response.status_code)
            raise GatewayError(
                "Failed to authenticate with NinjaVan API",
                upstream_status=response.status_code,
                details=response.text[:500],
            )
        body = response.json()
        return body["access_token"], int(body.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)

    async def create_order(self, access_token: str, payload: dict) -> dict:
        """POST an order. Never retried: a retry could book the parcel twice."""
        async with self._client() as client:
            response = await client.post(
                f"{self.base_url}/4.1/orders",
                headers={"Authorization": f"Bearer {access_token}"},
                json=payload,
            )
        body = self._body(response)
        if not response.is_success:
            raise GatewayError(
                body.get("message") or "Failed to create NinjaVan order",
                upstream_status=response.status_code,
                details=body,
            )
        return body

    async def cancel_order(self, access_token: str, tracking_number: str) -> tuple[dict, bool]:
        """DELETE an order. Returns (body, already_cancelled)."""
        async with self._client() as client:
            response = await client.delete(
                f"{self.base_url}/2.2/orders/{tracking_number}",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        body = self._body(response)
        if response.is_success:
            return body, False
        if is_already_cancelled(body):
            return body, True
        raise GatewayError(
            body.get("message") or "Failed to cancel NinjaVan order",
            upstream_status=response.status_code,
            details=body,
        )

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def get_waybill(self, access_token: str, tracking_numbers: list[str]) -> bytes:
        """Fetch a combined waybill PDF for the given tracking numbers."""
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/2.0/reports/waybill",
                headers={"Authorization": f"Bearer {access_token}"},
                params={"tids": ",".join(tracking_numbers), "h": "0"},
            )
        if not response.is_success:
            body = self._body(response)
            raise GatewayError(
                body.get("message") or "Failed to fetch NinjaVan waybill",
                upstream_status=response.status_code,
                details=body,
            )
        return response.content
