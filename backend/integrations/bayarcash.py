"""
BayarCash Payment Gateway Client

Payment intents (API v2) are signed with an HMAC-SHA256 checksum over a
fixed set of fields, sorted by key and joined with "|". Server-to-server
callbacks carry a checksum over the callback fields computed the same way,
plus a timestamp that must be recent.

Status codes:
    0 = new, 1 = pending/processing, 2 = failed, 3 = successful, 4 = cancelled
"""

import hmac
from datetime import datetime, timedelta, timezone

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.errors import GatewayError
from core.security import hmac_sha256_hex
from integrations.base import (
    CheckoutRequest,
    CheckoutSession,
    GatewayName,
    GatewayPaymentStatus,
    PaymentGateway,
    PaymentOutcome,
    register_gateway,
)

REQUEST_CHECKSUM_FIELDS = ("amount", "order_number", "payer_email", "payer_name", "payment_channel")

CALLBACK_CHECKSUM_FIELDS = (
    "record_type",
    "transaction_id",
    "exchange_reference_number",
    "exchange_transaction_id",
    "order_number",
    "currency",
    "amount",
    "payer_name",
    "payer_email",
    "payer_bank_name",
    "status",
    "status_description",
    "datetime",
)

STATUS_LABELS = {
    "0": "New",
    "1": "Pending",
    "2": "Failed",
    "3": "Successful",
    "4": "Cancelled",
}

PAYMENT_CHANNEL_FPX = "1"


def _checksum(data: dict, fields: tuple[str, ...], secret_key: str) -> str:
    values = []
    for key in sorted(fields):
        value = data.get(key)
        values.append("" if value is None else str(value))
    return hmac_sha256_hex(secret_key, "|".join(values))


def create_request_checksum(data: dict, secret_key: str) -> str:
    return _checksum(data, REQUEST_CHECKSUM_FIELDS, secret_key)


def create_callback_checksum(data: dict, secret_key: str) -> str:
    return _checksum(data, CALLBACK_CHECKSUM_FIELDS, secret_key)


def _parse_callback_datetime(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def verify_callback(
    data: dict,
    secret_key: str,
    *,
    now: datetime | None = None,
    max_age_seconds: int = 300,
    max_skew_seconds: int = 60,
) -> tuple[bool, str | None]:
    """
    Check a callback's timestamp window and checksum.

    Returns (is_valid, error). Callbacks without a datetime skip the
    freshness check but must still match the checksum.
    """
    now = now or datetime.now(timezone.utc)
    raw_datetime = data.get("datetime")
    if raw_datetime:
        try:
            sent_at = _parse_callback_datetime(str(raw_datetime))
        except ValueError:
            return False, "Invalid datetime format"
        age = now - sent_at
        if age > timedelta(seconds=max_age_seconds):
            return False, "Callback timestamp expired"
        if age < -timedelta(seconds=max_skew_seconds):
            return False, "Invalid callback timestamp"

    provided = str(data.get("checksum") or "")
    expected = create_callback_checksum(data, secret_key)
    if not provided or not hmac.compare_digest(provided, expected):
        return False, "Invalid checksum"
    return True, None


def outcome_for_status(status: int | str | None) -> PaymentOutcome:
    try:
        code = int(status)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return PaymentOutcome.PENDING
    if code == 3:
        return PaymentOutcome.PAID
    if code in (2, 4):
        return PaymentOutcome.FAILED
    return PaymentOutcome.PENDING


def extract_transaction_id(result: dict) -> str | None:
    data = result.get("data") if isinstance(result.get("data"), dict) else {}
    return result.get("id") or result.get("transaction_id") or data.get("id") or data.get("transaction_id")


@register_gateway
class BayarCashClient(PaymentGateway):
    """Client for BayarCash v2 (payment intents) and v3 (transactions)."""

    gateway = GatewayName.BAYARCASH

    def __init__(self, credentials: dict[str, str], transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(credentials, transport)
        settings = get_settings()
        self.portal_key = credentials.get("portal_key", "")
        self.secret_key = credentials.get("secret_key", "")
        self.api_token = credentials.get("api_token", "")
        self.base_url = credentials.get("base_url") or settings.bayarcash_base_url
        self.status_base_url = credentials.get("status_base_url") or settings.bayarcash_status_base_url
        self.headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }

    async def create_payment_intent(self, payload: dict) -> dict:
        """POST /payment-intents with a request checksum. Never retried."""
        body = {**payload, "checksum": create_request_checksum(payload, self.secret_key)}
        async with self._client() as client:
            response = await client.post(f"{self.base_url}/payment-intents", headers=self.headers, json=body)

        self.logger.info("bayarcash.intent_response", status=response.status_code)
        try:
            result = response.json()
        except ValueError:
            raise GatewayError(
                f"Payment API returned invalid response. Status: {response.status_code}",
                upstream_status=response.status_code,
                details=response.text[:500],
            )
        if not response.is_success:
            raise GatewayError(
                result.get("message") or "Failed to create payment intent",
                upstream_status=response.status_code,
                details=result,
            )
        return result

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def get_transaction(self, transaction_id: str) -> dict:
        async with self._client() as client:
            response = await client.get(
                f"{self.status_base_url}/transactions/{transaction_id}",
                headers=self.headers,
            )
        self._raise_for_status(response, "get_transaction")
        return response.json()

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        payload = {
            "portal_key": self.portal_key,
            "order_number": request.order_number,
            "amount": f"{request.amount:.2f}",
            "payer_name": request.payer_name,
            "payer_email": request.payer_email,
            "payer_telephone_number": request.payer_phone,
            "callback_url": request.callback_url,
            "return_url": request.redirect_url,
            "payment_channel": PAYMENT_CHANNEL_FPX,
        }
        result = await self.create_payment_intent(payload)
        transaction_id = extract_transaction_id(result)
        if not transaction_id:
            self.logger.warning("bayarcash.missing_transaction_id", order_number=request.order_number)
        return CheckoutSession(reference=transaction_id, payment_url=result.get("url"), raw=result)

    async def fetch_payment_status(self, reference: str) -> GatewayPaymentStatus:
        transaction = await self.get_transaction(reference)
        return GatewayPaymentStatus(
            reference=reference,
            outcome=outcome_for_status(transaction.get("status")),
            raw=transaction,
        )
