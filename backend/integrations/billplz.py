"""
Billplz Payment Gateway Client

Bills are created against a collection with HTTP Basic auth (API key as the
username, empty password). A bill counts as paid only when the API itself
reports ``paid: true`` AND ``state: "paid"``; webhook payloads are treated
as a hint to go and ask.
"""

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from integrations.base import (
    CheckoutRequest,
    CheckoutSession,
    GatewayName,
    GatewayPaymentStatus,
    PaymentGateway,
    PaymentOutcome,
    register_gateway,
)


def bill_is_paid(bill: dict) -> bool:
    return bill.get("paid") is True and bill.get("state") == "paid"


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


@register_gateway
class BillplzClient(PaymentGateway):
    """Client for Billplz v3/v4 API interactions."""

    gateway = GatewayName.BILLPLZ

    def __init__(self, credentials: dict[str, str], transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(credentials, transport)
        self.api_key = credentials.get("api_key", "")
        self.collection_id = credentials.get("collection_id", "")
        self.base_url = credentials.get("base_url") or get_settings().billplz_base_url

    @property
    def auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.api_key, "")

    async def create_bill(self, form: dict[str, str]) -> dict:
        """POST /v3/bills (form-encoded). Never retried: a retry could open a second bill."""
        async with self._client(auth=self.auth) as client:
            response = await client.post(f"{self.base_url}/v3/bills", data=form)
        self._raise_for_status(response, "create_bill")
        return response.json()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def get_bill(self, bill_id: str) -> dict:
        """GET /v3/bills/{id} - the authoritative bill state."""
        async with self._client(auth=self.auth) as client:
            response = await client.get(f"{self.base_url}/v3/bills/{bill_id}")
        self._raise_for_status(response, "get_bill")
        return response.json()

    async def activate_receipt_delivery(self) -> bool:
        """Best effort: ask Billplz to email receipts for this collection."""
        url = f"{self.base_url}/v4/collections/{self.collection_id}/customer_receipt_delivery/activate"
        try:
            async with self._client(auth=self.auth) as client:
                response = await client.post(url)
        except httpx.HTTPError as exc:
            self.logger.warning("billplz.receipt_delivery_failed", error=str(exc))
            return False
        if not response.is_success:
            self.logger.warning("billplz.receipt_delivery_failed", status=response.status_code)
            return False
        return True

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        form = {
            "collection_id": self.collection_id,
            "email": request.payer_email,
            "name": request.payer_name,
            "amount": str(to_cents(request.amount)),
            "description": request.description,
            "callback_url": request.callback_url,
            "redirect_url": request.redirect_url,
            "reference_1_label": "Order Number",
            "reference_1": request.order_number,
        }
        if request.payer_phone:
            form["mobile"] = request.payer_phone

        bill = await self.create_bill(form)
        await self.activate_receipt_delivery()
        self.logger.info("billplz.bill_created", bill_id=bill.get("id"), order_number=request.order_number)
        return CheckoutSession(reference=bill.get("id"), payment_url=bill.get("url"), raw=bill)

    async def fetch_payment_status(self, reference: str) -> GatewayPaymentStatus:
        bill = await self.get_bill(reference)
        if bill_is_paid(bill):
            outcome = PaymentOutcome.PAID
        elif bill.get("state") == "deleted":
            outcome = PaymentOutcome.FAILED
        else:
            # a "due" bill can still be paid; only the webhook closes it as failed
            outcome = PaymentOutcome.PENDING
        return GatewayPaymentStatus(reference=reference, outcome=outcome, raw=bill)
