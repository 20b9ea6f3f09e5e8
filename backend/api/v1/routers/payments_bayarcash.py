"""
BayarCash Payments Router - FPX payment intents and callbacks.

BayarCash reports a payment twice: a signed form-encoded callback to
/callback and a JSON return callback to /return. Either one may arrive
first; settlement is idempotent, so both are applied.
"""

from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_profile, get_db, get_http_transport
from db.models import Profile
from fulfillment.reconciler import BuyerDetails, PaymentReconciler, resolve_origin
from integrations.base import GatewayName

router = APIRouter(prefix="/api/v1/payments/bayarcash", tags=["payments"])

MALAYSIAN_PHONE_PATTERN = r"^(\+?6?01)[0-46-9]-*[0-9]{7,8}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ─── Schemas ────────────────────────────────────────────────────────────────


class PayerProfile(BaseModel):
    idstaff: str | None = Field(None, min_length=1, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    phone_number: str = Field(..., pattern=MALAYSIAN_PHONE_PATTERN)


class BayarCashCheckoutRequest(BaseModel):
    bundle_id: UUID = Field(..., alias="bundleId")
    quantity: int = Field(..., ge=1, le=10000)
    units: int = Field(..., ge=1, le=100)
    profile: PayerProfile

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class CheckoutResponse(BaseModel):
    success: bool
    paymentUrl: str | None
    orderNumber: str


class StatusRequest(BaseModel):
    order_number: str | None = Field(None, alias="orderNumber")

    model_config = {"populate_by_name": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_bayarcash_checkout(
    request: Request,
    body: BayarCashCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Create an FPX payment intent priced from the caller's role."""
    return await PaymentReconciler(db, transport).create_checkout(
        buyer=profile,
        bundle_id=body.bundle_id,
        quantity=body.quantity,
        units=body.units,
        details=BuyerDetails(
            full_name=body.profile.full_name,
            email=body.profile.email,
            phone_number=body.profile.phone_number,
            idstaff=body.profile.idstaff,
        ),
        gateway=GatewayName.BAYARCASH,
        origin=resolve_origin(request.headers.get("origin"), request.headers.get("referer")),
    )


@router.post("/callback", response_class=PlainTextResponse)
async def bayarcash_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Signed form callback. Bad checksum or stale timestamp → 400."""
    form = await request.form()
    message = await PaymentReconciler(db).handle_bayarcash_callback(
        {key: value for key, value in form.items() if isinstance(value, str)}
    )
    return PlainTextResponse(message)


@router.post("/return", response_class=PlainTextResponse)
async def bayarcash_return(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """JSON return callback. Always acknowledged once the payload is readable."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return PlainTextResponse("Invalid callback data", status_code=400)
    status_code, message = await PaymentReconciler(db).handle_bayarcash_return(payload)
    return PlainTextResponse(message, status_code=status_code)


@router.post("/status")
async def bayarcash_status(
    body: StatusRequest,
    db: AsyncSession = Depends(get_db),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Polled by the payment summary page until the order leaves pending."""
    return await PaymentReconciler(db, transport).check_bayarcash_status(body.order_number)
