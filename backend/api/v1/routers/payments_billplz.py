"""
Billplz Payments Router - bill checkout, webhook and status reconciliation.

Flow:
  1. SPA calls /checkout → Billplz bill created, pending order stored
  2. Payer completes FPX on Billplz → Billplz POSTs /webhook (form-encoded)
  3. Payment summary page polls /status until completed or failed
  4. Support staff can /recheck a failed bill after a late bank confirmation

The webhook body is never trusted: the bill is always re-read from Billplz.
"""

from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_profile, get_db, get_http_transport
from db.models import Profile
from fulfillment.reconciler import BuyerDetails, PaymentReconciler, resolve_origin
from integrations.base import GatewayName

router = APIRouter(prefix="/api/v1/payments/billplz", tags=["payments"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PayerProfile(BaseModel):
    idstaff: str | None = None
    full_name: str | None = None
    email: str = Field(..., min_length=3, max_length=255)
    phone_number: str | None = None


class BillplzCheckoutRequest(BaseModel):
    bundle_id: UUID = Field(..., alias="bundleId")
    quantity: int = Field(..., gt=0)
    units: int = Field(..., gt=0)
    profile: PayerProfile

    model_config = {"populate_by_name": True}


class CheckoutResponse(BaseModel):
    success: bool
    paymentUrl: str | None
    orderNumber: str


class RecheckRequest(BaseModel):
    bill_id: str | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_billplz_checkout(
    request: Request,
    body: BillplzCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Open a Billplz bill priced from the caller's role."""
    reconciler = PaymentReconciler(db, transport)
    return await reconciler.create_checkout(
        buyer=profile,
        bundle_id=body.bundle_id,
        quantity=body.quantity,
        units=body.units,
        details=BuyerDetails(
            full_name=body.profile.full_name or "",
            email=body.profile.email,
            phone_number=body.profile.phone_number,
            idstaff=body.profile.idstaff,
        ),
        gateway=GatewayName.BILLPLZ,
        origin=resolve_origin(request.headers.get("origin"), request.headers.get("referer")),
    )


@router.post("/webhook", response_class=PlainTextResponse)
async def billplz_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Billplz server-to-server callback (form-encoded)."""
    form = await request.form()
    bill_id = form.get("id") or form.get("billplz[id]")
    status_code, message = await PaymentReconciler(db, transport).handle_billplz_webhook(
        str(bill_id) if bill_id else None
    )
    return PlainTextResponse(message, status_code=status_code)


@router.get("/status")
async def billplz_status(
    bill_id: str | None = Query(None),
    order_number: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Read the bill straight from Billplz and settle the order if it is paid."""
    return await PaymentReconciler(db, transport).check_billplz_status(bill_id=bill_id, order_number=order_number)


@router.post("/recheck")
async def billplz_recheck(
    body: RecheckRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    return await PaymentReconciler(db, transport).recheck_billplz(body.bill_id)
