"""
Courier Router - NinjaVan bookings for the caller's branch.

Tokens are cached per courier account; see fulfillment.courier.
"""

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_profile, get_db, get_http_transport
from db.models import Profile
from fulfillment.courier import CourierService
from integrations.ninjavan import Parcel

router = APIRouter(prefix="/api/v1/courier/ninjavan", tags=["courier"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CourierOrderRequest(BaseModel):
    customer_name: str = Field(..., alias="customerName", min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    postcode: str = ""
    city: str = ""
    state: str = ""
    price: float = Field(..., ge=0)
    payment_method: str = Field(..., alias="paymentMethod")
    product_name: str = Field(..., alias="productName")
    quantity: int = Field(1, ge=1)
    id_sale: str | None = Field(None, alias="idSale")
    marketer_id_staff: str | None = Field(None, alias="marketerIdStaff")

    model_config = {"populate_by_name": True}


class CourierOrderResponse(BaseModel):
    success: bool
    trackingNumber: str
    message: str


class CancelRequest(BaseModel):
    tracking_number: str | None = Field(None, alias="trackingNumber")

    model_config = {"populate_by_name": True}


class WaybillRequest(BaseModel):
    tracking_numbers: list[str] = Field(..., alias="trackingNumbers", min_length=1)

    model_config = {"populate_by_name": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/orders", response_model=CourierOrderResponse)
async def create_courier_order(
    body: CourierOrderRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    parcel = Parcel(
        customer_name=body.customer_name,
        phone=body.phone,
        address=body.address,
        postcode=body.postcode,
        city=body.city,
        state=body.state,
        price=body.price,
        payment_method=body.payment_method,
        product_name=body.product_name,
        quantity=body.quantity,
        id_sale=body.id_sale,
        marketer_id_staff=body.marketer_id_staff,
    )
    return await CourierService(db, transport).book(profile.id, parcel)


@router.post("/cancel")
async def cancel_courier_order(
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Cancel a booking. An order NinjaVan already cancelled counts as success."""
    return await CourierService(db, transport).cancel(profile.id, body.tracking_number)


@router.post("/waybill")
async def courier_waybill(
    body: WaybillRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    """Combined waybill PDF for the selected tracking numbers."""
    pdf = await CourierService(db, transport).waybill(profile.id, body.tracking_numbers)
    return Response(content=pdf, media_type="application/pdf")
