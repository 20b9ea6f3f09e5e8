"""
Webhooks Router - inbound storefront webhooks.

WooCommerce is configured per marketer with
``/api/v1/webhooks/woocommerce?marketer_id=<idstaff>`` and the marketer's
idstaff as the webhook secret.
"""

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_http_transport
from fulfillment.woocommerce import WooCommerceIngest

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/woocommerce")
async def woocommerce_webhook(
    request: Request,
    marketer_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    body = await request.body()
    status_code, payload = await WooCommerceIngest(db, transport).handle(marketer_id, body, request.headers)
    return JSONResponse(status_code=status_code, content=payload)
