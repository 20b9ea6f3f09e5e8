"""
WooCommerce order ingestion.

One webhook delivery per call. Each stage writes a ``webhook_logs`` row so
a failed delivery can be diagnosed from the database alone:

    received  →  (401 bad signature | 200 skipped | 200 duplicate)
              →  sale ID → courier booking → customer upsert → sale record
              →  200 success | 500 failure (courier booking cancelled)

The marketer's idstaff doubles as the WooCommerce webhook secret.
"""

import json
import time
from collections.abc import Mapping
from datetime import date
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import FulfilmentError
from core.security import verify_base64_signature
from db.models import Customer, CustomerPurchase, Profile, WebhookLog
from fulfillment.courier import CourierService
from fulfillment.identifiers import generate_sale_id
from integrations.ninjavan import Parcel
from integrations.woocommerce import PROCESSING_STATUS, WooOrderFields, is_ping, map_order

logger = structlog.get_logger()

WEBHOOK_TYPE = "woocommerce"
SIGNATURE_HEADER = "x-wc-webhook-signature"


class WooCommerceIngest:
    def __init__(self, db: AsyncSession, transport: httpx.AsyncBaseTransport | None = None):
        self.db = db
        self.transport = transport
        self.settings = get_settings()
        self._started = time.monotonic()

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    async def _audit(
        self,
        profile_id,
        headers: dict,
        status: int,
        response: dict,
        body: Any = None,
        error: str | None = None,
        order_id=None,
    ) -> None:
        self.db.add(
            WebhookLog(
                webhook_type=WEBHOOK_TYPE,
                request_method="POST",
                request_body=body,
                request_headers=headers,
                profile_id=profile_id,
                order_id=order_id,
                response_status=status,
                response_body=response,
                error_message=error,
                processing_time_ms=self._elapsed_ms() if status else 0,
            )
        )
        await self.db.commit()

    async def handle(
        self,
        marketer_idstaff: str | None,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> tuple[int, dict]:
        """Process one delivery. Returns (http_status, response_body)."""
        self._started = time.monotonic()
        if not marketer_idstaff:
            return 400, {"error": "marketer_id (idstaff) is required as query parameter"}

        result = await self.db.execute(select(Profile).where(Profile.idstaff == marketer_idstaff))
        marketer = result.scalar_one_or_none()
        if marketer is None:
            return 400, {"error": f"Marketer not found with idstaff: {marketer_idstaff}"}
        marketer_id = marketer.id

        log = logger.bind(marketer=marketer.idstaff)
        if not raw_body or not raw_body.strip():
            log.info("webhook.woocommerce.ping", reason="empty_body")
            return 200, {"success": True, "message": "Webhook endpoint is active"}
        try:
            order = json.loads(raw_body)
        except ValueError:
            log.info("webhook.woocommerce.ping", reason="non_json_body")
            return 200, {"success": True, "message": "Webhook endpoint is active"}
        if is_ping(order):
            log.info("webhook.woocommerce.ping", reason="test_delivery")
            return 200, {"success": True, "message": "Webhook test successful"}

        signature = headers.get(SIGNATURE_HEADER, "")
        audit_headers = {
            "signature": "present" if signature else "missing",
            "source": headers.get("x-wc-webhook-source", ""),
            "topic": headers.get("x-wc-webhook-topic", ""),
            "webhookId": headers.get("x-wc-webhook-id", ""),
        }
        log = log.bind(woo_order_id=order.get("id"))
        log.info("webhook.woocommerce.received", status=order.get("status"), topic=audit_headers["topic"])
        await self._audit(
            marketer_id, audit_headers, 0, {"stage": "received", "status": order.get("status")}, body=order
        )

        try:
            return await self._process(marketer, order, raw_body, signature, audit_headers)
        except Exception as exc:
            await self.db.rollback()
            log.exception("webhook.woocommerce.failed")
            await self._audit(marketer_id, audit_headers, 500, {"error": str(exc)}, body=order, error=str(exc))
            return 500, {"error": "Internal server error", "details": str(exc)}

    async def _process(
        self,
        marketer: Profile,
        order: dict,
        raw_body: bytes,
        signature: str,
        audit_headers: dict,
    ) -> tuple[int, dict]:
        marketer_id = marketer.id
        log = logger.bind(marketer=marketer.idstaff, woo_order_id=order.get("id"))

        if signature:
            if not verify_base64_signature(raw_body, signature, marketer.idstaff):
                log.warning("webhook.woocommerce.invalid_signature")
                await self._audit(
                    marketer.id,
                    audit_headers,
                    401,
                    {"error": "Invalid signature"},
                    body=order,
                    error="Invalid webhook signature",
                )
                return 401, {
                    "error": "Invalid webhook signature. Use your idstaff as the webhook secret in WooCommerce."
                }
        elif not self.settings.woocommerce_allow_unsigned:
            log.warning("webhook.woocommerce.missing_signature")
            await self._audit(
                marketer.id,
                audit_headers,
                401,
                {"error": "Missing signature"},
                body=order,
                error="Missing webhook signature",
            )
            return 401, {"error": "Missing webhook signature"}

        if order.get("status") != PROCESSING_STATUS:
            log.info("webhook.woocommerce.skipped", status=order.get("status"))
            return 200, {"success": True, "message": f"Skipped - order status is {order.get('status')}"}

        fields = map_order(order)
        result = await self.db.execute(
            select(CustomerPurchase).where(CustomerPurchase.woo_order_id == fields.woo_order_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            log.info("webhook.woocommerce.duplicate", existing_order_id=str(existing.id))
            return 200, {
                "success": True,
                "message": "Order already processed",
                "existing_order_id": str(existing.id),
                "id_sale": existing.id_sale,
                "tracking_number": existing.tracking_number,
            }

        id_sale = await generate_sale_id(self.db)
        # release the id_sequences row lock before the courier round trip
        await self.db.commit()
        tracking_number = ""
        if marketer.branch_id:
            tracking_number = await self._book_courier(marketer, fields, id_sale)

        try:
            purchase = await self._record_sale(marketer, fields, id_sale, tracking_number)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            log.error("webhook.woocommerce.insert_failed", error=str(exc))
            if tracking_number:
                await self._cancel_courier(marketer_id, tracking_number)
            await self._audit(
                marketer_id,
                audit_headers,
                500,
                {"error": str(exc)},
                body=order,
                error=str(exc),
            )
            return 500, {"error": "Failed to create order", "details": str(exc)}

        response = {
            "success": True,
            "order_id": str(purchase.id),
            "id_sale": id_sale,
            "tracking_number": tracking_number,
        }
        await self._audit(marketer_id, audit_headers, 200, response, body=order, order_id=purchase.id)
        log.info("webhook.woocommerce.ingested", id_sale=id_sale, tracking_number=tracking_number)
        return 200, {
            **response,
            "message": "Order created successfully",
            "ninjavan_success": bool(tracking_number),
        }

    async def _book_courier(self, marketer: Profile, fields: WooOrderFields, id_sale: str) -> str:
        parcel = Parcel(
            customer_name=fields.customer_name,
            phone=fields.phone,
            address=fields.address,
            postcode=fields.postcode,
            city=fields.city,
            state=fields.state,
            price=fields.total_price,
            payment_method=fields.payment_method,
            product_name=fields.product_name,
            quantity=fields.quantity,
            id_sale=id_sale,
            marketer_id_staff=marketer.idstaff,
        )
        try:
            booking = await CourierService(self.db, self.transport).book(marketer.id, parcel)
        except (FulfilmentError, httpx.HTTPError) as exc:
            logger.error("webhook.woocommerce.courier_failed", id_sale=id_sale, error=str(exc))
            return ""
        return booking["trackingNumber"]

    async def _cancel_courier(self, marketer_id, tracking_number: str) -> None:
        try:
            await CourierService(self.db, self.transport).cancel(marketer_id, tracking_number)
        except (FulfilmentError, httpx.HTTPError) as exc:
            logger.error(
                "webhook.woocommerce.compensation_failed",
                tracking_number=tracking_number,
                error=str(exc),
            )
        else:
            logger.info("webhook.woocommerce.courier_compensated", tracking_number=tracking_number)

    async def _record_sale(
        self,
        marketer: Profile,
        fields: WooOrderFields,
        id_sale: str,
        tracking_number: str,
    ) -> CustomerPurchase:
        today = date.today()
        result = await self.db.execute(select(Customer).where(Customer.phone == fields.phone))
        customer = result.scalar_one_or_none()
        if customer is None:
            customer = Customer(phone=fields.phone, created_by=marketer.id)
            self.db.add(customer)
        customer.name = fields.customer_name
        customer.address = fields.address
        customer.postcode = fields.postcode
        customer.city = fields.city
        customer.state = fields.state
        await self.db.flush()

        purchase = CustomerPurchase(
            customer_id=customer.id,
            seller_id=marketer.branch_id,
            marketer_id=marketer.id,
            marketer_id_staff=marketer.idstaff,
            customer_name=fields.customer_name,
            phone=fields.phone,
            address=fields.address,
            postcode=fields.postcode,
            city=fields.city,
            state=fields.state,
            product_name=fields.product_name,
            sku=fields.sku,
            quantity=fields.quantity,
            unit_price=fields.unit_price,
            total_price=fields.total_price,
            profit=fields.total_price,
            courier="Ninjavan",
            id_sale=id_sale,
            tracking_number=tracking_number,
            platform="WooCommerce",
            platform_type="Website",
            customer_type="NP",
            closing_type="Website",
            payment_method=fields.payment_method,
            payment_channel=None if fields.is_cod else "FPX",
            payment_date=None if fields.is_cod else today,
            staff_note=f"WooCommerce Order #{fields.woo_order_id}",
            delivery_status="Pending",
            date_order=today,
            woo_order_id=fields.woo_order_id,
        )
        self.db.add(purchase)
        await self.db.commit()
        return purchase
