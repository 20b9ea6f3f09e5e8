"""
Payment Confirmation Reconciler

Turns gateway evidence (webhooks, return callbacks, direct status lookups)
into exactly one state transition per pending order:

    pending ──paid──▶ completed   (transaction row + buyer credit + HQ debit)
    pending ─failed─▶ failed
    failed  ──paid──▶ completed   (recheck only)

Every transition goes through ``settle``, which locks the pending order row
and checks for an existing transaction before touching inventory, so
webhook retries, client polling and the Celery sweep can all race safely.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import ConfigurationError, FulfilmentError, GatewayError, NotFoundError, SignatureError
from db.models import Bundle, PendingOrder, Profile, SystemSetting, Transaction, WebhookLog
from fulfillment.identifiers import generate_order_number
from fulfillment.inventory import credit_inventory, debit_inventory
from integrations.base import CheckoutRequest, GatewayName, PaymentOutcome, get_gateway
from integrations.bayarcash import outcome_for_status, verify_callback
from integrations.billplz import bill_is_paid

logger = structlog.get_logger()

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class BuyerDetails:
    """Payer details shown on the bill / payment page."""

    full_name: str
    email: str
    phone_number: str | None = None
    idstaff: str | None = None

    @property
    def payer_name(self) -> str:
        return self.idstaff or self.full_name or "Customer"


def resolve_origin(origin: str | None, referer: str | None) -> str:
    """Scheme://host of the calling SPA, falling back to the configured origin."""
    if origin:
        return origin.rstrip("/")
    if referer:
        parts = urlsplit(referer)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    return get_settings().app_origin.rstrip("/")


def unit_price_for_role(bundle: Bundle, role: str) -> float | None:
    return bundle.agent_price if role == "agent" else bundle.master_agent_price


class PaymentReconciler:
    """Checkout creation and payment reconciliation for Billplz and BayarCash."""

    def __init__(self, db: AsyncSession, transport: httpx.AsyncBaseTransport | None = None):
        self.db = db
        self.transport = transport
        self.settings = get_settings()

    # ── Gateway credentials ────────────────────────────────────────────────

    async def _system_setting(self, key: str) -> str | None:
        result = await self.db.execute(select(SystemSetting.setting_value).where(SystemSetting.setting_key == key))
        return result.scalar_one_or_none()

    async def billplz_credentials(self) -> dict[str, str]:
        """system_settings rows win over the environment."""
        api_key = await self._system_setting("billplz_api_key") or self.settings.billplz_api_key
        collection_id = await self._system_setting("billplz_collection_id") or self.settings.billplz_collection_id
        if not api_key:
            raise ConfigurationError("Billplz API key not configured", status_code=500)
        return {
            "api_key": api_key,
            "collection_id": collection_id,
            "base_url": self.settings.billplz_base_url,
        }

    def bayarcash_credentials(self) -> dict[str, str]:
        return {
            "portal_key": self.settings.bayarcash_portal_key,
            "secret_key": self.settings.bayarcash_api_secret_key,
            "api_token": self.settings.bayarcash_api_token,
        }

    async def _gateway(self, name: GatewayName):
        if name is GatewayName.BILLPLZ:
            credentials = await self.billplz_credentials()
        else:
            credentials = self.bayarcash_credentials()
            if not credentials["api_token"]:
                raise ConfigurationError("BayarCash not configured", status_code=500)
        return get_gateway(name, credentials, transport=self.transport)

    # ── Lookups ────────────────────────────────────────────────────────────

    async def _order_by_number(self, order_number: str) -> PendingOrder | None:
        result = await self.db.execute(select(PendingOrder).where(PendingOrder.order_number == order_number))
        return result.scalar_one_or_none()

    async def _order_by_bill(self, bill_id: str) -> PendingOrder | None:
        result = await self.db.execute(
            select(PendingOrder).where(
                or_(PendingOrder.billplz_bill_id == bill_id, PendingOrder.transaction_id == bill_id)
            )
        )
        return result.scalars().first()

    async def _hq_profile_id(self):
        result = await self.db.execute(
            select(Profile.id).where(Profile.role == "hq").order_by(Profile.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def _existing_transaction(self, order: PendingOrder) -> Transaction | None:
        clauses = [Transaction.pending_order_id == order.id]
        if order.billplz_bill_id:
            clauses.append(Transaction.billplz_bill_id == order.billplz_bill_id)
        result = await self.db.execute(select(Transaction).where(or_(*clauses)).limit(1))
        return result.scalar_one_or_none()

    # ── Checkout ───────────────────────────────────────────────────────────

    async def create_checkout(
        self,
        buyer: Profile,
        bundle_id,
        quantity: int,
        units: int,
        details: BuyerDetails,
        gateway: GatewayName,
        origin: str,
    ) -> dict[str, Any]:
        """Price the bundle server-side, open a bill / intent and store the pending order."""
        result = await self.db.execute(
            select(Bundle).where(Bundle.id == bundle_id, Bundle.is_active.is_(True))
        )
        bundle = result.scalar_one_or_none()
        if bundle is None:
            raise NotFoundError("Bundle not found or inactive")
        if bundle.product is None or not bundle.product.is_active:
            raise FulfilmentError("Product is inactive")

        unit_price = unit_price_for_role(bundle, buyer.role)
        if not unit_price or unit_price <= 0:
            raise FulfilmentError("Invalid bundle pricing configuration")

        total_quantity = quantity * units
        total_price = unit_price * quantity
        order_number = await generate_order_number(self.db)
        # release the id_sequences row lock before calling out to the gateway
        await self.db.commit()

        if gateway is GatewayName.BILLPLZ:
            callback_url = f"{self.settings.public_base_url}/api/v1/payments/billplz/webhook"
        else:
            callback_url = f"{self.settings.public_base_url}/api/v1/payments/bayarcash/callback"

        client = await self._gateway(gateway)
        if gateway is GatewayName.BILLPLZ and not client.collection_id:
            raise ConfigurationError("Billplz not configured. Please contact administrator.")

        session = await client.create_checkout(
            CheckoutRequest(
                order_number=order_number,
                amount=total_price,
                description=f"Order {order_number} - {bundle.name}",
                payer_name=details.payer_name,
                payer_email=details.email,
                payer_phone=details.phone_number,
                callback_url=callback_url,
                redirect_url=f"{origin}/payment-summary?order={order_number}",
            )
        )

        order = PendingOrder(
            order_number=order_number,
            buyer_id=buyer.id,
            product_id=bundle.product_id,
            bundle_id=bundle.id,
            quantity=total_quantity,
            unit_price=unit_price,
            total_price=total_price,
            status=STATUS_PENDING,
            gateway=gateway.value,
            transaction_id=session.reference,
            billplz_bill_id=session.reference if gateway is GatewayName.BILLPLZ else None,
        )
        self.db.add(order)
        await self.db.commit()

        logger.info(
            "payment.checkout_created",
            gateway=gateway.value,
            order_number=order_number,
            reference=session.reference,
            total_price=total_price,
        )
        return {"success": True, "paymentUrl": session.payment_url, "orderNumber": order_number}

    # ── Settlement ─────────────────────────────────────────────────────────

    async def settle(
        self,
        order: PendingOrder,
        outcome: PaymentOutcome,
        reference: str | None = None,
    ) -> str:
        """Apply a gateway outcome to an order. Returns the resulting status."""
        order_id = order.id
        try:
            result = await self.db.execute(
                select(PendingOrder)
                .where(PendingOrder.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            order = result.scalar_one()

            if reference and not order.transaction_id:
                order.transaction_id = reference

            if outcome is PaymentOutcome.PAID:
                await self._complete(order)
            elif outcome is PaymentOutcome.FAILED and order.status == STATUS_PENDING:
                order.status = STATUS_FAILED
                logger.info("payment.order_failed", order_number=order.order_number, gateway=order.gateway)

            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("payment.settle_failed", order_id=str(order_id))
            raise
        return order.status

    async def _complete(self, order: PendingOrder) -> None:
        existing = await self._existing_transaction(order)
        if existing is not None:
            if order.status != STATUS_COMPLETED:
                logger.info("payment.status_corrected", order_number=order.order_number, previous=order.status)
            order.status = STATUS_COMPLETED
            return

        seller_id = await self._hq_profile_id()
        self.db.add(
            Transaction(
                buyer_id=order.buyer_id,
                seller_id=seller_id,
                product_id=order.product_id,
                pending_order_id=order.id,
                quantity=order.quantity,
                unit_price=order.unit_price,
                total_price=order.total_price,
                transaction_type="purchase",
                billplz_bill_id=order.billplz_bill_id,
            )
        )
        await credit_inventory(self.db, order.buyer_id, order.product_id, order.quantity)
        if seller_id is not None:
            await debit_inventory(self.db, seller_id, order.product_id, order.quantity, strict=False)
        else:
            logger.warning("payment.no_hq_seller", order_number=order.order_number)

        order.status = STATUS_COMPLETED
        logger.info(
            "payment.order_completed",
            order_number=order.order_number,
            gateway=order.gateway,
            quantity=order.quantity,
        )

    async def reconcile_with_gateway(self, order: PendingOrder) -> str:
        """Ask the order's gateway for the truth and settle. Used by the sweep."""
        reference = order.billplz_bill_id or order.transaction_id
        if not reference:
            logger.warning("payment.no_reference", order_number=order.order_number)
            return order.status
        client = await self._gateway(GatewayName(order.gateway))
        status = await client.fetch_payment_status(reference)
        return await self.settle(order, status.outcome)

    async def _record_webhook_failure(
        self,
        webhook_type: str,
        body: dict[str, Any],
        status: int,
        error: str,
        started: float,
    ) -> None:
        self.db.add(
            WebhookLog(
                webhook_type=webhook_type,
                request_method="POST",
                request_body=body,
                response_status=status,
                response_body={"error": error},
                error_message=error,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )
        )
        await self.db.commit()

    # ── Billplz ────────────────────────────────────────────────────────────

    async def handle_billplz_webhook(self, bill_id: str | None) -> tuple[int, str]:
        """Returns (http_status, message). The webhook body is only a hint."""
        started = time.monotonic()
        try:
            return await self._billplz_webhook(bill_id)
        except FulfilmentError as exc:
            await self._record_webhook_failure("billplz", {"id": bill_id}, exc.status_code, exc.message, started)
            raise
        except Exception as exc:
            logger.exception("payment.billplz.webhook_failed", bill_id=bill_id)
            await self.db.rollback()
            await self._record_webhook_failure("billplz", {"id": bill_id}, 500, str(exc), started)
            raise FulfilmentError("Internal server error", status_code=500) from exc

    async def _billplz_webhook(self, bill_id: str | None) -> tuple[int, str]:
        if not bill_id:
            return 400, "Missing bill ID"

        order = await self._order_by_bill(bill_id)
        if order is None:
            logger.warning("payment.billplz.webhook_unknown_bill", bill_id=bill_id)
            return 404, "Payment not found"
        if order.status != STATUS_PENDING:
            logger.info("payment.billplz.webhook_duplicate", bill_id=bill_id, status=order.status)
            return 200, "Payment already processed"

        client = await self._gateway(GatewayName.BILLPLZ)
        bill = await client.get_bill(bill_id)
        outcome = PaymentOutcome.PAID if bill_is_paid(bill) else PaymentOutcome.FAILED
        logger.info(
            "payment.billplz.webhook_received",
            bill_id=bill_id,
            paid=bill.get("paid"),
            state=bill.get("state"),
        )
        await self.settle(order, outcome)
        return 200, "OK"

    async def check_billplz_status(
        self,
        bill_id: str | None = None,
        order_number: str | None = None,
    ) -> dict[str, Any]:
        if not bill_id and not order_number:
            raise FulfilmentError("bill_id or order_number is required")

        order = None
        if order_number:
            order = await self._order_by_number(order_number)
            if bill_id is None:
                if order is None or not order.billplz_bill_id:
                    raise NotFoundError("Order not found or no bill ID available")
                bill_id = order.billplz_bill_id
        else:
            order = await self._order_by_bill(bill_id)

        client = await self._gateway(GatewayName.BILLPLZ)
        bill = await client.get_bill(bill_id)

        status = STATUS_COMPLETED if bill_is_paid(bill) else STATUS_PENDING
        if order is not None:
            if status == STATUS_COMPLETED:
                status = await self.settle(order, PaymentOutcome.PAID)
            elif order.status == STATUS_FAILED:
                status = STATUS_FAILED

        return {
            "success": True,
            "bill_id": bill_id,
            "status": status,
            "paid": bill.get("paid"),
            "state": bill.get("state"),
            "amount": bill.get("amount"),
            "paid_at": bill.get("paid_at"),
            "billplz_data": bill,
        }

    async def recheck_billplz(self, bill_id: str | None) -> dict[str, Any]:
        """Second look at a failed or pending bill, e.g. after a late FPX confirmation."""
        if not bill_id:
            raise FulfilmentError("bill_id is required")

        client = await self._gateway(GatewayName.BILLPLZ)
        bill = await client.get_bill(bill_id)

        order = await self._order_by_bill(bill_id)
        if order is None:
            raise NotFoundError("Order not found")

        if bill_is_paid(bill):
            status = await self.settle(order, PaymentOutcome.PAID)
        else:
            status = await self.settle(order, PaymentOutcome.FAILED)
            if status == STATUS_PENDING:
                status = STATUS_FAILED
        logger.info("payment.billplz.recheck", bill_id=bill_id, status=status)

        return {
            "success": True,
            "bill_id": bill_id,
            "status": status,
            "paid": bill.get("paid"),
            "state": bill.get("state"),
            "amount": bill.get("amount"),
            "paid_at": bill.get("paid_at"),
        }

    # ── BayarCash ──────────────────────────────────────────────────────────

    async def handle_bayarcash_callback(self, form: dict[str, Any], now: datetime | None = None) -> str:
        """Server-to-server form callback. Only status 3 completes an order."""
        started = time.monotonic()
        try:
            return await self._bayarcash_callback(form, now)
        except FulfilmentError as exc:
            await self._record_webhook_failure("bayarcash", form, exc.status_code, exc.message, started)
            raise
        except Exception as exc:
            logger.exception("payment.bayarcash.callback_failed", order_number=form.get("order_number"))
            await self.db.rollback()
            await self._record_webhook_failure("bayarcash", form, 500, str(exc), started)
            raise FulfilmentError("Internal server error", status_code=500) from exc

    async def _bayarcash_callback(self, form: dict[str, Any], now: datetime | None) -> str:
        is_valid, error = verify_callback(
            form,
            self.settings.bayarcash_api_secret_key,
            now=now,
            max_age_seconds=self.settings.bayarcash_callback_max_age_seconds,
            max_skew_seconds=self.settings.bayarcash_callback_max_skew_seconds,
        )
        if not is_valid:
            logger.warning(
                "payment.bayarcash.callback_rejected",
                order_number=form.get("order_number"),
                reason=error,
            )
            raise SignatureError(error or "Invalid callback", status_code=400)

        order_number = form.get("order_number")
        logger.info(
            "payment.bayarcash.callback_received",
            order_number=order_number,
            status=form.get("status"),
            status_description=form.get("status_description"),
        )
        order = await self._order_by_number(order_number) if order_number else None
        if order is None:
            logger.warning("payment.bayarcash.callback_unknown_order", order_number=order_number)
            return "OK"

        outcome = PaymentOutcome.PAID if str(form.get("status")) == "3" else PaymentOutcome.FAILED
        if outcome is PaymentOutcome.PAID and order.status != STATUS_PENDING:
            logger.info("payment.bayarcash.callback_duplicate", order_number=order_number, status=order.status)
        await self.settle(order, outcome, reference=form.get("transaction_id"))
        return "OK"

    async def handle_bayarcash_return(self, payload: dict[str, Any]) -> tuple[int, str]:
        order_number = payload.get("order_number")
        status = payload.get("status")
        if not order_number or status is None or status == "":
            return 400, "Invalid callback data"

        order = await self._order_by_number(order_number)
        if order is None:
            logger.warning("payment.bayarcash.return_unknown_order", order_number=order_number)
            return 200, "Order not found"

        outcome = outcome_for_status(status)
        logger.info("payment.bayarcash.return_received", order_number=order_number, status=status)
        await self.settle(order, outcome, reference=payload.get("transaction_id"))
        return 200, "OK"

    async def check_bayarcash_status(self, order_number: str | None) -> dict[str, Any]:
        if not order_number:
            raise FulfilmentError("Order number is required")

        order = await self._order_by_number(order_number)
        if order is None:
            raise NotFoundError("Order not found")

        if order.status == STATUS_PENDING:
            if order.transaction_id:
                client = await self._gateway(GatewayName.BAYARCASH)
                try:
                    status = await client.fetch_payment_status(order.transaction_id)
                except (GatewayError, httpx.HTTPError) as exc:
                    logger.error(
                        "payment.bayarcash.status_lookup_failed",
                        order_number=order_number,
                        error=str(exc),
                    )
                else:
                    await self.settle(order, status.outcome)
            else:
                logger.warning("payment.bayarcash.no_transaction_id", order_number=order_number)

        return {"status": order.status, "order": serialize_order(order)}


def serialize_order(order: PendingOrder) -> dict[str, Any]:
    return {
        "id": str(order.id),
        "order_number": order.order_number,
        "buyer_id": str(order.buyer_id),
        "product_id": str(order.product_id),
        "bundle_id": str(order.bundle_id) if order.bundle_id else None,
        "quantity": order.quantity,
        "unit_price": order.unit_price,
        "total_price": order.total_price,
        "status": order.status,
        "gateway": order.gateway,
        "transaction_id": order.transaction_id,
        "billplz_bill_id": order.billplz_bill_id,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
