"""
Integration adapters package.

Clients for the external systems the back office talks to:
  - Billplz                    (payment gateway - bills)
  - BayarCash                  (payment gateway - FPX payment intents)
  - NinjaVan                   (courier - bookings, cancellations, waybills)
  - WooCommerce                (storefront - order webhooks, parse only)

Usage:
    from integrations.base import get_gateway, GatewayName

    gateway = get_gateway(
        GatewayName.BILLPLZ,
        credentials={"api_key": "...", "collection_id": "..."},
    )
    status = await gateway.fetch_payment_status(bill_id)
"""

from integrations.base import (
    CheckoutRequest,
    CheckoutSession,
    GatewayName,
    GatewayPaymentStatus,
    PaymentGateway,
    PaymentOutcome,
    get_gateway,
    register_gateway,
)
from integrations.bayarcash import BayarCashClient
from integrations.billplz import BillplzClient
from integrations.ninjavan import NinjaVanClient

__all__ = [
    "CheckoutRequest",
    "CheckoutSession",
    "GatewayName",
    "GatewayPaymentStatus",
    "PaymentGateway",
    "PaymentOutcome",
    "get_gateway",
    "register_gateway",
    "BillplzClient",
    "BayarCashClient",
    "NinjaVanClient",
]
