"""
WooCommerce Order Webhook Parsing

Pure functions that turn a WooCommerce ``order.*`` webhook body into the
fields of a sale record. No I/O happens here; ingestion and persistence
live in fulfillment.woocommerce.
"""

import re
from dataclasses import dataclass
from typing import Any

TEST_CONNECTION_ACTION = "woocommerce_rest_api_test_connection"
PROCESSING_STATUS = "processing"
BUNDLE_SEPARATOR = " + "

STATE_ALIASES = {
    "wp kuala lumpur": "Kuala Lumpur",
    "kuala lumpur": "Kuala Lumpur",
    "kl": "Kuala Lumpur",
    "selangor": "Selangor",
    "johor": "Johor",
    "penang": "Penang",
    "pulau pinang": "Penang",
    "perak": "Perak",
    "kedah": "Kedah",
    "kelantan": "Kelantan",
    "terengganu": "Terengganu",
    "pahang": "Pahang",
    "negeri sembilan": "Negeri Sembilan",
    "melaka": "Melaka",
    "malacca": "Melaka",
    "sabah": "Sabah",
    "sarawak": "Sarawak",
    "perlis": "Perlis",
    "labuan": "Labuan",
    "putrajaya": "Putrajaya",
}


@dataclass
class WooOrderFields:
    woo_order_id: int
    customer_name: str
    phone: str
    address: str
    postcode: str
    city: str
    state: str
    product_name: str
    sku: str
    quantity: int
    total_price: float
    payment_method: str  # COD | CASH
    payment_label: str  # COD | Online Transfer

    @property
    def is_cod(self) -> bool:
        return self.payment_method == "COD"

    @property
    def unit_price(self) -> float:
        return self.total_price / self.quantity if self.quantity else self.total_price


def is_ping(body: Any) -> bool:
    """WooCommerce test deliveries carry a webhook_id, a test action, or no order."""
    if not isinstance(body, dict):
        return True
    return (
        "webhook_id" in body
        or body.get("action") == TEST_CONNECTION_ACTION
        or not body.get("id")
        or not body.get("status")
    )


def format_phone_number(phone: str | None) -> str:
    """Normalise to local 0xxxxxxxxx: digits only, 60 prefix dropped."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("60"):
        digits = "0" + digits[2:]
    if not digits.startswith("0"):
        digits = "0" + digits
    return digits


def map_state(state: str | None) -> str:
    if not state:
        return ""
    return STATE_ALIASES.get(state.strip().lower(), state)


def _full_name(contact: dict) -> str:
    return f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()


def map_order(order: dict) -> WooOrderFields:
    billing = order.get("billing") or {}
    shipping = order.get("shipping") or {}
    contact = shipping if shipping.get("address_1") else billing

    line_items = order.get("line_items") or []
    product_name = ", ".join(item.get("name", "") for item in line_items)
    quantity = sum(int(item.get("quantity") or 0) for item in line_items)
    sku = line_items[0].get("sku") if line_items else None

    if len(line_items) > 1 and any(item.get("sku") for item in line_items):
        # one parcel, several products: record it in bundle form so stock moves per product
        sku = BUNDLE_SEPARATOR.join(
            f"{item.get('sku') or item.get('name', '')}-{int(item.get('quantity') or 0)}"
            for item in line_items
            if int(item.get("quantity") or 0) > 0
        )
        quantity = 1

    is_cod = (order.get("payment_method") or "").lower() == "cod"

    return WooOrderFields(
        woo_order_id=int(order["id"]),
        customer_name=_full_name(contact) or _full_name(billing),
        phone=format_phone_number(contact.get("phone") or billing.get("phone")),
        address=", ".join(part for part in (contact.get("address_1"), contact.get("address_2")) if part),
        postcode=contact.get("postcode") or "",
        city=contact.get("city") or "",
        state=map_state(contact.get("state")),
        product_name=product_name,
        sku=sku or product_name,
        quantity=quantity,
        total_price=float(order.get("total") or 0),
        payment_method="COD" if is_cod else "CASH",
        payment_label="COD" if is_cod else "Online Transfer",
    )
