"""
Payment Gateway Adapter - Abstract Base Class

Billplz and BayarCash both implement this interface so the reconciler and
the pending-order sweep can ask "is this order paid?" without knowing which
gateway took the money.

Lifecycle:
    1. __init__(credentials)          - load API keys / tokens
    2. create_checkout(request)       - open a bill / payment intent
    3. fetch_payment_status(ref)      - ask the gateway for the truth
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

import httpx
import structlog

from core.config import get_settings
from core.errors import GatewayError

logger = structlog.get_logger()


# ── Gateway types ──────────────────────────────────────────────────────────


class GatewayName(str, Enum):
    BILLPLZ = "billplz"
    BAYARCASH = "bayarcash"


class PaymentOutcome(str, Enum):
    """What the gateway says about a payment, independent of local state."""

    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


# ── Result containers ─────────────────────────────────────────────────────


@dataclass
class CheckoutRequest:
    order_number: str
    amount: float  # MYR
    description: str
    payer_name: str
    payer_email: str
    payer_phone: str | None
    callback_url: str
    redirect_url: str


@dataclass
class CheckoutSession:
    reference: str | None  # bill id / transaction id
    payment_url: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPaymentStatus:
    reference: str
    outcome: PaymentOutcome
    raw: dict[str, Any] = field(default_factory=dict)


# ── Abstract adapter ──────────────────────────────────────────────────────


class PaymentGateway(ABC):
    """Base class for payment gateway clients."""

    gateway: ClassVar[GatewayName]

    def __init__(
        self,
        credentials: dict[str, str],
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.transport = transport
        self.timeout = get_settings().http_timeout_seconds
        self.logger = logger.bind(gateway=self.gateway.value)

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout, **kwargs)

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        body: dict | str
        try:
            body = response.json()
        except ValueError:
            body = response.text
        self.logger.error(
            "gateway.http_error",
            action=action,
            status=response.status_code,
            body=body if isinstance(body, dict) else body[:500],
        )
        message = body.get("message") if isinstance(body, dict) else None
        raise GatewayError(
            message or f"{self.gateway.value} API error: {response.status_code}",
            upstream_status=response.status_code,
            details=body,
        )

    @abstractmethod
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        """Open a payment session and return where to send the payer."""
        ...

    @abstractmethod
    async def fetch_payment_status(self, reference: str) -> GatewayPaymentStatus:
        """Query the gateway directly for the state of a payment."""
        ...


# ── Adapter registry ──────────────────────────────────────────────────────

_GATEWAY_REGISTRY: dict[GatewayName, type[PaymentGateway]] = {}


def register_gateway(gateway_cls: type[PaymentGateway]):
    """Decorator: register a gateway class under its name."""
    _GATEWAY_REGISTRY[gateway_cls.gateway] = gateway_cls
    return gateway_cls


def get_gateway(
    name: GatewayName | str,
    credentials: dict[str, str],
    transport: httpx.AsyncBaseTransport | None = None,
) -> PaymentGateway:
    """Factory: return the right gateway client for the given name."""
    gateway_name = GatewayName(name)
    gateway_cls = _GATEWAY_REGISTRY.get(gateway_name)
    if gateway_cls is None:
        raise ValueError(f"No gateway registered for: {gateway_name.value}")
    return gateway_cls(credentials=credentials, transport=transport)
