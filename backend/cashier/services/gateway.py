"""Payment gateway abstraction layer.

The gateway is the system of record for billing: it prorates, invoices and
applies coupons. Implementations only translate between the gateway's API and
the small result types below.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from cashier.core.config import settings
from cashier.core.exceptions import WebhookParseError
from cashier.schemas.invoice import InvoiceDiscount, InvoiceView


class NotificationKind:
    """Webhook kinds the reconciler acts on. Any other kind is accepted and ignored."""

    SUBSCRIPTION_CANCELED = "SubscriptionCanceled"
    SUBSCRIPTION_EXPIRED = "SubscriptionExpired"


@dataclass
class PaymentMethodDetails:
    """Default payment method as reported by the gateway."""

    token: str | None = None
    card_brand: str | None = None
    card_last_four: str | None = None
    paypal_email: str | None = None


@dataclass
class GatewayCustomer:
    customer_id: str
    payment_method: PaymentMethodDetails | None = None


@dataclass
class CreatedSubscription:
    subscription_id: str
    trial_ends_at: datetime | None = None


@dataclass
class CancelResult:
    """``ends_at`` is None for immediate cancellations; the caller stamps its own clock."""

    ends_at: datetime | None = None


@dataclass
class ResumeResult:
    trial_ends_at: datetime | None = None


@dataclass
class SwapResult:
    """A ``subscription_id`` different from the one swapped means a new gateway subscription."""

    subscription_id: str
    discounts: list[InvoiceDiscount] = field(default_factory=list)


@dataclass
class GatewaySubscription:
    """Gateway-side view of a subscription."""

    id: str
    plan_id: str
    status: str
    price: Decimal
    discounts: list[InvoiceDiscount] = field(default_factory=list)
    add_ons: list[InvoiceDiscount] = field(default_factory=list)
    trial_ends_at: datetime | None = None
    billing_period_end: datetime | None = None
    payment_method_token: str | None = None


@dataclass
class GatewayNotification:
    """A parsed inbound webhook."""

    kind: str
    subscription_id: str | None = None
    timestamp: datetime | None = None
    raw: dict[str, Any] | None = None


def notification_from_json(payload: bytes) -> GatewayNotification:
    """Parse the plain JSON notification body ``{"kind": ..., "subscription": {"id": ...}}``."""
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, ValueError):
        raise WebhookParseError("Invalid JSON payload") from None

    if not isinstance(data, dict):
        raise WebhookParseError("Webhook payload must be a JSON object")

    kind = data.get("kind")
    if not isinstance(kind, str) or not kind:
        raise WebhookParseError("Webhook payload is missing 'kind'")

    subscription = data.get("subscription") or {}
    if not isinstance(subscription, dict):
        raise WebhookParseError("Webhook 'subscription' must be an object")
    subscription_id = subscription.get("id")

    return GatewayNotification(
        kind=kind,
        subscription_id=str(subscription_id) if subscription_id is not None else None,
        raw=data,
    )


class GatewayClientBase(ABC):
    """Abstract base class for subscription gateways.

    Mutating calls are never retried by callers. Read calls
    (``fetch_subscription``, ``fetch_invoice``, ``list_invoices``) may be.
    """

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        """Return the gateway identifier."""
        pass  # pragma: no cover

    @abstractmethod
    def create_customer(
        self, owner_attrs: dict[str, Any], payment_token: str | None = None
    ) -> GatewayCustomer:
        """Create a gateway customer, vaulting ``payment_token`` when given."""
        pass  # pragma: no cover

    @abstractmethod
    def update_payment_method(self, customer_id: str, payment_token: str) -> PaymentMethodDetails:
        """Vault a new default payment method for the customer."""
        pass  # pragma: no cover

    @abstractmethod
    def create_subscription(
        self,
        customer_id: str,
        plan_id: str,
        quantity: int = 1,
        coupon: str | None = None,
        trial_days: int | None = None,
        payment_token: str | None = None,
    ) -> CreatedSubscription:
        """Create a subscription.

        ``trial_days=None`` keeps the plan's default trial, ``0`` skips it.
        ``payment_token=None`` charges the customer's default payment method.
        """
        pass  # pragma: no cover

    @abstractmethod
    def cancel_subscription(self, subscription_id: str, immediate: bool) -> CancelResult:
        """Cancel now, or at the end of the current billing period."""
        pass  # pragma: no cover

    @abstractmethod
    def resume_subscription(self, subscription_id: str) -> ResumeResult:
        """Undo a pending end-of-period cancellation."""
        pass  # pragma: no cover

    @abstractmethod
    def swap_plan(
        self, subscription_id: str, new_plan_id: str, quantity: int = 1
    ) -> SwapResult:
        """Move the subscription to another plan; the gateway prorates.

        ``quantity`` keeps the subscription priced at ``quantity`` times the
        new plan. Raises ``SubscriptionSwapFailed`` when the old subscription
        was cancelled but its replacement couldn't be created.
        """
        pass  # pragma: no cover

    @abstractmethod
    def apply_coupon(self, subscription_id: str, code: str) -> None:
        """Attach a discount to an existing subscription."""
        pass  # pragma: no cover

    @abstractmethod
    def fetch_subscription(self, subscription_id: str) -> GatewaySubscription:
        pass  # pragma: no cover

    @abstractmethod
    def fetch_invoice(self, invoice_id: str) -> InvoiceView:
        pass  # pragma: no cover

    @abstractmethod
    def list_invoices(self, customer_id: str, include_pending: bool = False) -> list[InvoiceView]:
        """Invoices for a customer, newest first."""
        pass  # pragma: no cover

    def parse_webhook(self, payload: bytes) -> GatewayNotification:
        """Turn a raw webhook body into a notification.

        The default reads the plain JSON body. Gateways that sign their
        notifications override this and verify the signature first.
        """
        return notification_from_json(payload)


def get_gateway_client(name: str = "braintree") -> GatewayClientBase:
    """Factory function to get the configured gateway client."""
    from cashier.services.gateways.braintree import BraintreeGateway

    clients: dict[str, type[GatewayClientBase]] = {
        "braintree": BraintreeGateway,
    }

    client_class = clients.get(name)
    if not client_class:
        raise ValueError(f"Unsupported gateway: {name}")

    return client_class()


def get_gateway() -> GatewayClientBase:
    """FastAPI dependency returning the gateway for the current settings."""
    return get_gateway_client(settings.gateway_name)
