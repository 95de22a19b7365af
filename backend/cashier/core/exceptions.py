"""
Subscription mirror exceptions.

Gateway failures keep the gateway's own reason and payload so callers see
exactly what the gateway reported. Local precondition failures are raised
before any gateway call is attempted.
"""

from typing import Any


class BillingError(Exception):
    """
    Base error with API-friendly context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "detail": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class GatewayError(BillingError):
    """Any failure reported by, or while talking to, the payment gateway."""

    def __init__(
        self,
        message: str,
        error_code: str = "GATEWAY_ERROR",
        status_code: int = 502,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_code, status_code=status_code, context=context)


class GatewayRejected(GatewayError):
    """The gateway refused the request (card decline, invalid token, invalid coupon)."""

    def __init__(
        self,
        message: str,
        reason_code: str | None = None,
        payload: Any = None,
    ):
        context: dict[str, Any] = {}
        if reason_code:
            context["reason_code"] = reason_code
        super().__init__(message, "GATEWAY_REJECTED", status_code=402, context=context)
        self.reason_code = reason_code
        self.payload = payload


class SubscriptionCreationFailed(GatewayRejected):
    """The gateway rejected a new subscription; nothing was persisted locally."""

    def __init__(
        self,
        message: str,
        reason_code: str | None = None,
        payload: Any = None,
    ):
        super().__init__(message, reason_code=reason_code, payload=payload)
        self.error_code = "SUBSCRIPTION_CREATION_FAILED"


class GatewayUnavailable(GatewayError):
    """Transient transport failure (timeout, 5xx, throttling). Safe to retry for reads."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "GATEWAY_UNAVAILABLE", status_code=503, context=context)


class GatewayResourceNotFound(GatewayError):
    """The gateway has no resource with the requested id."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} {resource_id} not found at gateway",
            "GATEWAY_RESOURCE_NOT_FOUND",
            status_code=404,
            context={"resource": resource, "resource_id": resource_id},
        )


class SubscriptionSwapFailed(GatewayRejected):
    """A swap failed after the gateway had already cancelled the old subscription.

    Raised when the gateway has to replace the subscription (billing frequency
    change) and creating the replacement failed. ``previous_cancelled`` tells
    the caller the old gateway subscription is gone.
    """

    def __init__(
        self,
        message: str,
        reason_code: str | None = None,
        payload: Any = None,
        previous_cancelled: bool = True,
    ):
        super().__init__(message, reason_code=reason_code, payload=payload)
        self.error_code = "SUBSCRIPTION_SWAP_FAILED"
        self.previous_cancelled = previous_cancelled
        self.context["previous_cancelled"] = previous_cancelled


class CannotResumeSubscription(BillingError):
    """Resume requested outside of the grace period."""

    def __init__(self, subscription_id: str | None = None):
        context = {"subscription_id": subscription_id} if subscription_id else {}
        super().__init__(
            "Unable to resume subscription that is not within grace period.",
            "CANNOT_RESUME_SUBSCRIPTION",
            status_code=409,
            context=context,
        )


class CannotSwapSubscription(BillingError):
    """Swap requested for a subscription that has already ended."""

    def __init__(self, subscription_id: str | None = None):
        context = {"subscription_id": subscription_id} if subscription_id else {}
        super().__init__(
            "Unable to swap plans on a subscription that has ended.",
            "CANNOT_SWAP_SUBSCRIPTION",
            status_code=409,
            context=context,
        )


class SubscriptionAlreadyExists(BillingError):
    """The owner already has a subscription under this label that has not ended."""

    def __init__(self, owner_id: str, name: str, subscription_id: str | None = None):
        context = {"owner_id": owner_id, "name": name}
        if subscription_id:
            context["subscription_id"] = subscription_id
        super().__init__(
            f"Owner {owner_id} already has a '{name}' subscription that has not ended.",
            "SUBSCRIPTION_ALREADY_EXISTS",
            status_code=409,
            context=context,
        )


class SubscriptionNotFound(BillingError):
    """No local subscription matches the lookup."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message, "SUBSCRIPTION_NOT_FOUND", status_code=404, context=context)


class OwnerNotFound(BillingError):
    """No local owner matches the lookup."""

    def __init__(self, owner_id: str):
        super().__init__(
            f"Owner {owner_id} not found",
            "OWNER_NOT_FOUND",
            status_code=404,
            context={"owner_id": owner_id},
        )


class InvoiceNotFound(BillingError):
    """The invoice doesn't exist or belongs to another customer."""

    def __init__(self, invoice_id: str):
        super().__init__(
            f"Invoice {invoice_id} not found",
            "INVOICE_NOT_FOUND",
            status_code=404,
            context={"invoice_id": invoice_id},
        )


class WebhookParseError(BillingError):
    """Inbound notification body could not be parsed."""

    def __init__(self, message: str = "Invalid webhook payload"):
        super().__init__(message, "WEBHOOK_PARSE_ERROR", status_code=400)


class WebhookSignatureError(BillingError):
    """Inbound notification failed gateway signature verification."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, "WEBHOOK_SIGNATURE_ERROR", status_code=401)
