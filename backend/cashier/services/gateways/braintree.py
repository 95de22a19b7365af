"""Braintree gateway implementation.

Braintree has no notion of a cancellable-then-resumable trial and no
subscription quantity, so:
1. Trials are cancelled outright; end-of-period cancellation caps the number
   of billing cycles at the current one.
2. Quantity is expressed through the subscription price.
3. Plans of different billing frequency can't be swapped in place. The old
   subscription is cancelled and a new one created, carrying the unused
   balance as a ``plan-credit`` discount.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, TypeVar
from urllib.parse import parse_qs

import braintree
from braintree.exceptions import (
    GatewayTimeoutError,
    InvalidSignatureError,
    NotFoundError,
    RequestTimeoutError,
    ServerError,
    ServiceUnavailableError,
    TooManyRequestsError,
    UnexpectedError,
)
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashier.core.config import settings
from cashier.core.exceptions import (
    GatewayRejected,
    GatewayResourceNotFound,
    GatewayUnavailable,
    SubscriptionSwapFailed,
    WebhookParseError,
    WebhookSignatureError,
)
from cashier.models.shared import Clock, as_utc, utc_now
from cashier.schemas.invoice import InvoiceDiscount, InvoiceLineItem, InvoiceView
from cashier.services.gateway import (
    CancelResult,
    CreatedSubscription,
    GatewayClientBase,
    GatewayCustomer,
    GatewayNotification,
    GatewaySubscription,
    PaymentMethodDetails,
    ResumeResult,
    SwapResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (
    GatewayTimeoutError,
    RequestTimeoutError,
    ServerError,
    ServiceUnavailableError,
    TooManyRequestsError,
    UnexpectedError,
)

PLAN_CREDIT_DISCOUNT_ID = "plan-credit"
SETTLED_STATUS = "settled"
MONTHLY = 1
YEARLY = 12
CENTS = Decimal("0.01")


def _money(amount: Decimal) -> str:
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _date_to_datetime(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.min, tzinfo=UTC)


def _camel_kind(kind: str) -> str:
    """``subscription_canceled`` -> ``SubscriptionCanceled``."""
    return "".join(part.capitalize() for part in kind.split("_"))


class BraintreeGateway(GatewayClientBase):
    """Braintree subscription gateway.

    Every SDK call runs with the configured request timeout. Reads retry on
    transient errors; writes never do, because Braintree has no idempotency
    keys for subscription creation.
    """

    def __init__(
        self,
        merchant_id: str | None = None,
        public_key: str | None = None,
        private_key: str | None = None,
        environment: str | None = None,
        timeout: float | None = None,
        read_retries: int | None = None,
        retry_backoff: float | None = None,
        gateway: Any = None,
        clock: Clock = utc_now,
    ):
        self.merchant_id = merchant_id or settings.braintree_merchant_id
        self.public_key = public_key or settings.braintree_public_key
        self.private_key = private_key or settings.braintree_private_key
        self.environment = environment or settings.braintree_environment
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.read_retries = (
            read_retries if read_retries is not None else settings.gateway_read_retries
        )
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None else settings.gateway_retry_backoff_seconds
        )
        self.clock = clock
        self._gateway = gateway

    @property
    def gateway_name(self) -> str:
        return "braintree"

    @property
    def gateway(self) -> Any:
        """Lazily build the SDK gateway from configuration."""
        if self._gateway is None:
            self._gateway = braintree.BraintreeGateway(
                braintree.Configuration(
                    environment=braintree.Environment.All[self.environment],
                    merchant_id=self.merchant_id,
                    public_key=self.public_key,
                    private_key=self.private_key,
                    timeout=self.timeout,
                    wrap_http_exceptions=True,
                )
            )
        return self._gateway

    # -- plumbing -----------------------------------------------------------

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run one SDK call, translating SDK exceptions to ours."""
        try:
            return fn(*args)
        except NotFoundError:
            raise GatewayResourceNotFound("Resource", str(args[0]) if args else "") from None
        except TRANSIENT_ERRORS as e:
            raise GatewayUnavailable(f"Braintree request failed: {type(e).__name__}") from e

    def _read(self, fn: Callable[..., T], *args: Any) -> T:
        """Run an idempotent read with bounded retries on transient failures."""
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.read_retries)),
            wait=wait_exponential(multiplier=self.retry_backoff, max=10),
            retry=retry_if_exception_type(GatewayUnavailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(fn, *args)

    @staticmethod
    def _ensure_success(result: Any, action: str) -> None:
        if result.is_success:
            return

        reason_code: str | None = None
        errors = getattr(result, "errors", None)
        deep_errors = getattr(errors, "deep_errors", None) or []
        if deep_errors:
            reason_code = str(deep_errors[0].code)
        else:
            transaction = getattr(result, "transaction", None)
            if transaction is not None:
                reason_code = getattr(transaction, "processor_response_code", None)

        logger.info("Braintree rejected %s: %s", action, result.message)
        raise GatewayRejected(
            f"Braintree failed to {action}: {result.message}",
            reason_code=reason_code,
            payload=result,
        )

    @staticmethod
    def _payment_method_details(method: Any) -> PaymentMethodDetails:
        if getattr(method, "card_type", None):
            return PaymentMethodDetails(
                token=method.token,
                card_brand=method.card_type,
                card_last_four=method.last_4,
            )
        return PaymentMethodDetails(token=method.token, paypal_email=getattr(method, "email", None))

    @classmethod
    def _default_payment_method(cls, customer: Any) -> PaymentMethodDetails | None:
        methods = list(getattr(customer, "payment_methods", None) or [])
        if not methods:
            return None
        default = next((m for m in methods if getattr(m, "default", False)), methods[0])
        return cls._payment_method_details(default)

    @staticmethod
    def _adjustments(items: Any) -> list[InvoiceDiscount]:
        return [
            InvoiceDiscount(
                id=item.id,
                name=getattr(item, "name", None),
                amount=_decimal(item.amount),
                quantity=getattr(item, "quantity", None) or 1,
                number_of_billing_cycles=getattr(item, "number_of_billing_cycles", None),
            )
            for item in (items or [])
        ]

    @staticmethod
    def _trial_ends_at(subscription: Any) -> datetime | None:
        if not getattr(subscription, "trial_period", False):
            return None
        return _date_to_datetime(getattr(subscription, "first_billing_date", None))

    def _find_subscription(self, subscription_id: str) -> Any:
        try:
            return self._call(self.gateway.subscription.find, subscription_id)
        except GatewayResourceNotFound:
            raise GatewayResourceNotFound("Subscription", subscription_id) from None

    def _find_plan(self, plan_id: str) -> Any:
        for plan in self._call(self.gateway.plan.all):
            if plan.id == plan_id:
                return plan
        raise GatewayResourceNotFound("Plan", plan_id)

    # -- customers ------------------------------------------------------------

    def create_customer(
        self, owner_attrs: dict[str, Any], payment_token: str | None = None
    ) -> GatewayCustomer:
        params: dict[str, Any] = {}
        if owner_attrs.get("email"):
            params["email"] = owner_attrs["email"]
        name = (owner_attrs.get("name") or "").strip()
        if name:
            first, _, last = name.partition(" ")
            params["first_name"] = first
            if last:
                params["last_name"] = last
        if payment_token:
            params["payment_method_nonce"] = payment_token
            params["credit_card"] = {"options": {"verify_card": True}}

        result = self._call(self.gateway.customer.create, params)
        self._ensure_success(result, "create customer")

        customer = result.customer
        logger.info("Created Braintree customer %s", customer.id)
        return GatewayCustomer(
            customer_id=customer.id,
            payment_method=self._default_payment_method(customer),
        )

    def update_payment_method(self, customer_id: str, payment_token: str) -> PaymentMethodDetails:
        """Vault the token as the new default and move active subscriptions onto it."""
        result = self._call(
            self.gateway.payment_method.create,
            {
                "customer_id": customer_id,
                "payment_method_nonce": payment_token,
                "options": {"make_default": True, "verify_card": True},
            },
        )
        self._ensure_success(result, "update payment method")
        details = self._payment_method_details(result.payment_method)

        customer = self._call(self.gateway.customer.find, customer_id)
        for method in getattr(customer, "payment_methods", None) or []:
            for subscription in getattr(method, "subscriptions", None) or []:
                if subscription.status != braintree.Subscription.Status.Active:
                    continue
                if method.token == details.token:
                    continue
                update = self._call(
                    self.gateway.subscription.update,
                    subscription.id,
                    {"payment_method_token": details.token},
                )
                self._ensure_success(update, "move subscription to new payment method")

        return details

    # -- subscriptions ----------------------------------------------------------

    def create_subscription(
        self,
        customer_id: str,
        plan_id: str,
        quantity: int = 1,
        coupon: str | None = None,
        trial_days: int | None = None,
        payment_token: str | None = None,
    ) -> CreatedSubscription:
        if payment_token is None:
            customer = self._call(self.gateway.customer.find, customer_id)
            default = self._default_payment_method(customer)
            if default is None:
                raise GatewayRejected(
                    f"Braintree customer {customer_id} has no payment method",
                    reason_code="no_payment_method",
                )
            payment_token = default.token

        params: dict[str, Any] = {"payment_method_token": payment_token, "plan_id": plan_id}

        if quantity != 1:
            plan = self._find_plan(plan_id)
            params["price"] = _money(_decimal(plan.price) * quantity)

        if trial_days is not None:
            if trial_days > 0:
                params["trial_period"] = True
                params["trial_duration"] = trial_days
                params["trial_duration_unit"] = braintree.Subscription.TrialDurationUnit.Day
            else:
                params["trial_period"] = False

        if coupon:
            params["discounts"] = {"add": [{"inherited_from_id": coupon}]}

        return self._create(params)

    def _create(self, params: dict[str, Any]) -> CreatedSubscription:
        result = self._call(self.gateway.subscription.create, params)
        self._ensure_success(result, "create subscription")
        subscription = result.subscription
        logger.info(
            "Created Braintree subscription %s on plan %s", subscription.id, params["plan_id"]
        )
        return CreatedSubscription(
            subscription_id=subscription.id,
            trial_ends_at=self._trial_ends_at(subscription),
        )

    def cancel_subscription(self, subscription_id: str, immediate: bool) -> CancelResult:
        if immediate:
            result = self._call(self.gateway.subscription.cancel, subscription_id)
            self._ensure_success(result, "cancel subscription")
            return CancelResult(ends_at=None)

        subscription = self._find_subscription(subscription_id)
        result = self._call(
            self.gateway.subscription.update,
            subscription_id,
            {"number_of_billing_cycles": subscription.current_billing_cycle},
        )
        self._ensure_success(result, "cancel subscription")
        return CancelResult(ends_at=_date_to_datetime(subscription.billing_period_end_date))

    def resume_subscription(self, subscription_id: str) -> ResumeResult:
        result = self._call(
            self.gateway.subscription.update,
            subscription_id,
            {"never_expires": True, "number_of_billing_cycles": None},
        )
        self._ensure_success(result, "resume subscription")
        return ResumeResult(trial_ends_at=self._trial_ends_at(result.subscription))

    def swap_plan(
        self, subscription_id: str, new_plan_id: str, quantity: int = 1
    ) -> SwapResult:
        current = self._find_subscription(subscription_id)
        current_plan = self._find_plan(current.plan_id)
        new_plan = self._find_plan(new_plan_id)
        price = _money(_decimal(new_plan.price) * quantity)

        if current_plan.billing_frequency != new_plan.billing_frequency:
            return self._swap_across_frequencies(current, current_plan, new_plan, quantity, price)

        result = self._call(
            self.gateway.subscription.update,
            subscription_id,
            {
                "plan_id": new_plan.id,
                "price": price,
                "never_expires": True,
                "number_of_billing_cycles": None,
                "options": {"prorate_charges": True},
            },
        )
        self._ensure_success(result, "swap plans")
        return SwapResult(
            subscription_id=subscription_id,
            discounts=self._adjustments(result.subscription.discounts),
        )

    def _swap_across_frequencies(
        self, current: Any, current_plan: Any, new_plan: Any, quantity: int, price: str
    ) -> SwapResult:
        amount, cycles = self._plan_credit(current, current_plan, new_plan, quantity)

        params: dict[str, Any] = {
            "payment_method_token": current.payment_method_token,
            "plan_id": new_plan.id,
            "price": price,
            "trial_period": False,
        }
        if amount > 0 and cycles > 0:
            params["discounts"] = {
                "add": [
                    {
                        "inherited_from_id": PLAN_CREDIT_DISCOUNT_ID,
                        "amount": _money(amount),
                        "number_of_billing_cycles": cycles,
                    }
                ]
            }

        cancelled = self._call(self.gateway.subscription.cancel, current.id)
        self._ensure_success(cancelled, "cancel subscription")

        try:
            created = self._create(params)
        except (GatewayRejected, GatewayUnavailable) as e:
            reason_code = e.reason_code if isinstance(e, GatewayRejected) else None
            raise SubscriptionSwapFailed(
                f"Braintree cancelled subscription {current.id} but could not replace it: "
                f"{e.message}",
                reason_code=reason_code,
                payload=getattr(e, "payload", None),
            ) from e
        logger.info(
            "Swapped Braintree subscription %s to %s across billing frequencies",
            current.id,
            created.subscription_id,
        )
        discounts = []
        if "discounts" in params:
            discounts.append(
                InvoiceDiscount(
                    id=PLAN_CREDIT_DISCOUNT_ID,
                    amount=amount,
                    number_of_billing_cycles=cycles,
                )
            )
        return SwapResult(subscription_id=created.subscription_id, discounts=discounts)

    def _plan_credit(
        self, current: Any, current_plan: Any, new_plan: Any, quantity: int = 1
    ) -> tuple[Decimal, int]:
        """Unused balance to carry over as (amount per cycle, number of cycles)."""
        if current_plan.billing_frequency == YEARLY and new_plan.billing_frequency == MONTHLY:
            new_price = _decimal(new_plan.price) * quantity
            if new_price <= 0:
                return Decimal("0"), 0
            period_end = _date_to_datetime(current.billing_period_end_date)
            today = self.clock().date()
            days_left = (period_end.date() - today).days if period_end else 0
            remaining = _decimal(current_plan.price) * quantity / 365 * max(0, days_left)
            return new_price, int(remaining // new_price)

        # Monthly -> yearly: roll any outstanding plan credit into one cycle
        amount = Decimal("0")
        for discount in current.discounts or []:
            if discount.id == PLAN_CREDIT_DISCOUNT_ID:
                amount += _decimal(discount.amount) * (discount.number_of_billing_cycles or 0)
        return amount, 1

    def apply_coupon(self, subscription_id: str, code: str) -> None:
        result = self._call(
            self.gateway.subscription.update,
            subscription_id,
            {"discounts": {"add": [{"inherited_from_id": code}]}},
        )
        self._ensure_success(result, "apply coupon")

    def fetch_subscription(self, subscription_id: str) -> GatewaySubscription:
        subscription = self._read(self._find_subscription, subscription_id)
        return GatewaySubscription(
            id=subscription.id,
            plan_id=subscription.plan_id,
            status=subscription.status,
            price=_decimal(subscription.price),
            discounts=self._adjustments(subscription.discounts),
            add_ons=self._adjustments(getattr(subscription, "add_ons", None)),
            trial_ends_at=self._trial_ends_at(subscription),
            billing_period_end=_date_to_datetime(
                getattr(subscription, "billing_period_end_date", None)
            ),
            payment_method_token=getattr(subscription, "payment_method_token", None),
        )

    # -- invoices ---------------------------------------------------------------

    def _invoice_view(self, transaction: Any) -> InvoiceView:
        total = _decimal(transaction.amount)
        discounts = self._adjustments(getattr(transaction, "discounts", None))
        add_ons = self._adjustments(getattr(transaction, "add_ons", None))
        plan_id = getattr(transaction, "plan_id", None)
        customer_details = getattr(transaction, "customer_details", None)

        base = total + sum((d.total for d in discounts), Decimal("0"))
        base -= sum((a.total for a in add_ons), Decimal("0"))
        line_items = [
            InvoiceLineItem(
                description=f"Subscription ({plan_id})" if plan_id else "Charge",
                amount=max(Decimal("0"), base),
            )
        ]
        line_items.extend(
            InvoiceLineItem(description=a.name or a.id, quantity=a.quantity, amount=a.total)
            for a in add_ons
        )

        return InvoiceView(
            id=transaction.id,
            customer_id=getattr(customer_details, "id", None),
            subscription_id=getattr(transaction, "subscription_id", None),
            status=transaction.status,
            currency=getattr(transaction, "currency_iso_code", None) or "USD",
            total=total,
            date=as_utc(transaction.created_at),
            line_items=line_items,
            discounts=discounts,
            add_ons=add_ons,
        )

    def _find_transaction(self, invoice_id: str) -> Any:
        try:
            return self._call(self.gateway.transaction.find, invoice_id)
        except GatewayResourceNotFound:
            raise GatewayResourceNotFound("Invoice", invoice_id) from None

    def fetch_invoice(self, invoice_id: str) -> InvoiceView:
        return self._invoice_view(self._read(self._find_transaction, invoice_id))

    def _search_transactions(self, customer_id: str) -> list[Any]:
        collection = self._call(
            self.gateway.transaction.search,
            braintree.TransactionSearch.customer_id == customer_id,
        )
        return list(collection.items)

    def list_invoices(self, customer_id: str, include_pending: bool = False) -> list[InvoiceView]:
        transactions = self._read(self._search_transactions, customer_id)
        invoices = [
            self._invoice_view(t)
            for t in transactions
            if include_pending or t.status == SETTLED_STATUS
        ]
        invoices.sort(key=lambda invoice: invoice.date, reverse=True)
        return invoices

    # -- webhooks ---------------------------------------------------------------

    def parse_webhook(self, payload: bytes) -> GatewayNotification:
        """Verify and parse a signed ``bt_signature`` / ``bt_payload`` form body."""
        try:
            form = parse_qs(payload.decode("utf-8"), strict_parsing=True)
            signature = form["bt_signature"][0]
            bt_payload = form["bt_payload"][0]
        except (UnicodeDecodeError, ValueError, KeyError):
            raise WebhookParseError("Expected bt_signature and bt_payload form fields") from None

        try:
            notification = self.gateway.webhook_notification.parse(signature, bt_payload)
        except InvalidSignatureError:
            raise WebhookSignatureError() from None

        subscription = getattr(notification, "subscription", None)
        return GatewayNotification(
            kind=_camel_kind(notification.kind),
            subscription_id=getattr(subscription, "id", None) if subscription else None,
            timestamp=as_utc(getattr(notification, "timestamp", None)),
        )
