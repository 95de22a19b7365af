"""In-memory gateway double used across the test suite.

Mirrors the sandbox fixtures the Braintree integration is exercised against:
plans ``IJPM0001`` (monthly) and ``IJPY0001`` (yearly, $79.00) and the coupon
``5tb2`` worth $10.00. Swapping between monthly and yearly plans creates a
new gateway subscription, as Braintree does.
"""

import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from cashier.core.exceptions import (
    GatewayRejected,
    GatewayResourceNotFound,
    SubscriptionSwapFailed,
)
from cashier.schemas.invoice import InvoiceDiscount, InvoiceLineItem, InvoiceView
from cashier.services.gateway import (
    CancelResult,
    CreatedSubscription,
    GatewayClientBase,
    GatewayCustomer,
    GatewaySubscription,
    PaymentMethodDetails,
    ResumeResult,
    SwapResult,
)

VALID_NONCE = "fake-valid-nonce"
PAYPAL_NONCE = "fake-paypal-one-time-nonce"
DECLINED_NONCE = "fake-processor-declined-visa-nonce"

MONTHLY_PLAN = "IJPM0001"
YEARLY_PLAN = "IJPY0001"
TRIAL_PLAN = "IJPM0002"
COUPON = "5tb2"


@dataclass
class StubPlan:
    id: str
    price: Decimal
    billing_frequency: int
    trial_days: int = 0


PLANS = {
    MONTHLY_PLAN: StubPlan(MONTHLY_PLAN, Decimal("7.00"), 1),
    YEARLY_PLAN: StubPlan(YEARLY_PLAN, Decimal("79.00"), 12),
    TRIAL_PLAN: StubPlan(TRIAL_PLAN, Decimal("7.00"), 1, trial_days=14),
}

COUPONS = {COUPON: Decimal("10.00")}


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class StubSubscription:
    id: str
    customer_id: str
    plan_id: str
    price: Decimal
    quantity: int
    payment_method_token: str | None
    billing_period_end: datetime
    status: str = "Active"
    trial_ends_at: datetime | None = None
    cancel_at_period_end: bool = False
    discounts: list[InvoiceDiscount] = field(default_factory=list)


class StubGateway(GatewayClientBase):
    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.customers: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, StubSubscription] = {}
        self.invoices: dict[str, InvoiceView] = {}
        self.calls: list[str] = []
        self.decline_swap_replacement = False
        self._ids = itertools.count(1)

    @property
    def gateway_name(self) -> str:
        return "stub"

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _subscription(self, subscription_id: str) -> StubSubscription:
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise GatewayResourceNotFound("Subscription", subscription_id) from None

    def _plan(self, plan_id: str) -> StubPlan:
        plan = PLANS.get(plan_id)
        if plan is None:
            raise GatewayRejected(f"Plan ID is invalid: {plan_id}", reason_code="91904")
        return plan

    def _coupon(self, code: str) -> InvoiceDiscount:
        amount = COUPONS.get(code)
        if amount is None:
            raise GatewayRejected(f"Inherited From ID is invalid: {code}", reason_code="92908")
        return InvoiceDiscount(id=code, name=code, amount=amount)

    def _vault(self, payment_token: str) -> PaymentMethodDetails:
        if payment_token == DECLINED_NONCE:
            raise GatewayRejected("Do Not Honor", reason_code="2000")
        if payment_token == PAYPAL_NONCE:
            return PaymentMethodDetails(
                token=self._next_id("pm"), paypal_email="jane.doe@example.com"
            )
        if payment_token == VALID_NONCE:
            return PaymentMethodDetails(
                token=self._next_id("pm"), card_brand="Visa", card_last_four="1881"
            )
        raise GatewayRejected("Unknown or expired payment_method_nonce.", reason_code="91565")

    def _period_end(self, plan: StubPlan, start: datetime) -> datetime:
        return start + timedelta(days=365 if plan.billing_frequency == 12 else 30)

    def charge(self, subscription_id: str) -> InvoiceView:
        """Bill one cycle of a subscription and return the settled invoice."""
        subscription = self._subscription(subscription_id)
        discounts = [d.model_copy() for d in subscription.discounts]
        base = subscription.price * subscription.quantity
        amount_off = sum((d.total for d in discounts), Decimal("0"))
        invoice = InvoiceView(
            id=self._next_id("txn"),
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
            status="settled",
            total=max(Decimal("0"), base - amount_off),
            date=self.clock(),
            line_items=[
                InvoiceLineItem(
                    description=f"Subscription ({subscription.plan_id})",
                    quantity=subscription.quantity,
                    amount=base,
                )
            ],
            discounts=discounts,
        )
        self.invoices[invoice.id] = invoice
        return invoice

    # -- GatewayClientBase ------------------------------------------------------

    def create_customer(
        self, owner_attrs: dict[str, Any], payment_token: str | None = None
    ) -> GatewayCustomer:
        self.calls.append("create_customer")
        payment_method = self._vault(payment_token) if payment_token else None
        customer_id = self._next_id("cus")
        self.customers[customer_id] = {
            "attrs": dict(owner_attrs),
            "payment_method": payment_method,
        }
        return GatewayCustomer(customer_id=customer_id, payment_method=payment_method)

    def update_payment_method(self, customer_id: str, payment_token: str) -> PaymentMethodDetails:
        self.calls.append("update_payment_method")
        if customer_id not in self.customers:
            raise GatewayResourceNotFound("Customer", customer_id)
        details = self._vault(payment_token)
        self.customers[customer_id]["payment_method"] = details
        for subscription in self.subscriptions.values():
            if subscription.customer_id == customer_id and subscription.status == "Active":
                subscription.payment_method_token = details.token
        return details

    def create_subscription(
        self,
        customer_id: str,
        plan_id: str,
        quantity: int = 1,
        coupon: str | None = None,
        trial_days: int | None = None,
        payment_token: str | None = None,
    ) -> CreatedSubscription:
        self.calls.append("create_subscription")
        if customer_id not in self.customers:
            raise GatewayResourceNotFound("Customer", customer_id)
        plan = self._plan(plan_id)
        payment_method = self.customers[customer_id]["payment_method"]
        token = payment_token or (payment_method.token if payment_method else None)
        if token is None:
            raise GatewayRejected("Customer has no payment method", reason_code="no_payment_method")
        discounts = [self._coupon(coupon)] if coupon else []

        now = self.clock()
        days = plan.trial_days if trial_days is None else trial_days
        trial_ends_at = now + timedelta(days=days) if days else None

        subscription = StubSubscription(
            id=self._next_id("sub"),
            customer_id=customer_id,
            plan_id=plan.id,
            price=plan.price,
            quantity=quantity,
            payment_method_token=token,
            billing_period_end=self._period_end(plan, trial_ends_at or now),
            trial_ends_at=trial_ends_at,
            discounts=discounts,
        )
        self.subscriptions[subscription.id] = subscription
        if trial_ends_at is None:
            self.charge(subscription.id)
        return CreatedSubscription(subscription_id=subscription.id, trial_ends_at=trial_ends_at)

    def cancel_subscription(self, subscription_id: str, immediate: bool) -> CancelResult:
        self.calls.append("cancel_subscription")
        subscription = self._subscription(subscription_id)
        if immediate:
            subscription.status = "Canceled"
            return CancelResult()
        subscription.cancel_at_period_end = True
        return CancelResult(ends_at=subscription.billing_period_end)

    def resume_subscription(self, subscription_id: str) -> ResumeResult:
        self.calls.append("resume_subscription")
        subscription = self._subscription(subscription_id)
        if subscription.status != "Active":
            raise GatewayRejected("Subscription has already been canceled", reason_code="81905")
        subscription.cancel_at_period_end = False
        return ResumeResult(trial_ends_at=subscription.trial_ends_at)

    def swap_plan(
        self, subscription_id: str, new_plan_id: str, quantity: int = 1
    ) -> SwapResult:
        self.calls.append("swap_plan")
        current = self._subscription(subscription_id)
        current_plan = self._plan(current.plan_id)
        new_plan = self._plan(new_plan_id)

        if current_plan.billing_frequency == new_plan.billing_frequency:
            current.plan_id = new_plan.id
            current.price = new_plan.price
            current.quantity = quantity
            current.cancel_at_period_end = False
            return SwapResult(subscription_id=current.id, discounts=list(current.discounts))

        # Braintree can't change billing frequency in place
        current.status = "Canceled"
        if self.decline_swap_replacement:
            raise SubscriptionSwapFailed("Do Not Honor", reason_code="2000")
        credit = InvoiceDiscount(id="plan-credit", name="plan-credit", amount=Decimal("5.00"))
        replacement = StubSubscription(
            id=self._next_id("sub"),
            customer_id=current.customer_id,
            plan_id=new_plan.id,
            price=new_plan.price,
            quantity=quantity,
            payment_method_token=current.payment_method_token,
            billing_period_end=self._period_end(new_plan, self.clock()),
            discounts=[credit],
        )
        self.subscriptions[replacement.id] = replacement
        self.charge(replacement.id)
        return SwapResult(subscription_id=replacement.id, discounts=[credit])

    def apply_coupon(self, subscription_id: str, code: str) -> None:
        self.calls.append("apply_coupon")
        subscription = self._subscription(subscription_id)
        subscription.discounts.append(self._coupon(code))

    def fetch_subscription(self, subscription_id: str) -> GatewaySubscription:
        subscription = self._subscription(subscription_id)
        return GatewaySubscription(
            id=subscription.id,
            plan_id=subscription.plan_id,
            status=subscription.status,
            price=subscription.price,
            discounts=list(subscription.discounts),
            trial_ends_at=subscription.trial_ends_at,
            billing_period_end=subscription.billing_period_end,
            payment_method_token=subscription.payment_method_token,
        )

    def fetch_invoice(self, invoice_id: str) -> InvoiceView:
        try:
            return self.invoices[invoice_id]
        except KeyError:
            raise GatewayResourceNotFound("Invoice", invoice_id) from None

    def list_invoices(self, customer_id: str, include_pending: bool = False) -> list[InvoiceView]:
        invoices = [
            invoice
            for invoice in self.invoices.values()
            if invoice.customer_id == customer_id
            and (include_pending or invoice.status == "settled")
        ]
        return sorted(invoices, key=lambda invoice: invoice.date, reverse=True)
