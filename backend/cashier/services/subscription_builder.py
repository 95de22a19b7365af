"""Fluent construction of a new subscription request."""

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from cashier.models.subscription import Subscription

if TYPE_CHECKING:
    from cashier.services.subscription_service import SubscriptionService


@dataclass
class SubscriptionRequest:
    owner_id: UUID
    name: str
    plan: str
    quantity: int = 1
    coupon: str | None = None
    # None keeps the plan's default trial, 0 skips it
    trial_days: int | None = None


class SubscriptionBuilder:
    """Collects plan, trial, coupon and quantity, then creates the subscription once.

    Usage::

        service.new_subscription(owner.id, "main", "IJPY0001") \\
            .trial_days(7) \\
            .with_coupon("5tb2") \\
            .create(payment_token)
    """

    def __init__(self, service: "SubscriptionService", owner_id: UUID, name: str, plan: str):
        self.service = service
        self.owner_id = owner_id
        self.name = name
        self.plan = plan
        self._quantity = 1
        self._coupon: str | None = None
        self._trial_days: int | None = None
        self._skip_trial = False
        self._consumed = False

    def quantity(self, quantity: int) -> "SubscriptionBuilder":
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        self._quantity = quantity
        return self

    def trial_days(self, days: int) -> "SubscriptionBuilder":
        if days < 0:
            raise ValueError("Trial days cannot be negative")
        self._trial_days = days
        self._skip_trial = False
        return self

    def skip_trial(self) -> "SubscriptionBuilder":
        self._skip_trial = True
        return self

    def with_coupon(self, coupon: str) -> "SubscriptionBuilder":
        self._coupon = coupon
        return self

    def build(self) -> SubscriptionRequest:
        return SubscriptionRequest(
            owner_id=self.owner_id,
            name=self.name,
            plan=self.plan,
            quantity=self._quantity,
            coupon=self._coupon,
            trial_days=0 if self._skip_trial else self._trial_days,
        )

    def create(self, payment_token: str | None = None) -> Subscription:
        """Submit to the gateway and persist the mirror row. A builder can be used once."""
        if self._consumed:
            raise RuntimeError("This subscription builder has already been used")
        self._consumed = True
        return self.service.create_subscription(self.build(), payment_token)
