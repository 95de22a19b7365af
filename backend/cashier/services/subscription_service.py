"""Service for subscription lifecycle: create, cancel, resume, swap and coupons.

Every mutation calls the gateway first and writes the local mirror only after
the gateway call returned successfully. Mutations for one owner are
serialized with a per-owner lock.
"""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from cashier.core.config import settings
from cashier.core.exceptions import (
    CannotResumeSubscription,
    CannotSwapSubscription,
    GatewayRejected,
    OwnerNotFound,
    SubscriptionAlreadyExists,
    SubscriptionCreationFailed,
    SubscriptionNotFound,
    SubscriptionSwapFailed,
)
from cashier.core.locks import owner_locks
from cashier.models.owner import Owner
from cashier.models.shared import Clock, utc_now
from cashier.models.subscription import Subscription
from cashier.repositories.owner_repository import OwnerRepository
from cashier.repositories.subscription_repository import SubscriptionRepository
from cashier.services import subscription_state as state
from cashier.services.gateway import GatewayClientBase, GatewaySubscription
from cashier.services.subscription_builder import SubscriptionBuilder, SubscriptionRequest

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Keeps local subscription rows in step with the gateway."""

    def __init__(self, db: Session, gateway: GatewayClientBase, clock: Clock = utc_now):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.owner_repo = OwnerRepository(db)
        self.subscription_repo = SubscriptionRepository(db)

    # -- lookups ----------------------------------------------------------------

    def get_owner(self, owner_id: UUID) -> Owner:
        owner = self.owner_repo.get_by_id(owner_id)
        if not owner:
            raise OwnerNotFound(str(owner_id))
        return owner

    def get_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = self.subscription_repo.get_by_id(subscription_id)
        if not subscription:
            raise SubscriptionNotFound(
                f"Subscription {subscription_id} not found",
                subscription_id=str(subscription_id),
            )
        return subscription

    def subscription(
        self, owner_id: UUID, name: str = settings.default_subscription_name
    ) -> Subscription | None:
        """The owner's current subscription for a label."""
        return self.subscription_repo.get_current(owner_id, name, self.clock())

    def subscription_or_fail(
        self, owner_id: UUID, name: str = settings.default_subscription_name
    ) -> Subscription:
        subscription = self.subscription(owner_id, name)
        if not subscription:
            raise SubscriptionNotFound(
                f"Owner {owner_id} has no '{name}' subscription",
                owner_id=str(owner_id),
                name=name,
            )
        return subscription

    def subscriptions(self, owner_id: UUID) -> list[Subscription]:
        return self.subscription_repo.get_by_owner_id(owner_id)

    def subscribed(
        self,
        owner_id: UUID,
        name: str = settings.default_subscription_name,
        plan: str | None = None,
    ) -> bool:
        """Whether the owner's current ``name`` subscription is active (and on ``plan``)."""
        subscription = self.subscription(owner_id, name)
        if subscription is None or not state.active(subscription, self.clock()):
            return False
        return plan is None or subscription.gateway_plan == plan

    def on_trial(
        self,
        owner_id: UUID,
        name: str = settings.default_subscription_name,
        plan: str | None = None,
    ) -> bool:
        subscription = self.subscription(owner_id, name)
        if subscription is None or not state.on_trial(subscription, self.clock()):
            return False
        return plan is None or subscription.gateway_plan == plan

    def on_plan(self, owner_id: UUID, plan: str) -> bool:
        """Whether any active subscription of the owner is on ``plan``."""
        now = self.clock()
        return any(
            s.gateway_plan == plan and state.active(s, now) for s in self.subscriptions(owner_id)
        )

    def fetch_gateway_subscription(self, subscription_id: UUID) -> GatewaySubscription:
        """The gateway's own view of a local subscription (discounts included)."""
        subscription = self.get_subscription(subscription_id)
        return self.gateway.fetch_subscription(str(subscription.gateway_id))

    # -- create -----------------------------------------------------------------

    def new_subscription(
        self, owner_id: UUID, name: str, plan: str
    ) -> SubscriptionBuilder:
        return SubscriptionBuilder(self, owner_id, name, plan)

    def create_subscription(
        self, request: SubscriptionRequest, payment_token: str | None = None
    ) -> Subscription:
        """Create the gateway subscription, creating the gateway customer first if needed.

        Raises:
            OwnerNotFound: If the owner doesn't exist.
            SubscriptionAlreadyExists: If the label already has a subscription
                that has not ended. Checked before calling the gateway.
            SubscriptionCreationFailed: If the gateway rejected the request.
                No subscription row is written in that case.
        """
        with owner_locks.hold(request.owner_id):
            owner = self.owner_repo.get_by_id_for_update(request.owner_id)
            if not owner:
                raise OwnerNotFound(str(request.owner_id))

            now = self.clock()
            existing = self.subscription_repo.get_unended(
                owner.id, request.name, now  # type: ignore[arg-type]
            )
            if existing is not None:
                raise SubscriptionAlreadyExists(str(owner.id), request.name, str(existing.id))

            try:
                payment_method_token = self._ensure_customer(owner, payment_token)
                created = self.gateway.create_subscription(
                    customer_id=str(owner.gateway_customer_id),
                    plan_id=request.plan,
                    quantity=request.quantity,
                    coupon=request.coupon,
                    trial_days=request.trial_days,
                    payment_token=payment_method_token,
                )
            except GatewayRejected as e:
                logger.info(
                    "Subscription '%s' for owner %s rejected by gateway: %s",
                    request.name,
                    owner.id,
                    e.message,
                )
                raise SubscriptionCreationFailed(
                    e.message, reason_code=e.reason_code, payload=e.payload
                ) from e

            if request.trial_days:
                trial_ends_at = now + timedelta(days=request.trial_days)
            elif request.trial_days == 0:
                trial_ends_at = None
            else:
                trial_ends_at = created.trial_ends_at

            subscription = self.subscription_repo.create(
                owner_id=owner.id,  # type: ignore[arg-type]
                name=request.name,
                gateway_id=created.subscription_id,
                gateway_plan=request.plan,
                quantity=request.quantity,
                trial_ends_at=trial_ends_at,
                created_at=now,
            )
            logger.info(
                "Created subscription %s (%s) for owner %s on plan %s",
                subscription.id,
                subscription.gateway_id,
                owner.id,
                request.plan,
            )
            return subscription

    def _ensure_customer(self, owner: Owner, payment_token: str | None) -> str | None:
        """Make sure the owner has a gateway customer; return the vaulted payment token."""
        if not owner.gateway_customer_id:
            customer = self.gateway.create_customer(
                {"name": owner.name, "email": owner.email}, payment_token
            )
            self.owner_repo.set_gateway_customer(owner, customer.customer_id, customer.payment_method)
            logger.info("Created gateway customer %s for owner %s", customer.customer_id, owner.id)
            return customer.payment_method.token if customer.payment_method else None

        if payment_token:
            details = self.gateway.update_payment_method(str(owner.gateway_customer_id), payment_token)
            self.owner_repo.set_payment_method(owner, details)
            return details.token

        return None

    # -- cancel / resume --------------------------------------------------------

    def cancel(self, subscription_id: UUID) -> Subscription:
        """Cancel at period end, or immediately when the subscription is on trial.

        A cancelled trial can't be resumed: it ends now.
        """
        subscription = self.get_subscription(subscription_id)
        with owner_locks.hold(subscription.owner_id):  # type: ignore[arg-type]
            self.db.refresh(subscription)
            now = self.clock()
            gateway_id = str(subscription.gateway_id)

            if state.on_trial(subscription, now):
                self.gateway.cancel_subscription(gateway_id, immediate=True)
                ends_at = now
            else:
                result = self.gateway.cancel_subscription(gateway_id, immediate=False)
                ends_at = result.ends_at or now

            subscription = self.subscription_repo.set_ends_at(subscription, ends_at)
            logger.info("Cancelled subscription %s, ends at %s", subscription.id, ends_at)
            return subscription

    def cancel_now(self, subscription_id: UUID) -> Subscription:
        """Cancel immediately with no grace period."""
        subscription = self.get_subscription(subscription_id)
        with owner_locks.hold(subscription.owner_id):  # type: ignore[arg-type]
            self.db.refresh(subscription)
            now = self.clock()
            self.gateway.cancel_subscription(str(subscription.gateway_id), immediate=True)
            subscription = self.subscription_repo.set_ends_at(subscription, now)
            logger.info("Cancelled subscription %s immediately", subscription.id)
            return subscription

    def resume(self, subscription_id: UUID) -> Subscription:
        """Undo a cancellation that is still within its grace period.

        Raises:
            CannotResumeSubscription: Outside the grace period. Checked before
                calling the gateway.
        """
        subscription = self.get_subscription(subscription_id)
        with owner_locks.hold(subscription.owner_id):  # type: ignore[arg-type]
            self.db.refresh(subscription)
            if not state.on_grace_period(subscription, self.clock()):
                raise CannotResumeSubscription(str(subscription.id))

            result = self.gateway.resume_subscription(str(subscription.gateway_id))
            subscription = self.subscription_repo.mark_resumed(subscription, result.trial_ends_at)
            logger.info("Resumed subscription %s", subscription.id)
            return subscription

    # -- swap / coupons ---------------------------------------------------------

    def swap(self, subscription_id: UUID, plan: str) -> Subscription:
        """Move the subscription to ``plan`` and return the row that now represents it.

        If the gateway keeps the subscription id the row is updated in place.
        If it answers with a new id, the old row is ended now and a new row is
        appended under the same label.

        Raises:
            CannotSwapSubscription: If the subscription is no longer active.
            SubscriptionSwapFailed: If the gateway cancelled the old subscription
                but couldn't create its replacement. The local row is ended.
        """
        subscription = self.get_subscription(subscription_id)
        with owner_locks.hold(subscription.owner_id):  # type: ignore[arg-type]
            self.db.refresh(subscription)
            now = self.clock()

            if state.on_grace_period(subscription, now) and subscription.gateway_plan == plan:
                return self.resume(subscription_id)

            if not state.active(subscription, now):
                raise CannotSwapSubscription(str(subscription.id))

            try:
                result = self.gateway.swap_plan(
                    str(subscription.gateway_id), plan, quantity=int(subscription.quantity)
                )
            except SubscriptionSwapFailed as e:
                if e.previous_cancelled:
                    self.subscription_repo.set_ends_at(subscription, now)
                    logger.warning(
                        "Swap of subscription %s to plan %s failed after the gateway "
                        "cancelled %s; ended it locally",
                        subscription.id,
                        plan,
                        subscription.gateway_id,
                    )
                raise

            if result.subscription_id == subscription.gateway_id:
                subscription = self.subscription_repo.set_plan(subscription, plan)
                logger.info("Swapped subscription %s to plan %s in place", subscription.id, plan)
                return subscription

            self.subscription_repo.set_ends_at(subscription, now)
            replacement = self.subscription_repo.create(
                owner_id=subscription.owner_id,  # type: ignore[arg-type]
                name=str(subscription.name),
                gateway_id=result.subscription_id,
                gateway_plan=plan,
                quantity=int(subscription.quantity),
                trial_ends_at=None,
                created_at=now,
            )
            logger.info(
                "Swapped subscription %s to plan %s as new subscription %s (%s)",
                subscription.id,
                plan,
                replacement.id,
                replacement.gateway_id,
            )
            return replacement

    def apply_coupon(
        self, owner_id: UUID, coupon: str, name: str = settings.default_subscription_name
    ) -> None:
        """Apply a coupon to the owner's current subscription.

        No local state changes; the discount shows up in gateway fetches and
        the next invoice.
        """
        self.get_owner(owner_id)
        with owner_locks.hold(owner_id):
            subscription = self.subscription_or_fail(owner_id, name)
            self.gateway.apply_coupon(str(subscription.gateway_id), coupon)
        logger.info("Applied coupon %s to subscription %s", coupon, subscription.id)
