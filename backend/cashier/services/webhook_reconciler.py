"""Applies inbound gateway notifications to local subscription rows.

The reconciler never raises for notifications it can't act on: an unknown
kind or a subscription we don't track is logged and ignored so the gateway
doesn't keep redelivering it.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from cashier.core.locks import owner_locks
from cashier.models.shared import Clock, as_utc, utc_now
from cashier.repositories.subscription_repository import SubscriptionRepository
from cashier.services.gateway import GatewayNotification, NotificationKind

logger = logging.getLogger(__name__)

HANDLED_KINDS = frozenset(
    {NotificationKind.SUBSCRIPTION_CANCELED, NotificationKind.SUBSCRIPTION_EXPIRED}
)


@dataclass
class WebhookOutcome:
    status: str  # "processed" or "ignored"
    kind: str
    subscription_id: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "status": self.status,
            "kind": self.kind,
            "subscription_id": self.subscription_id,
            "reason": self.reason,
        }


class WebhookReconciler:
    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.subscription_repo = SubscriptionRepository(db)

    def handle(self, notification: GatewayNotification) -> WebhookOutcome:
        if notification.kind not in HANDLED_KINDS:
            logger.info("Ignoring webhook of kind %s", notification.kind)
            return WebhookOutcome(
                status="ignored", kind=notification.kind, reason="unhandled kind"
            )

        if not notification.subscription_id:
            logger.warning("Webhook %s carries no subscription id", notification.kind)
            return WebhookOutcome(
                status="ignored", kind=notification.kind, reason="missing subscription id"
            )

        return self._end_subscription(notification)

    def _end_subscription(self, notification: GatewayNotification) -> WebhookOutcome:
        gateway_id = str(notification.subscription_id)
        subscription = self.subscription_repo.get_by_gateway_id(gateway_id)
        if not subscription:
            logger.warning(
                "Webhook %s for unknown subscription %s", notification.kind, gateway_id
            )
            return WebhookOutcome(
                status="ignored",
                kind=notification.kind,
                subscription_id=gateway_id,
                reason="subscription not found",
            )

        with owner_locks.hold(subscription.owner_id):  # type: ignore[arg-type]
            self.db.refresh(subscription)
            now = self.clock()
            ends_at = as_utc(subscription.ends_at)  # type: ignore[arg-type]
            # An end date already in the past stays as recorded
            if ends_at is None or ends_at > now:
                self.subscription_repo.set_ends_at(subscription, now)
                logger.info(
                    "Marked subscription %s (%s) ended from %s webhook",
                    subscription.id,
                    gateway_id,
                    notification.kind,
                )

        return WebhookOutcome(
            status="processed", kind=notification.kind, subscription_id=gateway_id
        )
