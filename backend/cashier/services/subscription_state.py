"""Derived subscription status.

Pure predicates over a record's ``trial_ends_at`` / ``ends_at`` and an
explicit ``now``. Nothing here reads the clock or touches the database.

A timestamp equal to ``now`` counts as passed: a subscription whose
``ends_at`` is exactly ``now`` has ended, and a trial ending exactly ``now``
is over.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from cashier.models.shared import as_utc


class SubscriptionTimestamps(Protocol):
    trial_ends_at: datetime | None
    ends_at: datetime | None


@dataclass(frozen=True)
class SubscriptionStatus:
    active: bool
    on_trial: bool
    cancelled: bool
    on_grace_period: bool
    ended: bool
    recurring: bool


def on_trial(subscription: SubscriptionTimestamps, now: datetime) -> bool:
    trial_ends_at = as_utc(subscription.trial_ends_at)
    return trial_ends_at is not None and now < trial_ends_at


def cancelled(subscription: SubscriptionTimestamps) -> bool:
    """Cancellation was requested, whether or not the grace period is over."""
    return subscription.ends_at is not None


def on_grace_period(subscription: SubscriptionTimestamps, now: datetime) -> bool:
    ends_at = as_utc(subscription.ends_at)
    return ends_at is not None and now < ends_at


def ended(subscription: SubscriptionTimestamps, now: datetime) -> bool:
    return cancelled(subscription) and not on_grace_period(subscription, now)


def active(subscription: SubscriptionTimestamps, now: datetime) -> bool:
    """Not cancelled, or cancelled but still inside the grace period.

    A trial keeps a subscription active only while it hasn't been cancelled.
    Trials are cancelled immediately (``ends_at = now``), so a cancelled trial
    is never active even though ``trial_ends_at`` is still in the future.
    """
    return not cancelled(subscription) or on_grace_period(subscription, now)


def recurring(subscription: SubscriptionTimestamps, now: datetime) -> bool:
    """Paying normally: past any trial and not cancelled."""
    return not on_trial(subscription, now) and not cancelled(subscription)


def status(subscription: SubscriptionTimestamps, now: datetime) -> SubscriptionStatus:
    return SubscriptionStatus(
        active=active(subscription, now),
        on_trial=on_trial(subscription, now),
        cancelled=cancelled(subscription),
        on_grace_period=on_grace_period(subscription, now),
        ended=ended(subscription, now),
        recurring=recurring(subscription, now),
    )
