from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from cashier.models.shared import as_utc
from cashier.models.subscription import Subscription


class SubscriptionRepository:
    """Explicit persistence for subscription mirror rows.

    Every mutating method commits and returns the refreshed row; nothing is
    saved implicitly.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def get_by_gateway_id(self, gateway_id: str) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.gateway_id == gateway_id).first()

    def get_by_owner_id(self, owner_id: UUID) -> list[Subscription]:
        """All rows for an owner, newest first."""
        return (
            self.db.query(Subscription)
            .filter(Subscription.owner_id == owner_id)
            .order_by(Subscription.created_at.desc())
            .all()
        )

    def get_by_owner_and_name(self, owner_id: UUID, name: str) -> list[Subscription]:
        """All rows for an owner's label, newest first."""
        return (
            self.db.query(Subscription)
            .filter(Subscription.owner_id == owner_id, Subscription.name == name)
            .order_by(Subscription.created_at.desc())
            .all()
        )

    def get_current(self, owner_id: UUID, name: str, now: datetime) -> Subscription | None:
        """The row that currently represents ``name`` for the owner.

        That is the newest row that has not ended, or the newest row overall
        when every row for the label has ended.
        """
        rows = self.get_by_owner_and_name(owner_id, name)
        return self._first_unended(rows, now) or (rows[0] if rows else None)

    def get_unended(self, owner_id: UUID, name: str, now: datetime) -> Subscription | None:
        """The newest row for the label that has not ended yet (grace periods included)."""
        return self._first_unended(self.get_by_owner_and_name(owner_id, name), now)

    @staticmethod
    def _first_unended(rows: list[Subscription], now: datetime) -> Subscription | None:
        for row in rows:
            ends_at = as_utc(row.ends_at)  # type: ignore[arg-type]
            if ends_at is None or now < ends_at:
                return row
        return None

    def create(
        self,
        owner_id: UUID,
        name: str,
        gateway_id: str,
        gateway_plan: str,
        quantity: int,
        trial_ends_at: datetime | None,
        created_at: datetime,
    ) -> Subscription:
        subscription = Subscription(
            owner_id=owner_id,
            name=name,
            gateway_id=gateway_id,
            gateway_plan=gateway_plan,
            quantity=quantity,
            trial_ends_at=trial_ends_at,
            ends_at=None,
            created_at=created_at,
            updated_at=created_at,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def set_ends_at(self, subscription: Subscription, ends_at: datetime | None) -> Subscription:
        subscription.ends_at = ends_at  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def mark_resumed(
        self, subscription: Subscription, trial_ends_at: datetime | None = None
    ) -> Subscription:
        """Clear ``ends_at``; replace the trial end only when the gateway restored one."""
        subscription.ends_at = None  # type: ignore[assignment]
        if trial_ends_at is not None:
            subscription.trial_ends_at = trial_ends_at  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def set_plan(self, subscription: Subscription, gateway_plan: str) -> Subscription:
        """In-place swap: same gateway subscription, new plan, no longer cancelled."""
        subscription.gateway_plan = gateway_plan  # type: ignore[assignment]
        subscription.ends_at = None  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def count_for_owner(self, owner_id: UUID) -> int:
        return self.db.query(Subscription).filter(Subscription.owner_id == owner_id).count()
