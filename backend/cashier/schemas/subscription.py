from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from cashier.core.config import settings
from cashier.models.shared import as_utc
from cashier.models.subscription import Subscription
from cashier.services import subscription_state as state


class SubscriptionCreate(BaseModel):
    owner_id: UUID
    name: str = Field(default=settings.default_subscription_name, min_length=1, max_length=255)
    plan: str = Field(..., min_length=1, max_length=255)
    payment_token: str | None = None
    coupon: str | None = None
    trial_days: int | None = Field(default=None, ge=0)
    skip_trial: bool = False
    quantity: int = Field(default=1, ge=1)


class SubscriptionSwap(BaseModel):
    plan: str = Field(..., min_length=1, max_length=255)


class CouponApply(BaseModel):
    coupon: str = Field(..., min_length=1, max_length=255)
    name: str = Field(default=settings.default_subscription_name, min_length=1, max_length=255)


class SubscriptionResponse(BaseModel):
    id: UUID
    owner_id: UUID
    name: str
    gateway_id: str
    gateway_plan: str
    quantity: int
    trial_ends_at: datetime | None
    ends_at: datetime | None
    created_at: datetime
    updated_at: datetime

    # Derived at response time from the timestamps above
    active: bool
    on_trial: bool
    cancelled: bool
    on_grace_period: bool
    ended: bool
    recurring: bool

    @classmethod
    def from_model(cls, subscription: Subscription, now: datetime) -> "SubscriptionResponse":
        derived = state.status(subscription, now)
        return cls(
            id=subscription.id,  # type: ignore[arg-type]
            owner_id=subscription.owner_id,  # type: ignore[arg-type]
            name=subscription.name,  # type: ignore[arg-type]
            gateway_id=subscription.gateway_id,  # type: ignore[arg-type]
            gateway_plan=subscription.gateway_plan,  # type: ignore[arg-type]
            quantity=subscription.quantity,  # type: ignore[arg-type]
            trial_ends_at=as_utc(subscription.trial_ends_at),  # type: ignore[arg-type]
            ends_at=as_utc(subscription.ends_at),  # type: ignore[arg-type]
            created_at=as_utc(subscription.created_at),  # type: ignore[arg-type]
            updated_at=as_utc(subscription.updated_at),  # type: ignore[arg-type]
            active=derived.active,
            on_trial=derived.on_trial,
            cancelled=derived.cancelled,
            on_grace_period=derived.on_grace_period,
            ended=derived.ended,
            recurring=derived.recurring,
        )
