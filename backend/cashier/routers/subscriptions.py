from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cashier.core.database import get_db
from cashier.core.dependencies import get_clock
from cashier.models.shared import Clock
from cashier.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionSwap,
)
from cashier.services.gateway import GatewayClientBase, GatewaySubscription, get_gateway
from cashier.services.subscription_service import SubscriptionService

router = APIRouter()


def _service(
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> SubscriptionService:
    return SubscriptionService(db, gateway, clock)


@router.post(
    "/",
    response_model=SubscriptionResponse,
    status_code=201,
    summary="Create subscription",
    responses={
        402: {"description": "Subscription creation rejected by the gateway"},
        404: {"description": "Owner not found"},
        409: {"description": "Label already has a subscription that has not ended"},
    },
)
def create_subscription(
    data: SubscriptionCreate,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    """Subscribe an owner to a gateway plan.

    The gateway customer is created on the first subscription. ``trial_days``
    overrides the plan's trial and ``skip_trial`` removes it.
    """
    builder = service.new_subscription(data.owner_id, data.name, data.plan).quantity(data.quantity)
    if data.trial_days is not None:
        builder.trial_days(data.trial_days)
    if data.skip_trial:
        builder.skip_trial()
    if data.coupon:
        builder.with_coupon(data.coupon)

    subscription = builder.create(data.payment_token)
    return SubscriptionResponse.from_model(subscription, service.clock())


@router.get(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Get subscription",
    responses={404: {"description": "Subscription not found"}},
)
def get_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    subscription = service.get_subscription(subscription_id)
    return SubscriptionResponse.from_model(subscription, service.clock())


@router.get(
    "/{subscription_id}/gateway",
    response_model=GatewaySubscription,
    summary="Get gateway view of subscription",
    responses={
        404: {"description": "Subscription not found"},
        503: {"description": "Gateway unavailable"},
    },
)
def get_gateway_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_service),
) -> GatewaySubscription:
    """Plan, price and discounts as the gateway currently reports them."""
    return service.fetch_gateway_subscription(subscription_id)


@router.post(
    "/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel subscription at period end",
    responses={404: {"description": "Subscription not found"}},
)
def cancel_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    """Cancel at the end of the billing period; trials are cancelled immediately."""
    subscription = service.cancel(subscription_id)
    return SubscriptionResponse.from_model(subscription, service.clock())


@router.post(
    "/{subscription_id}/cancel_now",
    response_model=SubscriptionResponse,
    summary="Cancel subscription immediately",
    responses={404: {"description": "Subscription not found"}},
)
def cancel_subscription_now(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    subscription = service.cancel_now(subscription_id)
    return SubscriptionResponse.from_model(subscription, service.clock())


@router.post(
    "/{subscription_id}/resume",
    response_model=SubscriptionResponse,
    summary="Resume cancelled subscription",
    responses={
        404: {"description": "Subscription not found"},
        409: {"description": "Subscription is not on its grace period"},
    },
)
def resume_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    subscription = service.resume(subscription_id)
    return SubscriptionResponse.from_model(subscription, service.clock())


@router.post(
    "/{subscription_id}/swap",
    response_model=SubscriptionResponse,
    summary="Swap subscription plan",
    responses={
        402: {"description": "Swap rejected by the gateway"},
        404: {"description": "Subscription not found"},
        409: {"description": "Subscription has ended"},
    },
)
def swap_subscription(
    subscription_id: UUID,
    data: SubscriptionSwap,
    service: SubscriptionService = Depends(_service),
) -> SubscriptionResponse:
    """Swap to another plan.

    Returns the row that now represents the subscription. When the gateway
    had to create a new subscription this is a new row with a new id.
    """
    subscription = service.swap(subscription_id, data.plan)
    return SubscriptionResponse.from_model(subscription, service.clock())
