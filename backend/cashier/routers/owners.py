from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from cashier.core.config import settings
from cashier.core.database import get_db
from cashier.core.dependencies import get_clock
from cashier.core.exceptions import OwnerNotFound
from cashier.models.owner import Owner
from cashier.models.shared import Clock
from cashier.repositories.owner_repository import OwnerRepository
from cashier.schemas.invoice import InvoiceView
from cashier.schemas.owner import (
    OwnerCreate,
    OwnerResponse,
    PaymentMethodUpdate,
    SubscribedResponse,
)
from cashier.schemas.subscription import CouponApply, SubscriptionResponse
from cashier.services.billing_service import BillingService
from cashier.services.gateway import GatewayClientBase, get_gateway
from cashier.services.subscription_service import SubscriptionService

router = APIRouter()


@router.post(
    "/",
    response_model=OwnerResponse,
    status_code=201,
    summary="Create owner",
    responses={409: {"description": "Owner with this external ID already exists"}},
)
def create_owner(
    data: OwnerCreate,
    db: Session = Depends(get_db),
) -> Owner:
    """Register a billable owner. The gateway customer is created on first subscribe."""
    repo = OwnerRepository(db)
    if repo.external_id_exists(data.external_id):
        raise HTTPException(status_code=409, detail="Owner with this external_id already exists")
    return repo.create(data)


@router.get(
    "/{owner_id}",
    response_model=OwnerResponse,
    summary="Get owner",
    responses={404: {"description": "Owner not found"}},
)
def get_owner(
    owner_id: UUID,
    db: Session = Depends(get_db),
) -> Owner:
    owner = OwnerRepository(db).get_by_id(owner_id)
    if not owner:
        raise OwnerNotFound(str(owner_id))
    return owner


@router.put(
    "/{owner_id}/payment_method",
    response_model=OwnerResponse,
    summary="Update default payment method",
    responses={
        402: {"description": "Payment method rejected by the gateway"},
        404: {"description": "Owner not found"},
    },
)
def update_payment_method(
    owner_id: UUID,
    data: PaymentMethodUpdate,
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
) -> Owner:
    return BillingService(db, gateway).update_payment_method(owner_id, data.payment_token)


@router.get(
    "/{owner_id}/subscriptions",
    response_model=list[SubscriptionResponse],
    summary="List owner subscriptions",
    responses={404: {"description": "Owner not found"}},
)
def list_owner_subscriptions(
    owner_id: UUID,
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> list[SubscriptionResponse]:
    """All subscription rows for the owner, newest first, ended ones included."""
    service = SubscriptionService(db, gateway, clock)
    service.get_owner(owner_id)
    now = clock()
    return [SubscriptionResponse.from_model(s, now) for s in service.subscriptions(owner_id)]


@router.get(
    "/{owner_id}/subscribed",
    response_model=SubscribedResponse,
    summary="Check subscription status",
    responses={404: {"description": "Owner not found"}},
)
def check_subscribed(
    owner_id: UUID,
    name: str = Query(default=settings.default_subscription_name),
    plan: str | None = Query(default=None),
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> SubscribedResponse:
    service = SubscriptionService(db, gateway, clock)
    service.get_owner(owner_id)
    return SubscribedResponse(
        subscribed=service.subscribed(owner_id, name, plan),
        name=name,
        plan=plan,
    )


@router.post(
    "/{owner_id}/coupons",
    status_code=204,
    summary="Apply coupon",
    responses={
        402: {"description": "Coupon rejected by the gateway"},
        404: {"description": "Owner or subscription not found"},
    },
)
def apply_coupon(
    owner_id: UUID,
    data: CouponApply,
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> None:
    """Apply a coupon to the owner's current subscription for a label."""
    SubscriptionService(db, gateway, clock).apply_coupon(owner_id, data.coupon, data.name)


@router.get(
    "/{owner_id}/invoices",
    response_model=list[InvoiceView],
    summary="List invoices",
    responses={404: {"description": "Owner not found"}},
)
def list_invoices(
    owner_id: UUID,
    include_pending: bool = Query(default=False),
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
) -> list[InvoiceView]:
    return BillingService(db, gateway).invoices(owner_id, include_pending)


@router.get(
    "/{owner_id}/invoices/{invoice_id}",
    response_model=InvoiceView,
    summary="Get invoice",
    responses={404: {"description": "Owner or invoice not found"}},
)
def get_invoice(
    owner_id: UUID,
    invoice_id: str,
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
) -> InvoiceView:
    return BillingService(db, gateway).find_invoice_or_fail(owner_id, invoice_id)
