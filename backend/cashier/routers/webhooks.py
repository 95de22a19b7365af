import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from cashier.core.database import get_db
from cashier.core.dependencies import get_clock
from cashier.models.shared import Clock
from cashier.services.gateway import GatewayClientBase, get_gateway
from cashier.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post(
    "/gateway",
    summary="Receive gateway webhook",
    responses={
        400: {"description": "Malformed webhook body"},
        401: {"description": "Invalid webhook signature"},
    },
)
def handle_gateway_webhook(
    payload: bytes = Depends(_raw_body),
    db: Session = Depends(get_db),
    gateway: GatewayClientBase = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> dict[str, Any]:
    """Handle subscription notifications from the gateway.

    Cancellations and expirations end the matching local subscription.
    Anything else, including notifications for subscriptions we don't track,
    is acknowledged with 200 so the gateway stops redelivering it.
    """
    # WebhookParseError / WebhookSignatureError render as 400 / 401
    notification = gateway.parse_webhook(payload)

    outcome = WebhookReconciler(db, clock).handle(notification)
    logger.info(
        "Webhook %s for %s: %s", outcome.kind, outcome.subscription_id, outcome.status
    )
    return outcome.to_dict()
