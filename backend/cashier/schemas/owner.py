from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class OwnerCreate(BaseModel):
    external_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None


class OwnerResponse(BaseModel):
    id: UUID
    external_id: str
    name: str
    email: str | None
    gateway_customer_id: str | None
    card_brand: str | None
    card_last_four: str | None
    paypal_email: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentMethodUpdate(BaseModel):
    """Replace the owner's default payment method with a client-side tokenized one."""

    payment_token: str = Field(..., min_length=1)


class SubscribedResponse(BaseModel):
    subscribed: bool
    name: str
    plan: str | None = None
