from cashier.schemas.invoice import InvoiceDiscount, InvoiceLineItem, InvoiceView
from cashier.schemas.owner import (
    OwnerCreate,
    OwnerResponse,
    PaymentMethodUpdate,
    SubscribedResponse,
)
from cashier.schemas.subscription import (
    CouponApply,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionSwap,
)

__all__ = [
    "CouponApply",
    "InvoiceDiscount",
    "InvoiceLineItem",
    "InvoiceView",
    "OwnerCreate",
    "OwnerResponse",
    "PaymentMethodUpdate",
    "SubscribedResponse",
    "SubscriptionCreate",
    "SubscriptionResponse",
    "SubscriptionSwap",
]
