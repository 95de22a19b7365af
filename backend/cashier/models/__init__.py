from cashier.models.owner import Owner
from cashier.models.subscription import Subscription

__all__ = [
    "Owner",
    "Subscription",
]
