from cashier.repositories.owner_repository import OwnerRepository
from cashier.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "OwnerRepository",
    "SubscriptionRepository",
]
