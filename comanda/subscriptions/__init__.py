"""
Module 'subscriptions' (feature-first): checkout et réconciliation des abonnements
des entreprises, sur le même principe que le checkout delivery.
"""

from .schemas import SubscriptionDraft, map_status
from .service import start_subscription_checkout, complete_subscription_checkout

__all__ = [
    "SubscriptionDraft",
    "map_status",
    "start_subscription_checkout",
    "complete_subscription_checkout",
]
