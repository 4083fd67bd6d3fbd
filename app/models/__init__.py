"""Models package initialization."""

from app.database import db

# Import all models here
from .queue import QueueJob
from .license import License
from .subscription import Subscription, SubscriptionItem
from .refund import Refund, Payment
from .stripe_webhook import StripeWebhookEvent

# List all models for easy access
__all__ = [
    "db",
    "QueueJob",
    "License",
    "Subscription",
    "SubscriptionItem",
    "Refund",
    "Payment",
    "StripeWebhookEvent",
]
