from subscription_service.models.plan import BillingCycle, SubscriptionPlan
from subscription_service.models.subscription import (
    SubscriptionHistory,
    SubscriptionStatus,
    UserSubscription,
)
from subscription_service.models.webhook_event import WebhookEvent
from subscription_service.models.payment import Payment, PaymentStatus
from subscription_service.models.points import PointsTransaction, TransactionType, UserPointsWallet
from subscription_service.models.earnings import (
    EarningType,
    InstructorEarning,
    InstructorPayout,
    PayoutStatus,
)

__all__ = [
    "BillingCycle",
    "SubscriptionPlan",
    "SubscriptionHistory",
    "SubscriptionStatus",
    "UserSubscription",
    "WebhookEvent",
    "Payment",
    "PaymentStatus",
    "PointsTransaction",
    "TransactionType",
    "UserPointsWallet",
    "EarningType",
    "InstructorEarning",
    "InstructorPayout",
    "PayoutStatus",
]
