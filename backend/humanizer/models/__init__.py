from humanizer.models.assignment import Assignment
from humanizer.models.payment import Payment, PaymentStatus
from humanizer.models.rewrite_job import RewriteJob
from humanizer.models.stripe_event import StripeEvent
from humanizer.models.token_usage import TokenUsage
from humanizer.models.user_account import UserAccount

__all__ = [
    "Assignment",
    "Payment",
    "PaymentStatus",
    "RewriteJob",
    "StripeEvent",
    "TokenUsage",
    "UserAccount",
]
