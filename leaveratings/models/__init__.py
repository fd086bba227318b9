from .user import User
from .business import Business
from .review import Review
from .usage import UsagePeriod
from .subscription import Subscription
from .billing_event import BillingEventLog

__all__ = [
    "User",
    "Business",
    "Review",
    "UsagePeriod",
    "Subscription",
    "BillingEventLog",
]
