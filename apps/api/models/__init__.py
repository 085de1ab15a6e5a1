"""Models package."""

from .user import User
from .business import Business
from .campaign import Campaign
from .credit_transaction import CreditTransaction
from .credit_usage_log import CreditUsageLog
from .billing_event import BillingEvent
