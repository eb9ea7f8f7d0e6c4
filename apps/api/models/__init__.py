"""Models package."""

from .user import User
from .credit_ledger import CreditTransaction
from .payment import StripeTransaction
from .post import Post
