"""Models package."""

from .user import User
from .credit_transaction import CreditTransaction
from .creation import Creation
from .payment_session import PaymentSession
from .processed_event import ProcessedEvent
