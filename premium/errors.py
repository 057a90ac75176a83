"""
Exceptions raised by the premium listing core.
"""
from typing import Dict, Optional


class PremiumError(Exception):
    """Base class for premium listing errors"""
    pass


class ValidationError(PremiumError):
    """Raised when billing or card input fails validation"""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__(", ".join(f"{k}: {v}" for k, v in self.errors.items()))


class WorkflowStateError(PremiumError):
    """Raised when an operation is not allowed in the current workflow state"""
    pass


class PlanNotFoundError(PremiumError):
    pass


class PaymentNotFoundError(PremiumError):
    pass


class ListingNotFoundError(PremiumError):
    pass


class ActiveListingConflictError(PremiumError):
    """Raised by a repository when a property already has an active listing"""
    pass


class DuplicateOrderError(PremiumError):
    """Raised when an order id has already been used for a payment"""
    pass


class TerminalPaymentError(PremiumError):
    """Raised when a terminal payment record would be moved to another status"""

    def __init__(self, payment_id: str, current: str, requested: str):
        self.payment_id = payment_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Payment {payment_id} is already {current}; refusing transition to {requested}"
        )


class GatewayError(PremiumError):
    """Raised for transport, auth or malformed-response failures at the gateway"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GatewayAuthError(GatewayError):
    pass


class AnalyticsConflictError(PremiumError):
    """Raised when an analytics compare-and-swap keeps losing to concurrent writers"""
    pass


class WebhookVerificationError(PremiumError):
    pass


class DatabaseError(PremiumError):
    """Raised when the database rejects a statement or cannot be reached"""

    def __init__(self, message: str, code: Optional[str] = None, constraint: Optional[str] = None):
        self.code = code
        self.constraint = constraint
        super().__init__(message)
