"""
Premium listing upgrades and payment orchestration.

Upgrade workflow, payment records, premium listing lifecycle, expiration
sweep and listing analytics for a property marketplace.
"""

# =============================================================================
# MODELS AND ERRORS
# =============================================================================

from .errors import (
    ActiveListingConflictError,
    AnalyticsConflictError,
    DatabaseError,
    DuplicateOrderError,
    GatewayAuthError,
    GatewayError,
    ListingNotFoundError,
    PaymentNotFoundError,
    PlanNotFoundError,
    PremiumError,
    TerminalPaymentError,
    ValidationError,
    WebhookVerificationError,
    WorkflowStateError,
)
from .models import (
    AnalyticsEvent,
    BillingDetails,
    CardDetails,
    DailyViews,
    ListingStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    PremiumAnalytics,
    PremiumFeature,
    PremiumListing,
    PremiumPlan,
    Session,
    SourceCount,
)

# =============================================================================
# MANAGERS
# =============================================================================

from .analytics import AnalyticsAggregator, InsightSummary, compute_conversion_rate
from .catalog import DEFAULT_PLAN, PlanCatalog
from .listings import PremiumListingStore
from .payments import PaymentRecordManager, generate_order_id
from .reconciliation import PaymentReconciler
from .repository import InMemoryPremiumRepository, PremiumRepository
from .sweeper import ExpirationSweeper, SweepResult

# =============================================================================
# GATEWAY, CHECKOUT AND WORKFLOW
# =============================================================================

from .checkout import CheckoutHandoff, CheckoutResult, CheckoutStatus
from .gateway import GatewayOutcome, XenditGateway, translate_status
from .landing import PaymentLanding
from .webhooks import WebhookHandler
from .workflow import UpgradeWorkflow, WorkflowState

__version__ = "1.0.0"

__all__ = [
    # Errors
    "PremiumError",
    "ValidationError",
    "WorkflowStateError",
    "PlanNotFoundError",
    "PaymentNotFoundError",
    "ListingNotFoundError",
    "ActiveListingConflictError",
    "DuplicateOrderError",
    "TerminalPaymentError",
    "GatewayError",
    "GatewayAuthError",
    "AnalyticsConflictError",
    "WebhookVerificationError",
    "DatabaseError",
    # Models
    "AnalyticsEvent",
    "BillingDetails",
    "CardDetails",
    "DailyViews",
    "ListingStatus",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
    "PremiumAnalytics",
    "PremiumFeature",
    "PremiumListing",
    "PremiumPlan",
    "Session",
    "SourceCount",
    # Managers
    "AnalyticsAggregator",
    "InsightSummary",
    "compute_conversion_rate",
    "DEFAULT_PLAN",
    "PlanCatalog",
    "PremiumListingStore",
    "PaymentRecordManager",
    "generate_order_id",
    "PaymentReconciler",
    "PremiumRepository",
    "InMemoryPremiumRepository",
    "ExpirationSweeper",
    "SweepResult",
    # Gateway, checkout and workflow
    "CheckoutHandoff",
    "CheckoutResult",
    "CheckoutStatus",
    "GatewayOutcome",
    "XenditGateway",
    "translate_status",
    "PaymentLanding",
    "WebhookHandler",
    "UpgradeWorkflow",
    "WorkflowState",
]
