"""
Premium plan catalog.

Reads plans from the repository and falls back to a single built-in plan
when the catalog is empty or unavailable, so the upgrade flow is never
blocked by catalog problems.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from .errors import PlanNotFoundError
from .models import PremiumFeature, PremiumPlan
from .repository import PremiumRepository

logger = logging.getLogger(__name__)

DEFAULT_PLAN = PremiumPlan(
    id="premium-monthly",
    name="Premium Listing",
    price=Decimal("29.99"),
    currency="USD",
    duration_days=30,
    description="Boost your property visibility with premium features",
    features=(
        "Featured placement at top of search results",
        "Golden highlighted border",
        "Larger photo gallery (up to 20 images)",
        "Extended listing duration (30 days)",
        "Virtual tour integration",
        "Detailed analytics dashboard",
        "Priority customer support",
        "Social media promotion",
    ),
)

PREMIUM_FEATURES: Tuple[PremiumFeature, ...] = (
    PremiumFeature("featured", "Featured Placement", "Top of search results", "Star"),
    PremiumFeature("highlight", "Highlighted Border", "Golden border styling", "Crown"),
    PremiumFeature("gallery", "Extended Gallery", "Up to 20 images", "Image"),
    PremiumFeature("duration", "Extended Duration", "Listing runs for the plan duration", "Calendar"),
    PremiumFeature("analytics", "Analytics Dashboard", "Detailed insights", "BarChart"),
    PremiumFeature("virtual-tour", "Virtual Tour", "360° property view", "Eye"),
)


def features_for_plan(plan: PremiumPlan) -> Tuple[PremiumFeature, ...]:
    """Feature flags granted by a plan."""
    return tuple(
        PremiumFeature(
            id=f.id,
            name=f.name,
            description=f"{plan.duration_days} days listing" if f.id == "duration" else f.description,
            icon=f.icon,
            enabled=True,
        )
        for f in PREMIUM_FEATURES
    )


class PlanCatalog:
    def __init__(self, repository: PremiumRepository, default_plan: PremiumPlan = DEFAULT_PLAN):
        self.repository = repository
        self.default_plan = default_plan

    async def list_plans(self, active_only: bool = True) -> List[PremiumPlan]:
        try:
            plans = await self.repository.fetch_plans(active_only=active_only)
        except Exception as e:
            logger.warning(f"Plan catalog unavailable, using default plan: {e}")
            return [self.default_plan]
        if not plans:
            logger.info("Plan catalog empty, using default plan")
            return [self.default_plan]
        return plans

    async def get_plan(self, plan_id: Optional[str] = None) -> PremiumPlan:
        """
        Return the plan with ``plan_id``, or the first active plan when omitted.

        Lookups by id include retired plans so historical payments can still
        be activated under the plan they bought.
        """
        if plan_id is None:
            return (await self.list_plans(active_only=True))[0]
        for plan in await self.list_plans(active_only=False):
            if plan.id == plan_id:
                return plan
        if plan_id == self.default_plan.id:
            return self.default_plan
        raise PlanNotFoundError(f"Premium plan not found: {plan_id}")
