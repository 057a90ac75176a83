"""
Premium listing analytics aggregation.

Counters (views, inquiries, favorites) only ever grow by one per event.
Writes go through a compare-and-swap loop on the listing's analytics
version, so concurrent events for the same listing are never lost.
"""

import bisect
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from .errors import AnalyticsConflictError
from .models import (
    AnalyticsEvent,
    DailyViews,
    ListingStatus,
    PaymentRecord,
    PremiumAnalytics,
    PremiumListing,
    SourceCount,
    utcnow,
)
from .repository import PremiumRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
INSIGHT_WINDOW_DAYS = 7


def compute_conversion_rate(inquiries: int, views: int) -> Optional[float]:
    """Inquiries per view as a percentage rounded to one decimal, None when views is zero."""
    if views <= 0:
        return None
    rate = (Decimal(inquiries) / Decimal(views) * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return float(rate)


def add_daily_view(daily_views: List[DailyViews], day: str) -> None:
    """Count one view in the bucket for ``day``, creating it in date order if missing."""
    for bucket in daily_views:
        if bucket.date == day:
            bucket.views += 1
            return
    # ISO dates sort lexicographically
    position = bisect.bisect_right([b.date for b in daily_views], day)
    daily_views.insert(position, DailyViews(date=day, views=1))


def apply_event(analytics: PremiumAnalytics, event: AnalyticsEvent, day: str) -> PremiumAnalytics:
    """Return a new snapshot with ``event`` applied; the input is left untouched."""
    event = AnalyticsEvent(event)
    updated = analytics.copy()
    if event is AnalyticsEvent.VIEW:
        updated.views += 1
        add_daily_view(updated.daily_views, day)
    elif event is AnalyticsEvent.INQUIRY:
        updated.inquiries += 1
    else:
        updated.favorites += 1

    if event in (AnalyticsEvent.VIEW, AnalyticsEvent.INQUIRY):
        rate = compute_conversion_rate(updated.inquiries, updated.views)
        if rate is not None:
            updated.conversion_rate = rate
    return updated


def apply_source(analytics: PremiumAnalytics, source: str) -> PremiumAnalytics:
    updated = analytics.copy()
    for entry in updated.top_sources:
        if entry.source == source:
            entry.count += 1
            return updated
    updated.top_sources.append(SourceCount(source=source, count=1))
    return updated


def ranked_sources(analytics: PremiumAnalytics, limit: Optional[int] = None) -> List[SourceCount]:
    """Top sources sorted by count, highest first."""
    ranked = sorted(analytics.top_sources, key=lambda s: (-s.count, s.source))
    return ranked[:limit] if limit is not None else ranked


@dataclass
class InsightSummary:
    listing_id: str
    property_id: str
    days_remaining: int
    views: int
    inquiries: int
    favorites: int
    conversion_rate: float
    last_days: List[Dict[str, Any]] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def expired(self) -> bool:
        return self.days_remaining <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "property_id": self.property_id,
            "days_remaining": self.days_remaining,
            "expired": self.expired,
            "views": self.views,
            "inquiries": self.inquiries,
            "favorites": self.favorites,
            "conversion_rate": f"{self.conversion_rate:.1f}%",
            "last_days": self.last_days,
            "sources": self.sources,
        }


def days_remaining(end_date: datetime, now: datetime) -> int:
    seconds = (end_date - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def summarize(listing: PremiumListing, now: Optional[datetime] = None, window_days: int = INSIGHT_WINDOW_DAYS) -> InsightSummary:
    now = now or utcnow()
    analytics = listing.analytics
    by_date = {b.date: b.views for b in analytics.daily_views}
    today = now.date()
    last_days = []
    for offset in range(window_days - 1, -1, -1):
        day = today - timedelta(days=offset)
        key = day.isoformat()
        last_days.append({"date": key, "label": day.strftime("%b %d"), "views": by_date.get(key, 0)})

    sources = []
    for entry in ranked_sources(analytics):
        share = (entry.count / analytics.views * 100) if analytics.views else 0.0
        sources.append({"source": entry.source, "count": entry.count, "percentage": round(share, 1)})

    return InsightSummary(
        listing_id=listing.id,
        property_id=listing.property_id,
        days_remaining=days_remaining(listing.end_date, now),
        views=analytics.views,
        inquiries=analytics.inquiries,
        favorites=analytics.favorites,
        conversion_rate=analytics.conversion_rate,
        last_days=last_days,
        sources=sources,
    )


def build_overview(
    listings: List[PremiumListing],
    payments: List[PaymentRecord],
    status: Optional[ListingStatus] = None,
) -> Dict[str, Any]:
    """Admin totals over premium listings and their payments."""
    selected = [l for l in listings if status is None or l.status == status]
    revenue = sum((p.amount for p in payments if p.status.value == "success"), Decimal("0"))
    avg_conversion = (
        round(sum(l.analytics.conversion_rate for l in selected) / len(selected), 1) if selected else 0.0
    )
    return {
        "total_revenue": str(revenue),
        "total_listings": len(selected),
        "active_listings": sum(1 for l in listings if l.status is ListingStatus.ACTIVE),
        "total_views": sum(l.analytics.views for l in selected),
        "average_conversion_rate": avg_conversion,
    }


class AnalyticsAggregator:
    def __init__(
        self,
        repository: PremiumRepository,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.max_retries = max_retries
        self.clock = clock

    async def _target_listing(self, property_id: str) -> Optional[PremiumListing]:
        now = self.clock()
        for listing in await self.repository.list_listings(property_id=property_id, status=ListingStatus.ACTIVE):
            if listing.end_date > now:
                return listing
        return None

    async def _update(
        self, property_id: str, mutate: Callable[[PremiumAnalytics], PremiumAnalytics], label: str
    ) -> Optional[PremiumAnalytics]:
        for attempt in range(self.max_retries):
            listing = await self._target_listing(property_id)
            if listing is None:
                logger.debug(f"No active premium listing for property {property_id}; {label} not recorded")
                return None
            updated = mutate(listing.analytics)
            if await self.repository.compare_and_set_analytics(listing.id, listing.analytics_version, updated):
                return updated
            logger.debug(
                f"Analytics write conflict on listing {listing.id} "
                f"(attempt {attempt + 1}/{self.max_retries})"
            )
        logger.error(f"Gave up recording {label} for property {property_id} after {self.max_retries} attempts")
        raise AnalyticsConflictError(f"Could not record {label} for property {property_id}")

    async def record_event(self, property_id: str, kind: AnalyticsEvent) -> Optional[PremiumAnalytics]:
        """Apply one view/inquiry/favorite to the property's active listing."""
        kind = AnalyticsEvent(kind)
        day = self.clock().date().isoformat()
        return await self._update(property_id, lambda a: apply_event(a, kind, day), kind.value)

    async def record_source(self, property_id: str, source: str) -> Optional[PremiumAnalytics]:
        source = source.strip()
        if not source:
            raise ValueError("source label must not be empty")
        return await self._update(property_id, lambda a: apply_source(a, source), f"source {source}")

    async def insights(self, property_id: str) -> Optional[InsightSummary]:
        listing = await self._target_listing(property_id)
        if listing is None:
            return None
        return summarize(listing, self.clock())
