"""
Premium listing store.

Activation writes exactly one listing per successful payment. A property
holds at most one active listing; a purchase made while one is active is
queued as a pending listing starting when the current one ends, and the
expiration sweep activates it once its predecessor expires.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .catalog import features_for_plan
from .errors import ActiveListingConflictError, ListingNotFoundError
from .models import (
    ListingStatus,
    PaymentRecord,
    PaymentStatus,
    PremiumAnalytics,
    PremiumListing,
    PremiumPlan,
    new_id,
    utcnow,
)
from .repository import PremiumRepository

logger = logging.getLogger(__name__)


def listing_window(plan: PremiumPlan, start: datetime):
    """Validity window of ``plan`` starting at ``start``, in whole days."""
    return start, start + timedelta(days=int(plan.duration_days))


class PremiumListingStore:
    def __init__(self, repository: PremiumRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def create_premium_listing(
        self,
        property_id: str,
        user_id: str,
        plan: PremiumPlan,
        payment: PaymentRecord,
    ) -> PremiumListing:
        """
        Activate premium for ``property_id`` funded by ``payment``.

        Only a payment that reached success may fund a listing. Calling this
        again for the same payment returns the listing created the first time.
        """
        if payment.status is not PaymentStatus.SUCCESS:
            raise ValueError(
                f"Payment {payment.id} is {payment.status.value}; only successful payments fund a listing"
            )
        existing = await self.repository.find_listing_by_payment(payment.id)
        if existing is not None:
            return existing

        now = self.clock()
        current = await self.get_active_listing(property_id)
        if current is None:
            listing = self._build(property_id, user_id, plan, payment, now, ListingStatus.ACTIVE)
            try:
                stored = await self.repository.insert_listing(listing)
            except ActiveListingConflictError:
                logger.info(f"Property {property_id} gained an active listing concurrently; queueing")
                current = await self.get_active_listing(property_id)
                stored = await self._queue(property_id, user_id, plan, payment, current, now)
        else:
            stored = await self._queue(property_id, user_id, plan, payment, current, now)

        if stored.status is ListingStatus.ACTIVE:
            await self.repository.set_promoted(property_id, True)
            logger.info(
                f"Premium listing {stored.id} active for property {property_id} "
                f"until {stored.end_date.isoformat()}"
            )
        return stored

    async def _queue(
        self,
        property_id: str,
        user_id: str,
        plan: PremiumPlan,
        payment: PaymentRecord,
        current: Optional[PremiumListing],
        now: datetime,
    ) -> PremiumListing:
        queued = await self.repository.list_listings(property_id=property_id, status=ListingStatus.PENDING)
        ends = [l.end_date for l in queued]
        if current is not None:
            ends.append(current.end_date)
        start = max(ends + [now])
        listing = self._build(property_id, user_id, plan, payment, start, ListingStatus.PENDING)
        stored = await self.repository.insert_listing(listing)
        logger.info(
            f"Premium listing {stored.id} queued for property {property_id} "
            f"starting {stored.start_date.isoformat()}"
        )
        return stored

    def _build(
        self,
        property_id: str,
        user_id: str,
        plan: PremiumPlan,
        payment: PaymentRecord,
        start: datetime,
        status: ListingStatus,
    ) -> PremiumListing:
        start_date, end_date = listing_window(plan, start)
        return PremiumListing(
            id=new_id("premium"),
            property_id=property_id,
            user_id=user_id,
            plan=plan,
            status=status,
            start_date=start_date,
            end_date=end_date,
            payment_id=payment.id,
            features=features_for_plan(plan),
            analytics=PremiumAnalytics(),
        )

    async def get_listing(self, listing_id: str) -> PremiumListing:
        listing = await self.repository.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(f"Premium listing not found: {listing_id}")
        return listing

    async def get_active_listing(self, property_id: str) -> Optional[PremiumListing]:
        """The property's active listing whose window has not yet elapsed."""
        now = self.clock()
        for listing in await self.repository.list_listings(property_id=property_id, status=ListingStatus.ACTIVE):
            if listing.end_date > now:
                return listing
        return None

    async def find_by_payment(self, payment_id: str) -> Optional[PremiumListing]:
        return await self.repository.find_listing_by_payment(payment_id)

    async def list_user_listings(self, user_id: str) -> List[PremiumListing]:
        return await self.repository.list_listings(user_id=user_id)

    async def list_listings(self, status: Optional[ListingStatus] = None) -> List[PremiumListing]:
        return await self.repository.list_listings(status=status)
