"""
Storage contract for plans, payment records, premium listings and the
property "promoted" flag, plus an in-process implementation.

Every mutating method is atomic with respect to the others: status moves
are conditional (compare-and-set) so concurrent callers cannot overwrite
each other.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .errors import ActiveListingConflictError, DuplicateOrderError
from .models import (
    ListingStatus,
    PaymentRecord,
    PaymentStatus,
    PremiumAnalytics,
    PremiumListing,
    PremiumPlan,
    utcnow,
)

logger = logging.getLogger(__name__)


class PremiumRepository(ABC):
    """Persistence contract used by the premium managers."""

    # Plans

    @abstractmethod
    async def fetch_plans(self, active_only: bool = True) -> List[PremiumPlan]:
        ...

    # Payments

    @abstractmethod
    async def insert_payment(self, record: PaymentRecord) -> PaymentRecord:
        """Persist a new record; raises DuplicateOrderError on a reused order id."""

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    async def find_payment_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    async def find_payment_by_invoice_id(self, invoice_id: str) -> Optional[PaymentRecord]:
        ...

    @abstractmethod
    async def update_payment_if_pending(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        """Apply the update only while the record is pending.

        Returns the updated record, or None when the record is missing or
        already terminal.
        """

    @abstractmethod
    async def list_payments(
        self, payment_ids: Optional[Iterable[str]] = None, status: Optional[PaymentStatus] = None
    ) -> List[PaymentRecord]:
        ...

    # Listings

    @abstractmethod
    async def insert_listing(self, listing: PremiumListing) -> PremiumListing:
        """Insert a listing, at most one per payment id.

        Returns the already stored listing when the payment id is taken.
        Raises ActiveListingConflictError when inserting an active listing
        for a property that already has one.
        """

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[PremiumListing]:
        ...

    @abstractmethod
    async def find_listing_by_payment(self, payment_id: str) -> Optional[PremiumListing]:
        ...

    @abstractmethod
    async def list_listings(
        self,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[ListingStatus] = None,
    ) -> List[PremiumListing]:
        ...

    @abstractmethod
    async def expire_listings(self, now: datetime) -> List[PremiumListing]:
        """Flip active listings with end_date < now to expired; return the flipped ones."""

    @abstractmethod
    async def activate_queued_listing(self, property_id: str, now: datetime) -> Optional[PremiumListing]:
        """
        Activate the earliest due pending listing when the property has no active one.

        The activated window is moved to start at ``now`` with its full
        duration, so a late sweep never shortens or strands a queued purchase.
        """

    @abstractmethod
    async def count_active(self, property_id: str) -> int:
        ...

    @abstractmethod
    async def compare_and_set_analytics(
        self, listing_id: str, expected_version: int, analytics: PremiumAnalytics
    ) -> bool:
        ...

    # Property visibility

    @abstractmethod
    async def set_promoted(self, property_id: str, promoted: bool) -> None:
        ...

    @abstractmethod
    async def is_promoted(self, property_id: str) -> bool:
        ...

    @abstractmethod
    async def demote_if_inactive(self, property_id: str) -> bool:
        """Clear the promoted flag unless an active listing exists, in one step; True when cleared."""


class InMemoryPremiumRepository(PremiumRepository):
    """
    Process-local repository.

    Records are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self, plans: Optional[Iterable[PremiumPlan]] = None):
        self._plans: List[PremiumPlan] = list(plans or [])
        self._payments: Dict[str, PaymentRecord] = {}
        self._listings: Dict[str, PremiumListing] = {}
        self._promoted: Dict[str, bool] = {}
        self._lock = asyncio.Lock()

    async def fetch_plans(self, active_only: bool = True) -> List[PremiumPlan]:
        return [p for p in self._plans if p.active or not active_only]

    def add_plan(self, plan: PremiumPlan) -> None:
        self._plans.append(plan)

    async def insert_payment(self, record: PaymentRecord) -> PaymentRecord:
        async with self._lock:
            if any(p.order_id == record.order_id for p in self._payments.values()):
                raise DuplicateOrderError(f"Order id already used: {record.order_id}")
            self._payments[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        return copy.deepcopy(self._payments.get(payment_id))

    async def find_payment_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        for record in self._payments.values():
            if record.order_id == order_id:
                return copy.deepcopy(record)
        return None

    async def find_payment_by_invoice_id(self, invoice_id: str) -> Optional[PaymentRecord]:
        for record in self._payments.values():
            if record.invoice_id == invoice_id:
                return copy.deepcopy(record)
        return None

    async def update_payment_if_pending(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        async with self._lock:
            record = self._payments.get(payment_id)
            if record is None or record.status is not PaymentStatus.PENDING:
                return None
            record.status = status
            if transaction_id is not None:
                record.transaction_id = transaction_id
            if invoice_id is not None:
                record.invoice_id = invoice_id
            if payment_method is not None:
                record.payment_method = payment_method
            if payment_channel is not None:
                record.payment_channel = payment_channel
            record.updated_at = utcnow()
            return copy.deepcopy(record)

    async def list_payments(
        self, payment_ids: Optional[Iterable[str]] = None, status: Optional[PaymentStatus] = None
    ) -> List[PaymentRecord]:
        wanted = set(payment_ids) if payment_ids is not None else None
        return [
            copy.deepcopy(p)
            for p in self._payments.values()
            if (wanted is None or p.id in wanted) and (status is None or p.status == status)
        ]

    async def insert_listing(self, listing: PremiumListing) -> PremiumListing:
        async with self._lock:
            for existing in self._listings.values():
                if existing.payment_id == listing.payment_id:
                    return copy.deepcopy(existing)
            if listing.status is ListingStatus.ACTIVE and self._active_for(listing.property_id):
                raise ActiveListingConflictError(
                    f"Property {listing.property_id} already has an active premium listing"
                )
            self._listings[listing.id] = copy.deepcopy(listing)
            return copy.deepcopy(listing)

    def _active_for(self, property_id: str) -> List[PremiumListing]:
        return [
            l for l in self._listings.values()
            if l.property_id == property_id and l.status is ListingStatus.ACTIVE
        ]

    async def get_listing(self, listing_id: str) -> Optional[PremiumListing]:
        return copy.deepcopy(self._listings.get(listing_id))

    async def find_listing_by_payment(self, payment_id: str) -> Optional[PremiumListing]:
        for listing in self._listings.values():
            if listing.payment_id == payment_id:
                return copy.deepcopy(listing)
        return None

    async def list_listings(
        self,
        property_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[ListingStatus] = None,
    ) -> List[PremiumListing]:
        result = [
            copy.deepcopy(l)
            for l in self._listings.values()
            if (property_id is None or l.property_id == property_id)
            and (user_id is None or l.user_id == user_id)
            and (status is None or l.status == status)
        ]
        return sorted(result, key=lambda l: l.start_date)

    async def expire_listings(self, now: datetime) -> List[PremiumListing]:
        expired = []
        async with self._lock:
            for listing in self._listings.values():
                if listing.status is ListingStatus.ACTIVE and listing.end_date < now:
                    listing.status = ListingStatus.EXPIRED
                    listing.updated_at = now
                    expired.append(copy.deepcopy(listing))
        return expired

    async def activate_queued_listing(self, property_id: str, now: datetime) -> Optional[PremiumListing]:
        async with self._lock:
            if self._active_for(property_id):
                return None
            due = sorted(
                (
                    l for l in self._listings.values()
                    if l.property_id == property_id
                    and l.status is ListingStatus.PENDING
                    and l.start_date <= now
                ),
                key=lambda l: l.start_date,
            )
            if not due:
                return None
            listing = due[0]
            listing.end_date = now + (listing.end_date - listing.start_date)
            listing.start_date = now
            listing.status = ListingStatus.ACTIVE
            listing.updated_at = now
            return copy.deepcopy(listing)

    async def count_active(self, property_id: str) -> int:
        return len(self._active_for(property_id))

    async def compare_and_set_analytics(
        self, listing_id: str, expected_version: int, analytics: PremiumAnalytics
    ) -> bool:
        async with self._lock:
            listing = self._listings.get(listing_id)
            if listing is None or listing.analytics_version != expected_version:
                return False
            listing.analytics = analytics.copy()
            listing.analytics_version += 1
            listing.updated_at = utcnow()
            return True

    async def set_promoted(self, property_id: str, promoted: bool) -> None:
        self._promoted[property_id] = promoted

    async def is_promoted(self, property_id: str) -> bool:
        return self._promoted.get(property_id, False)

    async def demote_if_inactive(self, property_id: str) -> bool:
        async with self._lock:
            if self._active_for(property_id) or property_id not in self._promoted:
                return False
            self._promoted[property_id] = False
            return True
