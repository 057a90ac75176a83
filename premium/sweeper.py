"""
Expiration sweep for premium listings.

Safe to run repeatedly and from several places at once: listings only
ever move active -> expired or pending -> active, and a property's
promoted flag is cleared in the same write that checks no active listing
survives for it. A queued listing starts its full window when it is
activated, however late the sweep runs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Set

from .models import ListingStatus, utcnow
from .repository import PremiumRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired: List[str] = field(default_factory=list)
    activated: List[str] = field(default_factory=list)
    demoted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"expired": self.expired, "activated": self.activated, "demoted": self.demoted}


class ExpirationSweeper:
    def __init__(self, repository: PremiumRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    async def sweep_expired(self) -> SweepResult:
        now = self.clock()
        result = SweepResult()

        # Phase one: flip elapsed active listings
        expired = await self.repository.expire_listings(now)
        result.expired = [l.id for l in expired]
        affected: Set[str] = {l.property_id for l in expired}

        queued = await self.repository.list_listings(status=ListingStatus.PENDING)
        affected.update(l.property_id for l in queued if l.start_date <= now)

        # Phase two: hand over to queued renewals, then demote what is left
        for property_id in sorted(affected):
            successor = await self.repository.activate_queued_listing(property_id, now)
            if successor is not None:
                result.activated.append(successor.id)
                await self.repository.set_promoted(property_id, True)
                logger.info(f"Queued premium listing {successor.id} now active for property {property_id}")
                continue
            if await self.repository.demote_if_inactive(property_id):
                result.demoted.append(property_id)
            else:
                logger.info(f"Property {property_id} still has an active premium listing; keeping promotion")

        if result.expired or result.activated:
            logger.info(
                f"Sweep expired {len(result.expired)} listing(s), activated {len(result.activated)}, "
                f"demoted {len(result.demoted)} propert(ies)"
            )
        return result
