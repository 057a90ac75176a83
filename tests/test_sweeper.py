"""
Unit tests for the two-phase expiration sweep.
"""

from datetime import timedelta

from premium.models import ListingStatus
from premium.sweeper import ExpirationSweeper


class TestExpirationSweeper:
    """Tests for ExpirationSweeper."""

    async def test_nothing_to_do(self, repository, clock):
        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()
        assert result.to_dict() == {"expired": [], "activated": [], "demoted": []}

    async def test_listing_not_expired_before_end(self, repository, listings, make_paid_payment, plan, clock):
        await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        clock.advance(days=30)

        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()

        assert result.expired == []
        assert await repository.is_promoted("prop-1") is True

    async def test_expired_listing_demotes_property(self, repository, listings, make_paid_payment, plan, clock):
        listing = await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        clock.advance(days=30, seconds=1)

        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()

        assert result.expired == [listing.id]
        assert result.demoted == ["prop-1"]
        assert (await repository.get_listing(listing.id)).status is ListingStatus.EXPIRED
        assert await repository.is_promoted("prop-1") is False

    async def test_sweep_is_idempotent(self, repository, listings, make_paid_payment, plan, clock):
        await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment("prop-1"))
        await listings.create_premium_listing("prop-2", "user-1", plan, await make_paid_payment("prop-2"))
        clock.advance(days=31)
        sweeper = ExpirationSweeper(repository, clock=clock)

        await sweeper.sweep_expired()
        snapshot = [(l.id, l.status) for l in await repository.list_listings()]
        second = await sweeper.sweep_expired()

        assert second.expired == [] and second.activated == []
        assert [(l.id, l.status) for l in await repository.list_listings()] == snapshot
        assert await repository.is_promoted("prop-1") is False

    async def test_queued_renewal_takes_over(self, repository, listings, make_paid_payment, plan, clock):
        current = await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        renewal = await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        clock.advance(days=30, seconds=1)

        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()

        assert result.expired == [current.id]
        assert result.activated == [renewal.id]
        assert result.demoted == []
        assert (await repository.get_listing(renewal.id)).status is ListingStatus.ACTIVE
        assert await repository.count_active("prop-1") == 1
        assert await repository.is_promoted("prop-1") is True

    async def test_at_most_one_active_after_every_sweep(self, repository, listings, make_paid_payment, plan, clock):
        for _ in range(3):
            await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        sweeper = ExpirationSweeper(repository, clock=clock)

        for _ in range(4):
            clock.advance(days=15)
            await sweeper.sweep_expired()
            assert await repository.count_active("prop-1") <= 1

    async def test_other_property_active_listing_untouched(self, repository, listings, make_paid_payment, plan, clock):
        await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment("prop-1"))
        clock.advance(days=20)
        later = await listings.create_premium_listing("prop-2", "user-1", plan, await make_paid_payment("prop-2"))
        clock.advance(days=11)

        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()

        assert result.demoted == ["prop-1"]
        assert (await repository.get_listing(later.id)).status is ListingStatus.ACTIVE
        assert await repository.is_promoted("prop-2") is True

    async def test_late_sweep_starts_queued_listing_with_full_window(
        self, repository, listings, make_paid_payment, plan, clock
    ):
        current = await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        renewal = await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        clock.advance(days=65)
        sweeper = ExpirationSweeper(repository, clock=clock)

        result = await sweeper.sweep_expired()
        await sweeper.sweep_expired()

        assert result.expired == [current.id]
        assert result.activated == [renewal.id]
        activated = await repository.get_listing(renewal.id)
        assert activated.status is ListingStatus.ACTIVE
        assert activated.start_date == clock()
        assert activated.end_date == clock() + timedelta(days=30)
        assert await repository.is_promoted("prop-1") is True

    async def test_queue_drains_in_order_after_late_sweeps(
        self, repository, listings, make_paid_payment, plan, clock
    ):
        created = []
        for _ in range(3):
            created.append(await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment()))
        sweeper = ExpirationSweeper(repository, clock=clock)

        activated = []
        for _ in range(2):
            clock.advance(days=100)
            activated.extend((await sweeper.sweep_expired()).activated)

        assert activated == [created[1].id, created[2].id]
        assert await repository.list_listings(status=ListingStatus.PENDING) == []
        clock.advance(days=100)
        result = await sweeper.sweep_expired()
        assert result.expired == [created[2].id]
        assert result.demoted == ["prop-1"]

    async def test_demotion_skipped_when_listing_activates_concurrently(
        self, repository, listings, make_paid_payment, plan, clock
    ):
        await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
        clock.advance(days=31)
        original_demote = repository.demote_if_inactive

        async def demote_after_new_activation(property_id):
            await listings.create_premium_listing("prop-1", "user-1", plan, await make_paid_payment())
            return await original_demote(property_id)

        repository.demote_if_inactive = demote_after_new_activation
        result = await ExpirationSweeper(repository, clock=clock).sweep_expired()

        assert result.demoted == []
        assert await repository.count_active("prop-1") == 1
        assert await repository.is_promoted("prop-1") is True
