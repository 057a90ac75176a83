"""
Tests for the checkout hand-off polling loop.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

from premium.checkout import CheckoutHandoff, CheckoutStatus
from premium.errors import GatewayError
from premium.gateway import GatewayOutcome, InvoiceStatusResult


def status(outcome: GatewayOutcome, external: str = "PENDING") -> InvoiceStatusResult:
    return InvoiceStatusResult(
        invoice_id="inv-1",
        status=outcome,
        external_status=external,
        transaction_id="tx-1" if outcome is GatewayOutcome.SUCCESS else None,
    )


PENDING = status(GatewayOutcome.PENDING)
PAID = status(GatewayOutcome.SUCCESS, "PAID")
EXPIRED = status(GatewayOutcome.FAILED, "EXPIRED")


def make_handoff(side_effect, **kwargs) -> CheckoutHandoff:
    gateway = Mock()
    gateway.get_invoice_status = AsyncMock(side_effect=side_effect)
    options = {"poll_interval": 0.01, "max_poll_interval": 0.02, "timeout": 5.0, "max_attempts": 50}
    options.update(kwargs)
    return CheckoutHandoff(gateway, **options)


class TestCheckoutHandoff:
    """Tests for CheckoutHandoff.open_checkout."""

    async def test_success_after_polling(self):
        handoff = make_handoff([PENDING, PENDING, PAID])
        result = await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")

        assert result.status is CheckoutStatus.SUCCESS
        assert result.transaction_id == "tx-1"
        assert result.attempts == 3

    async def test_failed_invoice(self):
        handoff = make_handoff([PENDING, EXPIRED])
        result = await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")
        assert result.status is CheckoutStatus.FAILED

    async def test_gateway_errors_are_retried(self):
        handoff = make_handoff([GatewayError("boom"), GatewayError("boom"), PAID])
        result = await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")
        assert result.status is CheckoutStatus.SUCCESS

    async def test_attempts_exhausted_is_pending(self):
        handoff = make_handoff(lambda invoice_id: PENDING, max_attempts=3)
        result = await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")

        assert result.status is CheckoutStatus.PENDING
        assert handoff.gateway.get_invoice_status.await_count == 3

    async def test_timeout_is_pending(self):
        handoff = make_handoff(lambda invoice_id: PENDING, timeout=0.05, max_attempts=10_000)
        result = await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")
        assert result.status is CheckoutStatus.PENDING

    async def test_close_without_payment(self):
        handoff = make_handoff(lambda invoice_id: PENDING, poll_interval=10.0, max_poll_interval=10.0)
        task = asyncio.create_task(handoff.open_checkout("https://checkout.test/inv-1", "inv-1"))
        await asyncio.sleep(0.05)
        handoff.close()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.status is CheckoutStatus.CLOSED
        assert handoff.gateway.get_invoice_status.await_count == 2

    async def test_close_after_payment_completes(self):
        handoff = make_handoff([PENDING, PAID], poll_interval=10.0, max_poll_interval=10.0)
        task = asyncio.create_task(handoff.open_checkout("https://checkout.test/inv-1", "inv-1"))
        await asyncio.sleep(0.05)
        handoff.close()
        result = await asyncio.wait_for(task, timeout=1.0)
        assert result.status is CheckoutStatus.SUCCESS

    async def test_async_launcher_receives_url(self):
        launcher = AsyncMock()
        handoff = make_handoff([PAID], launcher=launcher)
        await handoff.open_checkout("https://checkout.test/inv-1", "inv-1")
        launcher.assert_awaited_once_with("https://checkout.test/inv-1")

    def test_backoff_is_capped(self):
        handoff = make_handoff([], poll_interval=2.0, max_poll_interval=15.0)
        assert handoff._delay(0) == 2.0
        assert handoff._delay(1) == 3.0
        assert handoff._delay(10) == 15.0
