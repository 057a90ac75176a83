"""
Checkout hand-off.

Opens the hosted checkout page and waits for a terminal invoice status by
polling the gateway with exponential backoff. The wait always resolves:
closing the checkout resolves it after one last status check, and running
out of time or attempts resolves it as pending.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from .errors import GatewayError
from .gateway import GatewayOutcome, InvoiceStatusResult

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_INTERVAL = 15.0
DEFAULT_TIMEOUT = 900.0
DEFAULT_MAX_ATTEMPTS = 120
BACKOFF_BASE = 1.5


class CheckoutStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class CheckoutResult:
    status: CheckoutStatus
    invoice_id: str
    transaction_id: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    method: Optional[str] = None
    channel: Optional[str] = None
    attempts: int = 0


def _log_launch(checkout_url: str) -> None:
    logger.info(f"Checkout ready at {checkout_url}")


class CheckoutHandoff:
    def __init__(
        self,
        gateway,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_interval: float = DEFAULT_MAX_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        launcher: Optional[Callable[[str], Any]] = None,
    ):
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.launcher = launcher or _log_launch
        self._closed = asyncio.Event()

    def close(self) -> None:
        """Signal that the user closed the checkout surface."""
        self._closed.set()

    def _delay(self, attempt: int) -> float:
        return min(self.poll_interval * (BACKOFF_BASE ** attempt), self.max_poll_interval)

    async def _check(self, invoice_id: str) -> Optional[InvoiceStatusResult]:
        try:
            return await self.gateway.get_invoice_status(invoice_id)
        except GatewayError as e:
            logger.warning(f"Status check for invoice {invoice_id} failed: {e}")
            return None

    @staticmethod
    def _result(status: CheckoutStatus, invoice_id: str, observed: Optional[InvoiceStatusResult], attempts: int) -> CheckoutResult:
        return CheckoutResult(
            status=status,
            invoice_id=invoice_id,
            transaction_id=observed.transaction_id if observed else None,
            paid_amount=observed.paid_amount if observed else None,
            method=observed.method if observed else None,
            channel=observed.channel if observed else None,
            attempts=attempts,
        )

    async def open_checkout(self, checkout_url: str, invoice_id: str) -> CheckoutResult:
        self._closed = asyncio.Event()
        result = self.launcher(checkout_url)
        if asyncio.iscoroutine(result):
            await result

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        observed: Optional[InvoiceStatusResult] = None
        attempts = 0

        for attempt in range(self.max_attempts):
            attempts = attempt + 1
            observed = await self._check(invoice_id) or observed
            if observed is not None and observed.status is GatewayOutcome.SUCCESS:
                return self._result(CheckoutStatus.SUCCESS, invoice_id, observed, attempts)
            if observed is not None and observed.status is GatewayOutcome.FAILED:
                return self._result(CheckoutStatus.FAILED, invoice_id, observed, attempts)

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=min(self._delay(attempt), remaining))
            except asyncio.TimeoutError:
                continue

            final = await self._check(invoice_id)
            if final is not None and final.status is GatewayOutcome.SUCCESS:
                return self._result(CheckoutStatus.SUCCESS, invoice_id, final, attempts + 1)
            if final is not None and final.status is GatewayOutcome.FAILED:
                return self._result(CheckoutStatus.FAILED, invoice_id, final, attempts + 1)
            logger.info(f"Checkout for invoice {invoice_id} closed before payment completed")
            return self._result(CheckoutStatus.CLOSED, invoice_id, final or observed, attempts + 1)

        logger.info(f"No terminal status for invoice {invoice_id} before timeout; treating as pending")
        return self._result(CheckoutStatus.PENDING, invoice_id, observed, attempts)
