"""
Pytest configuration and shared fixtures for the premium listing tests.

Provides an in-memory repository, a controllable clock, and scripted
stand-ins for the invoice gateway and the checkout hand-off.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from premium.catalog import DEFAULT_PLAN, PlanCatalog
from premium.checkout import CheckoutResult, CheckoutStatus
from premium.gateway import GatewayOutcome, Invoice, InvoiceRequest, InvoiceStatusResult
from premium.listings import PremiumListingStore
from premium.models import BillingDetails, PaymentStatus, Session
from premium.notifications import RecordingNotificationSink
from premium.payments import PaymentRecordManager
from premium.reconciliation import PaymentReconciler
from premium.repository import InMemoryPremiumRepository


START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
ORDER_ID = "premium-prop-1-1700000000000"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """Records invoice requests and answers status checks from a script."""

    def __init__(self, statuses: Optional[List[str]] = None, fail_create: Optional[Exception] = None):
        self.requests: List[InvoiceRequest] = []
        self.statuses = list(statuses or ["PENDING"])
        self.status_calls = 0
        self.fail_create = fail_create
        self.callback_token = "secret-token"
        # Invoices not created through this gateway report the shared test order
        self.invoice_orders = {"inv-1": ORDER_ID}
        self.paid_amount = Decimal("29.99")

    async def create_invoice(self, request: InvoiceRequest) -> Invoice:
        if self.fail_create is not None:
            raise self.fail_create
        self.requests.append(request)
        self.invoice_orders[f"inv-{len(self.requests)}"] = request.order_id
        return Invoice(
            invoice_id=f"inv-{len(self.requests)}",
            order_id=request.order_id,
            checkout_url=f"https://checkout.example/inv-{len(self.requests)}",
            status=GatewayOutcome.PENDING,
            external_status="PENDING",
            amount=request.amount,
            currency=request.currency,
        )

    async def get_invoice_status(self, invoice_id: str) -> InvoiceStatusResult:
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        external = self.statuses[index]
        outcome = {
            "PAID": GatewayOutcome.SUCCESS,
            "SETTLED": GatewayOutcome.SUCCESS,
            "EXPIRED": GatewayOutcome.FAILED,
            "FAILED": GatewayOutcome.FAILED,
        }.get(external, GatewayOutcome.PENDING)
        return InvoiceStatusResult(
            invoice_id=invoice_id,
            status=outcome,
            external_status=external,
            order_id=self.invoice_orders.get(invoice_id, ORDER_ID),
            paid_amount=self.paid_amount if outcome is GatewayOutcome.SUCCESS else None,
            transaction_id="tx-1" if outcome is GatewayOutcome.SUCCESS else None,
            method="BANK_TRANSFER",
            channel="BCA",
        )

    def verify_callback_token(self, token: Optional[str]) -> bool:
        return token == self.callback_token

    async def aclose(self) -> None:
        pass


class FakeCheckout:
    """Checkout hand-off returning a preset result."""

    def __init__(self, status: CheckoutStatus = CheckoutStatus.SUCCESS, transaction_id: Optional[str] = "tx-1"):
        self.status = status
        self.transaction_id = transaction_id
        self.opened: List[str] = []
        self.closed = False

    async def open_checkout(self, checkout_url: str, invoice_id: str) -> CheckoutResult:
        self.opened.append(checkout_url)
        return CheckoutResult(
            status=self.status,
            invoice_id=invoice_id,
            transaction_id=self.transaction_id if self.status is CheckoutStatus.SUCCESS else None,
            attempts=1,
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryPremiumRepository:
    return InMemoryPremiumRepository()


@pytest.fixture
def plan():
    return DEFAULT_PLAN


@pytest.fixture
def billing() -> BillingDetails:
    return BillingDetails(
        first_name="Siti",
        last_name="Rahma",
        email="siti@example.com",
        phone="+628123456789",
        address="Jl. Sudirman 1",
        city="Jakarta",
        postal_code="10220",
    )


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-1", email="siti@example.com", display_name="Siti")


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def catalog(repository) -> PlanCatalog:
    return PlanCatalog(repository)


@pytest.fixture
def payments(repository) -> PaymentRecordManager:
    return PaymentRecordManager(repository)


@pytest.fixture
def listings(repository, clock) -> PremiumListingStore:
    return PremiumListingStore(repository, clock=clock)


@pytest.fixture
def reconciler(payments, listings, catalog) -> PaymentReconciler:
    return PaymentReconciler(payments, listings, catalog)


@pytest.fixture
def make_paid_payment(payments, billing, plan):
    """Factory creating a successful payment for a property."""
    counter = {"n": 0}

    async def _make(property_id: str = "prop-1", user_id: str = "user-1"):
        counter["n"] += 1
        record = await payments.create_payment(
            order_id=f"premium-{property_id}-{counter['n']}",
            amount=Decimal("29.99"),
            currency="USD",
            billing_details=billing,
            payment_method="virtual_account",
            metadata={"property_id": property_id, "user_id": user_id, "plan_id": plan.id},
        )
        return await payments.update_payment_status(record.id, PaymentStatus.SUCCESS, transaction_id="tx-1")

    return _make
