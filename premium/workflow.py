"""
Premium upgrade workflow.

Drives a single user through plan comparison, payment method selection,
billing details and checkout:

    comparison -> payment_method -> payment_details -> processing -> success
                        ^                                   |
                        +------------ failure / pending ----+

The workflow never stays in processing: every checkout outcome, and every
error raised while processing, resolves to either success or back to
payment_method with the billing details kept for a retry.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .catalog import PlanCatalog
from .checkout import CheckoutHandoff, CheckoutResult, CheckoutStatus
from .errors import TerminalPaymentError, ValidationError, WorkflowStateError
from .gateway import GatewayOutcome, InvoiceItem, InvoiceRequest, available_payment_methods
from .models import (
    PAYMENT_CHANNELS,
    BillingDetails,
    CardDetails,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    PremiumListing,
    PremiumPlan,
    Session,
)
from .notifications import NotificationSink
from .payments import PaymentRecordManager, generate_order_id
from .reconciliation import PaymentReconciler
from .validation import (
    format_card_number,
    format_expiry,
    validate_billing_field,
    validate_card_field,
    validate_payment_form,
)

logger = logging.getLogger(__name__)

DASHBOARD_PATH = "/dashboard/premium"


class WorkflowState(str, Enum):
    COMPARISON = "comparison"
    PAYMENT_METHOD = "payment_method"
    PAYMENT_DETAILS = "payment_details"
    PROCESSING = "processing"
    SUCCESS = "success"


def _now_ms() -> int:
    return int(time.time() * 1000)


class UpgradeWorkflow:
    """
    State machine for one premium upgrade.

    Args:
        session: Authenticated caller
        notifier: Receives user-facing success/info/error messages
        catalog: Source of the plan being purchased
        payments: Payment record manager
        reconciler: Settles checkout outcomes and activates premium
        gateway: Invoice gateway (create_invoice)
        checkout: Hosted checkout hand-off
        property_id: Property being upgraded
        renewal: Start at payment method selection instead of comparison
    """

    def __init__(
        self,
        session: Session,
        notifier: NotificationSink,
        catalog: PlanCatalog,
        payments: PaymentRecordManager,
        reconciler: PaymentReconciler,
        gateway,
        checkout: CheckoutHandoff,
        property_id: str,
        renewal: bool = False,
        success_redirect_url: Optional[str] = None,
        failure_redirect_url: Optional[str] = None,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        if session is None or not session.user_id:
            raise WorkflowStateError("An authenticated session is required to upgrade")
        self.session = session
        self.notifier = notifier
        self.catalog = catalog
        self.payments = payments
        self.reconciler = reconciler
        self.gateway = gateway
        self.checkout = checkout
        self.property_id = property_id
        self.renewal = renewal
        self.success_redirect_url = success_redirect_url
        self.failure_redirect_url = failure_redirect_url
        self.clock_ms = clock_ms

        self.state: Optional[WorkflowState] = None
        self.plan: Optional[PremiumPlan] = None
        self.payment_method: Optional[PaymentMethod] = None
        self.payment_channel: Optional[str] = None
        self.billing = BillingDetails(email=session.email or "")
        self.card = CardDetails()
        self.errors: Dict[str, str] = {}
        self.payment: Optional[PaymentRecord] = None
        self.listing: Optional[PremiumListing] = None
        self.checkout_result: Optional[CheckoutResult] = None
        self.redirect_to: Optional[str] = None
        self._submitted = False

    # State helpers

    def _require(self, *states: WorkflowState) -> None:
        if self.state is WorkflowState.PROCESSING and WorkflowState.PROCESSING not in states:
            raise WorkflowStateError("Payment is processing; no further input is accepted")
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            current = self.state.value if self.state else "not started"
            raise WorkflowStateError(f"Not allowed in state {current}; expected {allowed}")

    def _editable(self) -> None:
        if self.state is WorkflowState.PROCESSING:
            raise WorkflowStateError("Payment is processing; no further input is accepted")
        if self.state is WorkflowState.SUCCESS:
            raise WorkflowStateError("Upgrade already completed")

    # Navigation

    async def start(self) -> WorkflowState:
        if self.state is not None:
            raise WorkflowStateError("Workflow already started")
        self.plan = await self.catalog.get_plan()
        self.state = WorkflowState.PAYMENT_METHOD if self.renewal else WorkflowState.COMPARISON
        logger.info(
            f"Upgrade started for property {self.property_id} by user {self.session.user_id} "
            f"(plan {self.plan.id}, renewal={self.renewal})"
        )
        return self.state

    def confirm_plan(self) -> WorkflowState:
        self._require(WorkflowState.COMPARISON)
        self.state = WorkflowState.PAYMENT_METHOD
        return self.state

    def back(self) -> WorkflowState:
        self._require(WorkflowState.PAYMENT_METHOD, WorkflowState.PAYMENT_DETAILS)
        if self.state is WorkflowState.PAYMENT_DETAILS:
            self.state = WorkflowState.PAYMENT_METHOD
        else:
            self.state = WorkflowState.COMPARISON
        return self.state

    def payment_methods(self) -> List[Dict[str, Any]]:
        return available_payment_methods()

    def select_payment_method(self, method, channel: Optional[str] = None) -> None:
        self._require(WorkflowState.PAYMENT_METHOD)
        method = PaymentMethod(method)
        if channel is not None and channel not in PAYMENT_CHANNELS.get(method, ()):
            raise ValidationError({"payment_channel": f"{channel} is not available for {method.value}"})
        self.payment_method = method
        self.payment_channel = channel
        self.errors.pop("payment_method", None)

    def proceed_to_details(self) -> WorkflowState:
        self._require(WorkflowState.PAYMENT_METHOD)
        if self.payment_method is None:
            self.errors["payment_method"] = "Please select a payment method"
            raise ValidationError({"payment_method": self.errors["payment_method"]})
        self.state = WorkflowState.PAYMENT_DETAILS
        return self.state

    # Form input

    def update_billing(self, field_name: str, value: str) -> Optional[str]:
        """Set one billing field and refresh its error; returns the current error."""
        self._editable()
        if not hasattr(self.billing, field_name):
            raise ValueError(f"Unknown billing field: {field_name}")
        setattr(self.billing, field_name, value)
        return self._refresh_error(field_name, validate_billing_field(self.billing, field_name))

    def update_card(self, field_name: str, value: str) -> Optional[str]:
        """Set one card field from raw input; display formatting is separate."""
        self._editable()
        if not hasattr(self.card, field_name):
            raise ValueError(f"Unknown card field: {field_name}")
        setattr(self.card, field_name, value)
        message = validate_card_field(self._card_for_validation(), field_name)
        return self._refresh_error(f"card.{field_name}", message)

    def _refresh_error(self, key: str, message: Optional[str]) -> Optional[str]:
        # Stale errors clear immediately; new ones appear only after a submit attempt
        if message and (self._submitted or key in self.errors):
            self.errors[key] = message
        else:
            self.errors.pop(key, None)
        return self.errors.get(key)

    def _card_for_validation(self) -> CardDetails:
        return CardDetails(
            number=self.card.number,
            expiry=format_expiry(self.card.expiry),
            cvv=self.card.cvv,
            holder_name=self.card.holder_name,
        )

    @property
    def card_display(self) -> Dict[str, str]:
        return {
            "number": format_card_number(self.card.number),
            "expiry": format_expiry(self.card.expiry),
            "cvv": self.card.cvv,
            "holder_name": self.card.holder_name,
        }

    # Checkout

    def close_checkout(self) -> None:
        """Forward a closed checkout surface to the hand-off."""
        self.checkout.close()

    async def submit(self) -> WorkflowState:
        """
        Validate the details step and run the checkout.

        Raises ValidationError (state unchanged) when the form is invalid.
        Otherwise resolves to success or back to payment_method.
        """
        self._require(WorkflowState.PAYMENT_DETAILS)
        self._submitted = True
        errors = validate_payment_form(self.payment_method, self.billing, self._card_for_validation())
        self.errors = errors
        if errors:
            raise ValidationError(errors)

        self.state = WorkflowState.PROCESSING
        self.redirect_to = None
        self.listing = None
        self.checkout_result = None
        try:
            return await self._process()
        finally:
            if self.state is WorkflowState.PROCESSING:
                self.state = WorkflowState.PAYMENT_METHOD

    async def _process(self) -> WorkflowState:
        self.payment = None
        order_id = generate_order_id(self.property_id, self.clock_ms())
        method = self.payment_method.value
        try:
            self.payment = await self.payments.create_payment(
                order_id=order_id,
                amount=self.plan.price,
                currency=self.plan.currency,
                billing_details=BillingDetails(**self.billing.to_dict()),
                payment_method=method,
                payment_channel=self.payment_channel,
                metadata={
                    "property_id": self.property_id,
                    "user_id": self.session.user_id,
                    "plan_id": self.plan.id,
                },
            )
            invoice = await self.gateway.create_invoice(
                InvoiceRequest(
                    order_id=order_id,
                    amount=self.plan.price,
                    currency=self.plan.currency,
                    billing_details=self.payment.billing_details,
                    description=f"{self.plan.name} - {self.plan.duration_days} days",
                    items=[InvoiceItem(id=self.plan.id, name=self.plan.name, price=self.plan.price)],
                    success_redirect_url=self.success_redirect_url,
                    failure_redirect_url=self.failure_redirect_url,
                    payment_method=self.payment_method,
                    payment_channel=self.payment_channel,
                )
            )
            self.payment = await self.payments.attach_invoice(
                self.payment.id, invoice.invoice_id, method, self.payment_channel
            )
            result = await self.checkout.open_checkout(invoice.checkout_url, invoice.invoice_id)
        except Exception as e:
            logger.error(f"Checkout for order {order_id} failed: {e}")
            await self._mark_failed()
            self.notifier.error("Payment Failed", "Payment processing failed. Please try again.")
            return self._retry()

        self.checkout_result = result
        if result.status is CheckoutStatus.SUCCESS:
            return await self._complete(result)
        if result.status is CheckoutStatus.FAILED:
            await self._settle_failed(result)
            self.notifier.error("Payment Failed", "Your payment was not completed. Please try again.")
            return self._retry()

        logger.info(f"Payment {self.payment.id} still pending after checkout ({result.status.value})")
        self.notifier.info(
            "Payment Pending",
            "Payment is being processed. You will receive a confirmation email shortly.",
        )
        self.redirect_to = DASHBOARD_PATH
        return self._retry()

    async def _complete(self, result: CheckoutResult) -> WorkflowState:
        try:
            settlement = await self.reconciler.settle(
                self.payment,
                GatewayOutcome.SUCCESS,
                transaction_id=result.transaction_id,
                payment_method=result.method,
                payment_channel=result.channel,
            )
        except TerminalPaymentError as e:
            logger.error(f"Paid checkout could not be recorded: {e}")
            self.notifier.error("Payment Failed", "Payment processing failed. Please try again.")
            return self._retry()
        except Exception as e:
            # Payment is recorded; activation is retried by the webhook or landing page
            logger.error(f"Premium activation for payment {self.payment.id} failed: {e}")
            self.notifier.warning(
                "Activation Delayed",
                "Payment received. Your premium listing will be activated shortly.",
            )
            self.redirect_to = DASHBOARD_PATH
            return self._retry()

        self.payment = settlement.payment
        self.listing = settlement.listing
        self.state = WorkflowState.SUCCESS
        self.notifier.success(
            "Welcome to Premium!",
            "Your property has been upgraded to premium status.",
        )
        logger.info(f"Property {self.property_id} upgraded with payment {self.payment.id}")
        return self.state

    async def _settle_failed(self, result: CheckoutResult) -> None:
        try:
            settlement = await self.reconciler.settle(self.payment, GatewayOutcome.FAILED)
            self.payment = settlement.payment
        except TerminalPaymentError as e:
            logger.warning(f"Failed checkout not recorded: {e}")

    async def _mark_failed(self) -> None:
        if self.payment is None:
            return
        try:
            self.payment = await self.payments.update_payment_status(self.payment.id, PaymentStatus.FAILED)
        except TerminalPaymentError as e:
            logger.warning(f"Could not mark payment {self.payment.id} failed: {e}")
        except Exception as e:
            logger.error(f"Could not mark payment {self.payment.id} failed: {e}")

    def _retry(self) -> WorkflowState:
        self.state = WorkflowState.PAYMENT_METHOD
        self._submitted = False
        return self.state
