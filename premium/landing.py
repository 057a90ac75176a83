"""
Payment-success landing page verification.

The gateway redirects the payer back with the order id (and sometimes the
invoice id). The page re-checks the invoice with the gateway, settles the
payment if it is still pending, and renders a receipt.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .errors import GatewayError, TerminalPaymentError
from .gateway import XenditGateway
from .models import PaymentRecord, PaymentStatus, PremiumListing, utcnow
from .payments import PaymentRecordManager
from .reconciliation import PaymentReconciler, invoice_mismatch

logger = logging.getLogger(__name__)

VERIFY_ERROR_MESSAGE = "An error occurred while verifying your payment. Please contact customer support."

STATUS_MESSAGES = {
    PaymentStatus.SUCCESS: "Payment successful! Your property is now premium.",
    PaymentStatus.PENDING: "Your payment is still being processed.",
    PaymentStatus.FAILED: "Payment was not completed.",
    PaymentStatus.CANCELLED: "Payment was cancelled.",
}


@dataclass
class LandingResult:
    status: str
    message: str
    payment: Optional[PaymentRecord] = None
    listing: Optional[PremiumListing] = None
    receipt: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "payment": self.payment.to_dict() if self.payment else None,
            "listing": self.listing.to_dict() if self.listing else None,
            "receipt": self.receipt or None,
        }


def build_receipt(payment: PaymentRecord, issued_at: datetime) -> Dict[str, Any]:
    return {
        "order_id": payment.order_id,
        "invoice_id": payment.invoice_id,
        "transaction_id": payment.transaction_id,
        "date": issued_at.isoformat(),
        "amount": str(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "payment_channel": payment.payment_channel,
        "status": payment.status.value,
        "customer_name": payment.billing_details.full_name,
        "customer_email": payment.billing_details.email,
    }


class PaymentLanding:
    def __init__(
        self,
        gateway: XenditGateway,
        payments: PaymentRecordManager,
        reconciler: PaymentReconciler,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.payments = payments
        self.reconciler = reconciler
        self.clock = clock

    async def verify(self, order_id: Optional[str] = None, invoice_id: Optional[str] = None) -> LandingResult:
        if not order_id and not invoice_id:
            return LandingResult(status="error", message="Missing order reference")

        payment = await self.payments.find_payment(order_id=order_id, invoice_id=invoice_id)
        if payment is None:
            logger.warning(f"Landing page hit for unknown order {order_id} / invoice {invoice_id}")
            return LandingResult(status="not_found", message="Payment not found")

        if invoice_id and payment.invoice_id and invoice_id != payment.invoice_id:
            logger.warning(
                f"Landing page invoice {invoice_id} does not match invoice {payment.invoice_id} "
                f"of order {payment.order_id}"
            )
            return LandingResult(status="error", message=VERIFY_ERROR_MESSAGE, payment=payment)
        invoice_id = payment.invoice_id or invoice_id
        if not invoice_id:
            return self._result(payment, None)

        try:
            status = await self.gateway.get_invoice_status(invoice_id)
        except GatewayError as e:
            logger.error(f"Payment verification for invoice {invoice_id} failed: {e}")
            return LandingResult(status="error", message=VERIFY_ERROR_MESSAGE, payment=payment)

        mismatch = invoice_mismatch(payment, status)
        if mismatch:
            logger.warning(f"Refusing to settle payment {payment.id}: {mismatch}")
            return LandingResult(status="error", message=VERIFY_ERROR_MESSAGE, payment=payment)

        listing = None
        try:
            settlement = await self.reconciler.settle(
                payment,
                status.status,
                transaction_id=status.transaction_id,
                payment_method=status.method,
                payment_channel=status.channel,
            )
            payment, listing = settlement.payment, settlement.listing
        except TerminalPaymentError as e:
            logger.warning(str(e))
            payment = await self.payments.get_payment(payment.id)
        return self._result(payment, listing)

    def _result(self, payment: PaymentRecord, listing: Optional[PremiumListing]) -> LandingResult:
        result = LandingResult(
            status=payment.status.value,
            message=STATUS_MESSAGES[payment.status],
            payment=payment,
            listing=listing,
        )
        if payment.status is PaymentStatus.SUCCESS:
            result.receipt = build_receipt(payment, self.clock())
        return result
