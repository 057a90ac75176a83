"""
Gateway invoice callback handling.
"""
import logging
from typing import Any, Dict, Optional

from .errors import (
    GatewayError,
    PaymentNotFoundError,
    TerminalPaymentError,
    ValidationError,
    WebhookVerificationError,
)
from .gateway import GatewayOutcome, XenditGateway, parse_status
from .payments import PaymentRecordManager
from .reconciliation import PaymentReconciler, invoice_mismatch

logger = logging.getLogger(__name__)


class WebhookHandler:
    """Applies invoice status callbacks to payment records."""

    def __init__(self, gateway: XenditGateway, payments: PaymentRecordManager, reconciler: PaymentReconciler):
        self.gateway = gateway
        self.payments = payments
        self.reconciler = reconciler

    async def handle(self, payload: Dict[str, Any], callback_token: Optional[str]) -> Dict[str, Any]:
        if not self.gateway.verify_callback_token(callback_token):
            logger.warning("Rejected invoice callback with invalid token")
            raise WebhookVerificationError("Invalid callback token")

        try:
            status = parse_status(payload)
        except GatewayError as e:
            raise ValidationError({"payload": str(e)})
        logger.info(f"Invoice callback {status.invoice_id}: {status.external_status}")

        payment = await self.payments.find_payment(order_id=status.order_id, invoice_id=status.invoice_id)
        if payment is None:
            raise PaymentNotFoundError(
                f"No payment for invoice {status.invoice_id} (order {status.order_id})"
            )

        if status.status is GatewayOutcome.PENDING:
            return {"success": True, "payment_id": payment.id, "status": payment.status.value}

        mismatch = invoice_mismatch(payment, status)
        if mismatch:
            logger.warning(f"Ignoring invoice callback for payment {payment.id}: {mismatch}")
            return {"success": False, "payment_id": payment.id, "status": payment.status.value, "ignored": True}

        try:
            settlement = await self.reconciler.settle(
                payment,
                status.status,
                transaction_id=status.transaction_id,
                payment_method=status.method,
                payment_channel=status.channel,
            )
        except TerminalPaymentError as e:
            # Late or out-of-order callback for a settled payment
            logger.warning(str(e))
            return {"success": True, "payment_id": payment.id, "status": e.current, "ignored": True}

        result = {"success": True, "payment_id": settlement.payment.id, "status": settlement.payment.status.value}
        if settlement.listing is not None:
            result["listing_id"] = settlement.listing.id
        return result
