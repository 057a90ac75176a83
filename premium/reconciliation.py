"""
Settlement of gateway outcomes onto payment records and listings.

The upgrade workflow, the gateway webhook and the payment-success landing
page all settle through here, so a listing is created if and only if its
payment reached success, and at most once per payment.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import PlanCatalog
from .gateway import GatewayOutcome, InvoiceStatusResult
from .listings import PremiumListingStore
from .models import PaymentRecord, PaymentStatus, PremiumListing
from .payments import PaymentRecordManager, property_id_from_order

logger = logging.getLogger(__name__)

OUTCOME_STATUSES = {
    GatewayOutcome.SUCCESS: PaymentStatus.SUCCESS,
    GatewayOutcome.PENDING: PaymentStatus.PENDING,
    GatewayOutcome.FAILED: PaymentStatus.FAILED,
}


def invoice_mismatch(payment: PaymentRecord, status: InvoiceStatusResult) -> Optional[str]:
    """Reason the gateway invoice cannot settle ``payment``, or None when it belongs to it."""
    if status.order_id and status.order_id != payment.order_id:
        return f"invoice {status.invoice_id} belongs to order {status.order_id}, not {payment.order_id}"
    if status.currency and status.currency != payment.currency:
        return f"invoice {status.invoice_id} is in {status.currency}, payment is in {payment.currency}"
    if status.status is GatewayOutcome.SUCCESS and status.paid_amount is not None:
        if status.paid_amount < payment.amount:
            return f"invoice {status.invoice_id} paid {status.paid_amount}, payment requires {payment.amount}"
    return None


@dataclass
class Settlement:
    payment: PaymentRecord
    listing: Optional[PremiumListing] = None


class PaymentReconciler:
    def __init__(
        self,
        payments: PaymentRecordManager,
        listings: PremiumListingStore,
        catalog: PlanCatalog,
    ):
        self.payments = payments
        self.listings = listings
        self.catalog = catalog

    async def settle(
        self,
        payment: PaymentRecord,
        outcome: GatewayOutcome,
        transaction_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> Settlement:
        """
        Record ``outcome`` for ``payment`` and activate premium on success.

        Raises TerminalPaymentError when the record already reached a
        different terminal status.
        """
        status = OUTCOME_STATUSES[GatewayOutcome(outcome)]
        if status is PaymentStatus.PENDING:
            return Settlement(payment=payment)

        updated = await self.payments.update_payment_status(
            payment.id,
            status,
            transaction_id=transaction_id,
            payment_method=payment_method,
            payment_channel=payment_channel,
        )
        if updated.status is not PaymentStatus.SUCCESS:
            return Settlement(payment=updated)
        listing = await self.activate(updated)
        return Settlement(payment=updated, listing=listing)

    async def activate(self, payment: PaymentRecord) -> PremiumListing:
        property_id = payment.metadata.get("property_id") or property_id_from_order(payment.order_id)
        if not property_id:
            raise ValueError(f"Payment {payment.id} does not identify a property")
        user_id = payment.metadata.get("user_id", "")
        plan = await self.catalog.get_plan(payment.metadata.get("plan_id"))
        return await self.listings.create_premium_listing(
            property_id=property_id,
            user_id=user_id,
            plan=plan,
            payment=payment,
        )
