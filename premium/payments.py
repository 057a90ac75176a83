"""
Payment record manager.

Owns PaymentRecord creation and status transitions. Records start pending;
success, failed and cancelled are terminal and are never overwritten.
"""
import logging
import time
from decimal import Decimal
from typing import Dict, List, Optional

from .errors import PaymentNotFoundError, TerminalPaymentError
from .models import BillingDetails, PaymentRecord, PaymentStatus, new_id
from .repository import PremiumRepository

logger = logging.getLogger(__name__)

ORDER_PREFIX = "premium"


def generate_order_id(property_id: str, now_ms: Optional[int] = None) -> str:
    """Order id scoped to the property and stamped with the attempt time."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{ORDER_PREFIX}-{property_id}-{stamp}"


def property_id_from_order(order_id: str) -> Optional[str]:
    """Recover the property id from an order id built by generate_order_id."""
    if not order_id.startswith(f"{ORDER_PREFIX}-"):
        return None
    body = order_id[len(ORDER_PREFIX) + 1:]
    property_id, sep, stamp = body.rpartition("-")
    if not sep or not stamp.isdigit() or not property_id:
        return None
    return property_id


class PaymentRecordManager:
    def __init__(self, repository: PremiumRepository):
        self.repository = repository

    async def create_payment(
        self,
        order_id: str,
        amount: Decimal,
        currency: str,
        billing_details: BillingDetails,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> PaymentRecord:
        """Create a pending payment record for one checkout attempt."""
        record = PaymentRecord(
            id=new_id("payment"),
            order_id=order_id,
            amount=Decimal(str(amount)),
            currency=currency,
            billing_details=billing_details,
            payment_method=payment_method,
            payment_channel=payment_channel,
            metadata=dict(metadata or {}),
        )
        stored = await self.repository.insert_payment(record)
        logger.info(f"Payment {stored.id} created for order {order_id} ({amount} {currency})")
        return stored

    async def get_payment(self, payment_id: str) -> PaymentRecord:
        record = await self.repository.get_payment(payment_id)
        if record is None:
            raise PaymentNotFoundError(f"Payment not found: {payment_id}")
        return record

    async def find_payment(
        self, order_id: Optional[str] = None, invoice_id: Optional[str] = None
    ) -> Optional[PaymentRecord]:
        """Look a record up by invoice id first, then by order id."""
        if invoice_id:
            record = await self.repository.find_payment_by_invoice_id(invoice_id)
            if record is not None:
                return record
        if order_id:
            return await self.repository.find_payment_by_order_id(order_id)
        return None

    async def attach_invoice(
        self,
        payment_id: str,
        invoice_id: str,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> PaymentRecord:
        """Record the external invoice on a pending payment (pending -> pending)."""
        return await self.update_payment_status(
            payment_id,
            PaymentStatus.PENDING,
            invoice_id=invoice_id,
            payment_method=payment_method,
            payment_channel=payment_channel,
        )

    async def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> PaymentRecord:
        """
        Move a payment to ``status``.

        Repeating the status a terminal record already has is a no-op that
        returns the stored record. Any other change to a terminal record
        raises TerminalPaymentError.
        """
        status = PaymentStatus(status)
        updated = await self.repository.update_payment_if_pending(
            payment_id,
            status,
            transaction_id=transaction_id,
            invoice_id=invoice_id,
            payment_method=payment_method,
            payment_channel=payment_channel,
        )
        if updated is not None:
            if status.is_terminal:
                logger.info(f"Payment {payment_id} -> {status.value}")
            return updated

        current = await self.get_payment(payment_id)
        if current.status == status:
            logger.debug(f"Payment {payment_id} already {status.value}; ignoring repeat")
            return current
        logger.warning(
            f"Ignoring {status.value} for payment {payment_id}: already {current.status.value}"
        )
        raise TerminalPaymentError(payment_id, current.status.value, status.value)

    async def list_payments(
        self, payment_ids: Optional[List[str]] = None, status: Optional[PaymentStatus] = None
    ) -> List[PaymentRecord]:
        return await self.repository.list_payments(payment_ids=payment_ids, status=status)
