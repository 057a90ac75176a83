"""
Xendit invoice gateway adapter.

Translates an internal payment intent into an external invoice and maps
external invoice statuses onto the three outcomes the upgrade workflow
understands: success, pending and failed.
"""

import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from .errors import GatewayAuthError, GatewayError
from .models import PAYMENT_CHANNELS, PAYMENT_METHOD_NAMES, BillingDetails, PaymentMethod

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.xendit.co"
DEFAULT_INVOICE_DURATION = 86400  # 24 hours
DEFAULT_TIMEOUT = 30.0
CALLBACK_TOKEN_HEADER = "X-Callback-Token"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    SETTLED = "SETTLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class GatewayOutcome(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


STATUS_OUTCOMES: Dict[str, GatewayOutcome] = {
    InvoiceStatus.PENDING.value: GatewayOutcome.PENDING,
    InvoiceStatus.PAID.value: GatewayOutcome.SUCCESS,
    InvoiceStatus.SETTLED.value: GatewayOutcome.SUCCESS,
    InvoiceStatus.EXPIRED.value: GatewayOutcome.FAILED,
    InvoiceStatus.FAILED.value: GatewayOutcome.FAILED,
}

# Invoices in these states can be reused for the same order id
REUSABLE_STATUSES = {InvoiceStatus.PENDING.value, InvoiceStatus.PAID.value, InvoiceStatus.SETTLED.value}


def translate_status(external_status: Optional[str]) -> GatewayOutcome:
    """Map an external invoice status onto an internal outcome.

    Unrecognised statuses are treated as pending so they can never mark a
    payment terminal by accident.
    """
    outcome = STATUS_OUTCOMES.get((external_status or "").upper())
    if outcome is None:
        logger.warning(f"Unrecognised invoice status {external_status!r}; treating as pending")
        return GatewayOutcome.PENDING
    return outcome


@dataclass
class InvoiceItem:
    id: str
    name: str
    price: Decimal
    quantity: int = 1
    category: str = "Premium"


@dataclass
class InvoiceRequest:
    order_id: str
    amount: Decimal
    currency: str
    billing_details: BillingDetails
    description: str = "Premium Listing Payment"
    items: List[InvoiceItem] = field(default_factory=list)
    success_redirect_url: Optional[str] = None
    failure_redirect_url: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_channel: Optional[str] = None


@dataclass
class Invoice:
    invoice_id: str
    order_id: str
    checkout_url: str
    status: GatewayOutcome
    external_status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


@dataclass
class InvoiceStatusResult:
    invoice_id: str
    status: GatewayOutcome
    external_status: str
    order_id: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    paid_at: Optional[str] = None
    method: Optional[str] = None
    channel: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payer_email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _with_query(url: str, params: Dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def gateway_payment_methods(method: Optional[PaymentMethod], channel: Optional[str]) -> Optional[List[str]]:
    """Gateway channel codes offered on the checkout page, None for all."""
    if method is None:
        return None
    if method is PaymentMethod.CREDIT_CARD:
        return ["CREDIT_CARD"]
    if channel:
        allowed = PAYMENT_CHANNELS.get(method, ())
        if channel not in allowed:
            raise ValueError(f"Channel {channel} is not available for {method.value}")
        return [channel]
    channels = PAYMENT_CHANNELS.get(method)
    return list(channels) if channels else None


def available_payment_methods() -> List[Dict[str, Any]]:
    """Payment methods offered in the upgrade flow, with their channels."""
    return [
        {
            "id": method.value,
            "name": PAYMENT_METHOD_NAMES.get(method, method.value),
            "channels": list(PAYMENT_CHANNELS.get(method, ())),
        }
        for method in PaymentMethod
    ]


def parse_status(data: Dict[str, Any]) -> InvoiceStatusResult:
    """Build an InvoiceStatusResult from an invoice or callback body."""
    try:
        invoice_id = data["id"]
        external_status = data["status"]
    except (KeyError, TypeError) as e:
        raise GatewayError(f"Malformed invoice payload: missing {e}")
    return InvoiceStatusResult(
        invoice_id=invoice_id,
        status=translate_status(external_status),
        external_status=external_status,
        order_id=data.get("external_id"),
        paid_amount=_decimal(data.get("paid_amount")),
        paid_at=data.get("paid_at") or data.get("payment_timestamp"),
        method=data.get("payment_method"),
        channel=data.get("payment_channel") or data.get("bank_code") or data.get("ewallet_type"),
        transaction_id=data.get("payment_id") or data.get("credit_card_charge_id") or invoice_id,
        amount=_decimal(data.get("amount")),
        currency=data.get("currency"),
        payer_email=data.get("payer_email"),
        raw=dict(data),
    )


class XenditGateway:
    """Invoice gateway backed by the Xendit v2 invoices API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        invoice_duration: int = DEFAULT_INVOICE_DURATION,
        callback_token: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.invoice_duration = invoice_duration
        self.callback_token = callback_token
        self._auth = httpx.BasicAuth(api_key, "")
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        # order id -> (lock, callers holding or awaiting it)
        self._order_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_payload(self, request: InvoiceRequest) -> Dict[str, Any]:
        billing = request.billing_details
        payload: Dict[str, Any] = {
            "external_id": request.order_id,
            "amount": float(request.amount),
            "currency": request.currency,
            "description": request.description,
            "invoice_duration": self.invoice_duration,
            "customer": {
                "given_names": billing.first_name,
                "surname": billing.last_name,
                "email": billing.email,
                "mobile_number": billing.phone,
                "addresses": [
                    {
                        "country": billing.country,
                        "street_line1": billing.address,
                        "city": billing.city,
                        "postal_code": billing.postal_code,
                    }
                ],
            },
            "customer_notification_preference": {
                "invoice_created": ["email"],
                "invoice_paid": ["email"],
            },
            "should_send_email": True,
            "items": [
                {
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": float(item.price),
                    "category": item.category,
                }
                for item in request.items
            ],
        }
        if request.success_redirect_url:
            payload["success_redirect_url"] = _with_query(
                request.success_redirect_url, {"order_id": request.order_id}
            )
        if request.failure_redirect_url:
            payload["failure_redirect_url"] = _with_query(
                request.failure_redirect_url, {"order_id": request.order_id}
            )
        methods = gateway_payment_methods(request.payment_method, request.payment_channel)
        if methods:
            payload["payment_methods"] = methods
        return payload

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, auth=self._auth, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            logger.error(f"Gateway {method} {path} failed with HTTP {code}")
            if code in (401, 403):
                raise GatewayAuthError(f"Gateway rejected credentials (HTTP {code})", status_code=code)
            raise GatewayError(f"Gateway request failed (HTTP {code})", status_code=code)
        except httpx.RequestError as e:
            logger.error(f"Gateway {method} {path} transport error: {e}")
            raise GatewayError(f"Gateway unreachable: {e}")
        try:
            return response.json()
        except ValueError:
            raise GatewayError("Malformed gateway response: body is not JSON")

    @asynccontextmanager
    async def _order_lock(self, order_id: str):
        lock, users = self._order_locks.get(order_id, (asyncio.Lock(), 0))
        self._order_locks[order_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._order_locks[order_id]
            if users <= 1:
                del self._order_locks[order_id]
            else:
                self._order_locks[order_id] = (lock, users - 1)

    async def find_invoices(self, order_id: str) -> List[Dict[str, Any]]:
        try:
            data = await self._request("GET", "/v2/invoices", params={"external_id": order_id})
        except GatewayError as e:
            if e.status_code == 404:
                return []
            raise
        if isinstance(data, dict):
            return [data]
        return list(data or [])

    async def create_invoice(self, request: InvoiceRequest) -> Invoice:
        """
        Create the external invoice for ``request.order_id``.

        Repeated calls with the same order id return the invoice created
        first instead of issuing a second billable invoice. The gateway's
        external id lookup is the record of what exists; nothing is cached
        here.
        """
        async with self._order_lock(request.order_id):
            for existing in await self.find_invoices(request.order_id):
                if existing.get("status") in REUSABLE_STATUSES and existing.get("invoice_url"):
                    logger.info(f"Reusing invoice {existing.get('id')} for order {request.order_id}")
                    return self._to_invoice(existing, request)

            data = await self._request("POST", "/v2/invoices", json=self.build_payload(request))
            invoice = self._to_invoice(data, request)
            logger.info(f"Invoice {invoice.invoice_id} created for order {request.order_id}")
            return invoice

    def _to_invoice(self, data: Dict[str, Any], request: InvoiceRequest) -> Invoice:
        try:
            return Invoice(
                invoice_id=data["id"],
                order_id=data.get("external_id", request.order_id),
                checkout_url=data["invoice_url"],
                status=translate_status(data.get("status")),
                external_status=data.get("status", ""),
                amount=_decimal(data.get("amount")),
                currency=data.get("currency"),
            )
        except (KeyError, TypeError) as e:
            raise GatewayError(f"Malformed invoice response: missing {e}")

    async def get_invoice_status(self, invoice_id: str) -> InvoiceStatusResult:
        data = await self._request("GET", f"/v2/invoices/{invoice_id}")
        return parse_status(data)

    def verify_callback_token(self, token: Optional[str]) -> bool:
        if not self.callback_token:
            logger.warning("No callback token configured; accepting webhook without verification")
            return True
        return hmac.compare_digest((token or "").encode(), self.callback_token.encode())
