"""
Tests for the Xendit invoice gateway adapter using httpx.MockTransport.
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from premium.errors import GatewayAuthError, GatewayError
from premium.gateway import (
    GatewayOutcome,
    InvoiceItem,
    InvoiceRequest,
    XenditGateway,
    available_payment_methods,
    gateway_payment_methods,
    parse_status,
    translate_status,
)
from premium.models import PaymentMethod


def make_gateway(handler, callback_token: str = "") -> XenditGateway:
    client = httpx.AsyncClient(base_url="https://api.xendit.test", transport=httpx.MockTransport(handler))
    return XenditGateway(api_key="xnd_test", callback_token=callback_token, client=client)


def make_request(billing, **overrides) -> InvoiceRequest:
    values = dict(
        order_id="premium-prop-1-1700000000000",
        amount=Decimal("29.99"),
        currency="USD",
        billing_details=billing,
        items=[InvoiceItem(id="premium-monthly", name="Premium Listing", price=Decimal("29.99"))],
        success_redirect_url="https://app.example/payment/success",
        failure_redirect_url="https://app.example/payment/failure",
        payment_method=PaymentMethod.VIRTUAL_ACCOUNT,
    )
    values.update(overrides)
    return InvoiceRequest(**values)


def invoice_body(status: str = "PENDING", **extra):
    body = {
        "id": "inv-1",
        "external_id": "premium-prop-1-1700000000000",
        "status": status,
        "amount": 29.99,
        "currency": "USD",
        "invoice_url": "https://checkout.xendit.test/inv-1",
    }
    body.update(extra)
    return body


class TestStatusTranslation:
    """Tests for external status mapping."""

    @pytest.mark.parametrize(
        "external,outcome",
        [
            ("PAID", GatewayOutcome.SUCCESS),
            ("SETTLED", GatewayOutcome.SUCCESS),
            ("PENDING", GatewayOutcome.PENDING),
            ("EXPIRED", GatewayOutcome.FAILED),
            ("FAILED", GatewayOutcome.FAILED),
            ("paid", GatewayOutcome.SUCCESS),
        ],
    )
    def test_known_statuses(self, external, outcome):
        assert translate_status(external) is outcome

    def test_unknown_status_is_pending(self):
        assert translate_status("REFUND_REQUESTED") is GatewayOutcome.PENDING
        assert translate_status(None) is GatewayOutcome.PENDING

    def test_parse_status_prefers_payment_id(self):
        result = parse_status(invoice_body("PAID", payment_id="pay-77", paid_amount=29.99, bank_code="BCA"))
        assert result.status is GatewayOutcome.SUCCESS
        assert result.transaction_id == "pay-77"
        assert result.paid_amount == Decimal("29.99")
        assert result.channel == "BCA"

    def test_parse_status_falls_back_to_invoice_id(self):
        assert parse_status(invoice_body("PAID")).transaction_id == "inv-1"

    def test_parse_status_rejects_malformed_body(self):
        with pytest.raises(GatewayError):
            parse_status({"status": "PAID"})


class TestPaymentMethods:
    """Tests for the payment methods offered on the checkout page."""

    def test_card_method(self):
        assert gateway_payment_methods(PaymentMethod.CREDIT_CARD, None) == ["CREDIT_CARD"]

    def test_fixed_channel(self):
        assert gateway_payment_methods(PaymentMethod.E_WALLET, "OVO") == ["OVO"]

    def test_channel_must_belong_to_method(self):
        with pytest.raises(ValueError):
            gateway_payment_methods(PaymentMethod.E_WALLET, "BCA")

    def test_all_channels_of_method(self):
        assert gateway_payment_methods(PaymentMethod.RETAIL_OUTLET, None) == ["ALFAMART", "INDOMARET"]

    def test_catalog_lists_every_method(self):
        methods = {m["id"]: m for m in available_payment_methods()}
        assert methods["virtual_account"]["channels"] == ["BCA", "BNI", "BRI", "MANDIRI", "PERMATA"]
        assert methods["credit_card"]["name"] == "Credit/Debit Card"

    def test_every_method_restricts_checkout(self):
        for method in PaymentMethod:
            assert gateway_payment_methods(method, None), method
        assert [m["id"] for m in available_payment_methods()] == [
            "credit_card",
            "virtual_account",
            "e_wallet",
            "retail_outlet",
            "qr_code",
        ]


class TestXenditGateway:
    """Tests for XenditGateway HTTP behavior."""

    def test_payload_shape(self, billing):
        gateway = make_gateway(lambda request: httpx.Response(200, json={}))
        payload = gateway.build_payload(make_request(billing))

        assert payload["external_id"] == "premium-prop-1-1700000000000"
        assert payload["amount"] == 29.99
        assert payload["invoice_duration"] == 86400
        assert payload["customer"]["given_names"] == "Siti"
        assert payload["customer"]["addresses"][0]["city"] == "Jakarta"
        assert payload["customer_notification_preference"]["invoice_paid"] == ["email"]
        assert payload["items"] == [
            {"name": "Premium Listing", "quantity": 1, "price": 29.99, "category": "Premium"}
        ]
        assert payload["success_redirect_url"].endswith("?order_id=premium-prop-1-1700000000000")
        assert payload["payment_methods"] == ["BCA", "BNI", "BRI", "MANDIRI", "PERMATA"]

    async def test_create_invoice(self, billing):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "GET":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=invoice_body())

        gateway = make_gateway(handler)
        invoice = await gateway.create_invoice(make_request(billing))

        assert invoice.invoice_id == "inv-1"
        assert invoice.checkout_url == "https://checkout.xendit.test/inv-1"
        assert invoice.status is GatewayOutcome.PENDING
        post = seen[-1]
        assert post.method == "POST" and post.url.path == "/v2/invoices"
        assert post.headers["authorization"].startswith("Basic ")
        assert json.loads(post.content)["external_id"] == "premium-prop-1-1700000000000"

    async def test_create_invoice_is_idempotent_per_order(self, billing):
        posts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                order_id = request.url.params["external_id"]
                return httpx.Response(200, json=[p for p in posts if p["external_id"] == order_id])
            body = json.loads(request.content)
            posts.append(invoice_body(id=f"inv-{len(posts) + 1}", external_id=body["external_id"]))
            return httpx.Response(200, json=posts[-1])

        gateway = make_gateway(handler)
        first = await gateway.create_invoice(make_request(billing))
        second = await gateway.create_invoice(make_request(billing))

        assert first.invoice_id == second.invoice_id == "inv-1"
        assert len(posts) == 1

    async def test_concurrent_creation_issues_one_invoice(self, billing):
        posts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=list(posts))
            posts.append(invoice_body())
            return httpx.Response(200, json=posts[-1])

        gateway = make_gateway(handler)
        invoices = await asyncio.gather(*(gateway.create_invoice(make_request(billing)) for _ in range(5)))

        assert {invoice.invoice_id for invoice in invoices} == {"inv-1"}
        assert len(posts) == 1
        assert gateway._order_locks == {}

    async def test_order_locks_released_after_creation(self, billing):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=[])
            body = json.loads(request.content)
            return httpx.Response(200, json=invoice_body(external_id=body["external_id"]))

        gateway = make_gateway(handler)
        for n in range(20):
            await gateway.create_invoice(make_request(billing, order_id=f"premium-prop-{n}-1700000000000"))

        assert gateway._order_locks == {}

    async def test_order_lock_released_when_gateway_fails(self, billing):
        gateway = make_gateway(lambda request: httpx.Response(500, text="oops"))
        with pytest.raises(GatewayError):
            await gateway.create_invoice(make_request(billing))
        assert gateway._order_locks == {}

    async def test_existing_remote_invoice_is_reused(self, billing):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                assert request.url.params["external_id"] == "premium-prop-1-1700000000000"
                return httpx.Response(200, json=[invoice_body(id="inv-old")])
            raise AssertionError("no new invoice expected")

        invoice = await make_gateway(handler).create_invoice(make_request(billing))
        assert invoice.invoice_id == "inv-old"

    async def test_auth_failure(self, billing):
        gateway = make_gateway(lambda request: httpx.Response(401, json={"error_code": "INVALID_API_KEY"}))
        with pytest.raises(GatewayAuthError) as exc_info:
            await gateway.get_invoice_status("inv-1")
        assert exc_info.value.status_code == 401

    async def test_server_error(self):
        gateway = make_gateway(lambda request: httpx.Response(500, text="oops"))
        with pytest.raises(GatewayError) as exc_info:
            await gateway.get_invoice_status("inv-1")
        assert exc_info.value.status_code == 500

    async def test_non_json_response(self):
        gateway = make_gateway(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GatewayError):
            await gateway.get_invoice_status("inv-1")

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError):
            await make_gateway(handler).get_invoice_status("inv-1")

    async def test_invoice_status(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json=invoice_body("SETTLED")))
        result = await gateway.get_invoice_status("inv-1")
        assert result.status is GatewayOutcome.SUCCESS
        assert result.order_id == "premium-prop-1-1700000000000"

    def test_callback_token(self):
        gateway = make_gateway(lambda request: httpx.Response(200), callback_token="cb-secret")
        assert gateway.verify_callback_token("cb-secret") is True
        assert gateway.verify_callback_token("wrong") is False
        assert gateway.verify_callback_token(None) is False

    def test_callback_token_not_configured(self):
        gateway = make_gateway(lambda request: httpx.Response(200))
        assert gateway.verify_callback_token(None) is True
