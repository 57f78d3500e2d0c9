"""Tests for the gateway adapters and webhook signatures."""

import time
from unittest.mock import patch

import httpx
import pytest
import stripe

from marketplace.domain.value_objects import Money
from marketplace.infrastructure.address_book import AddressBookError, HttpAddressBook
from marketplace.infrastructure.payment_gateway import (
    PaymentGatewayError,
    StripePaymentGateway,
    WebhookSignatureVerifier,
)


def mock_client(handler, base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


# ============================================================================
# Stripe Gateway
# ============================================================================


class TestStripePaymentGateway:
    """Tests for the Stripe SDK adapter."""

    @pytest.fixture
    def gateway(self) -> StripePaymentGateway:
        return StripePaymentGateway(secret_key="sk_test", timeout=1.0)

    async def test_create_intent(self, gateway) -> None:
        created = {
            "id": "pi_123",
            "client_secret": "pi_123_secret",
            "status": "requires_payment_method",
        }
        with patch("stripe.PaymentIntent.create", return_value=created) as create:
            intent = await gateway.create_intent(
                Money(250000), {"order_id": "ord-1"}, idempotency_key="intent-ord-1"
            )

        assert intent.id == "pi_123"
        assert intent.client_secret == "pi_123_secret"
        create.assert_called_once_with(
            amount=250000,
            currency="inr",
            automatic_payment_methods={"enabled": True},
            metadata={"order_id": "ord-1"},
            api_key="sk_test",
            idempotency_key="intent-ord-1",
        )

    async def test_refund(self, gateway) -> None:
        with patch(
            "stripe.Refund.create",
            return_value={"id": "re_1", "amount": 1200, "status": "succeeded"},
        ) as create:
            refund = await gateway.refund("pi_123", Money(1200))

        assert refund.id == "re_1"
        assert refund.payment_intent_id == "pi_123"
        assert refund.amount_cents == 1200
        assert refund.status == "succeeded"
        assert "idempotency_key" not in create.call_args.kwargs
        assert create.call_args.kwargs["payment_intent"] == "pi_123"

    async def test_cancel_intent(self, gateway) -> None:
        with patch("stripe.PaymentIntent.cancel", return_value={"id": "pi_123"}) as cancel:
            await gateway.cancel_intent("pi_123")

        cancel.assert_called_once_with("pi_123", api_key="sk_test")

    async def test_gateway_error(self, gateway) -> None:
        declined = stripe.StripeError(
            "Card declined",
            http_status=402,
            json_body={"error": {"code": "card_declined", "message": "Card declined"}},
            code="card_declined",
        )
        with patch("stripe.PaymentIntent.create", side_effect=declined):
            with pytest.raises(PaymentGatewayError) as exc_info:
                await gateway.create_intent(Money(100), {})

        assert exc_info.value.status_code == 402
        assert exc_info.value.message == "Card declined"

    async def test_slow_gateway_times_out(self) -> None:
        gateway = StripePaymentGateway(secret_key="sk_test", timeout=0.05)

        def slow(*args, **kwargs):
            time.sleep(0.3)
            return {"id": "re_late"}

        with patch("stripe.Refund.create", side_effect=slow):
            with pytest.raises(PaymentGatewayError, match="timed out"):
                await gateway.refund("pi_123", Money(100))


# ============================================================================
# Address Book
# ============================================================================


ADDRESS = {
    "id": "addr-9",
    "owner_id": "user-1",
    "recipient_name": "Asha Rao",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
    "country": "IN",
}


class TestHttpAddressBook:
    """Tests for the HTTP address book client."""

    @pytest.fixture
    def book(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/addresses/addr-9":
                return httpx.Response(200, json=ADDRESS)
            if request.url.path == "/addresses/broken":
                return httpx.Response(500, text="boom")
            return httpx.Response(404, json={"detail": "not found"})

        book = HttpAddressBook("https://addresses.test", api_key="key")
        book._client = mock_client(handler, "https://addresses.test")
        return book

    async def test_owned_address(self, book) -> None:
        address = await book.get_address("addr-9", "user-1")

        assert address.id == "addr-9"
        assert address.city == "Bengaluru"
        assert address.line2 is None
        await book.close()

    async def test_other_owner(self, book) -> None:
        assert await book.get_address("addr-9", "user-2") is None
        await book.close()

    async def test_missing(self, book) -> None:
        assert await book.get_address("addr-404", "user-1") is None
        await book.close()

    async def test_server_error(self, book) -> None:
        with pytest.raises(AddressBookError) as exc_info:
            await book.get_address("broken", "user-1")

        assert exc_info.value.status_code == 500
        await book.close()


# ============================================================================
# Webhook Signatures
# ============================================================================


BODY = b'{"id": "evt_1"}'


class TestWebhookSignatureVerifier:
    """Tests for webhook signature verification."""

    @pytest.fixture
    def verifier(self) -> WebhookSignatureVerifier:
        return WebhookSignatureVerifier(secret="whsec_unit", tolerance_seconds=300)

    @pytest.fixture
    def sign(self, sign_webhook):
        def _sign(body: bytes, timestamp: int | None = None) -> str:
            return sign_webhook(body, secret="whsec_unit", timestamp=timestamp)

        return _sign

    def test_valid(self, verifier, sign) -> None:
        assert verifier.verify(BODY, sign(BODY))

    def test_tampered_body(self, verifier, sign) -> None:
        assert not verifier.verify(b'{"id": "evt_2"}', sign(BODY))

    def test_other_secret(self, verifier, sign_webhook) -> None:
        assert not verifier.verify(BODY, sign_webhook(BODY, secret="whsec_other"))

    def test_outside_tolerance(self, verifier, sign) -> None:
        header = sign(BODY, timestamp=int(time.time()) - 301)
        assert not verifier.verify(BODY, header)

    def test_rotated_secret_signature_list(self, verifier, sign) -> None:
        rotated = f"{sign(BODY)},v1={'a' * 64}"
        assert verifier.verify(BODY, rotated)

    def test_non_utf8_body(self, verifier, sign) -> None:
        body = b"\xff\xfe"
        assert not verifier.verify(body, sign(body))

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1700000000"])
    def test_malformed(self, verifier, header) -> None:
        assert not verifier.verify(b"{}", header)
