"""Tests for payment intents and the signed gateway webhook."""

import json
import time

import pytest

from marketplace.application.cart_service import CartOwner


def signed(sign, payload: dict | bytes, timestamp: int | None = None) -> dict:
    """Build request kwargs for a webhook delivery with a valid signature."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return {
        "content": body,
        "headers": {
            "Content-Type": "application/json",
            "Stripe-Signature": sign(body, timestamp=timestamp),
        },
    }


def payment_event(event_id: str, event_type: str, gateway_payment_id: str, order_id: str) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": gateway_payment_id,
                "metadata": {"order_id": order_id},
                "latest_charge": "ch_test",
                "last_payment_error": {"message": "Your card was declined."},
            }
        },
    }


@pytest.fixture
async def order(catalog, cart_service, checkout_service):
    offer = await catalog.offer(price=50000, stock=4)
    await cart_service.add_to_cart(CartOwner.user("user-1"), offer.id, 2)
    return await checkout_service.place_order("user-1", "addr-1")


@pytest.fixture
async def intent(client, as_user, order) -> dict:
    response = await client.post(
        "/payments/intents", json={"order_id": order.id}, headers=as_user()
    )
    assert response.status_code == 200
    return response.json()


class TestPaymentIntent:
    """Tests for POST /payments/intents."""

    async def test_created(self, intent, order) -> None:
        assert intent["order_id"] == order.id
        assert intent["status"] == "pending"
        assert intent["created"] is True
        assert intent["amount"] == {"amount": 100000, "currency": "INR"}
        assert intent["gateway_payment_id"].startswith("pi_sandbox_")
        assert intent["client_secret"]

    async def test_pending_intent_reused(self, client, as_user, intent, order) -> None:
        response = await client.post(
            "/payments/intents", json={"order_id": order.id}, headers=as_user()
        )

        assert response.json()["created"] is False
        assert response.json()["payment_id"] == intent["payment_id"]

    async def test_other_users_order(self, client, as_user, order) -> None:
        response = await client.post(
            "/payments/intents", json={"order_id": order.id}, headers=as_user("user-2")
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "ORDER_NOT_FOUND"


class TestWebhookSignature:
    """Tests for webhook signature verification."""

    async def test_missing_signature(self, client) -> None:
        response = await client.post("/payments/webhook", content=b"{}")

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"

    async def test_wrong_secret(self, client) -> None:
        body = b'{"id": "evt_1", "type": "payment_intent.succeeded"}'
        response = await client.post(
            "/payments/webhook",
            content=body,
            headers={"Stripe-Signature": f"t={int(time.time())},v1={'0' * 64}"},
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"

    async def test_stale_timestamp(self, client, sign_webhook) -> None:
        stale = int(time.time()) - 3600
        response = await client.post(
            "/payments/webhook", **signed(sign_webhook, {"id": "evt_1"}, timestamp=stale)
        )

        assert response.status_code == 401

    async def test_does_not_need_api_key(self, client, sign_webhook) -> None:
        response = await client.post(
            "/payments/webhook",
            **signed(sign_webhook, {"id": "evt_1", "type": "charge.updated"}),
        )

        assert response.status_code == 200


class TestWebhookEvents:
    """Tests for applying webhook events."""

    async def test_success(self, client, as_user, sign_webhook, intent, order) -> None:
        event = payment_event(
            "evt_ok", "payment_intent.succeeded", intent["gateway_payment_id"], order.id
        )

        response = await client.post("/payments/webhook", **signed(sign_webhook, event))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["event_id"] == "evt_ok"
        assert response.json()["status"] == "processed"
        details = (await client.get(f"/orders/{order.id}", headers=as_user())).json()
        assert details["status"] == "processing"

    async def test_replayed_event(self, client, sign_webhook, intent, order) -> None:
        event = payment_event(
            "evt_ok", "payment_intent.succeeded", intent["gateway_payment_id"], order.id
        )
        await client.post("/payments/webhook", **signed(sign_webhook, event))

        response = await client.post("/payments/webhook", **signed(sign_webhook, event))

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    async def test_failure_releases_stock(
        self, client, as_user, sign_webhook, intent, order, catalog
    ) -> None:
        event = payment_event(
            "evt_fail",
            "payment_intent.payment_failed",
            intent["gateway_payment_id"],
            order.id,
        )

        response = await client.post("/payments/webhook", **signed(sign_webhook, event))

        assert response.json()["status"] == "processed"
        assert await catalog.stock(order.items[0].offer_id) == 4
        details = (await client.get(f"/orders/{order.id}", headers=as_user())).json()
        assert details["status"] == "pending"
        assert details["payment"] is None

    async def test_unknown_event_type(self, client, sign_webhook) -> None:
        response = await client.post(
            "/payments/webhook",
            **signed(sign_webhook, {"id": "evt_x", "type": "charge.refunded"}),
        )

        assert response.json()["status"] == "ignored"
        assert "charge.refunded" in response.json()["message"]

    async def test_unknown_payment(self, client, sign_webhook, order) -> None:
        event = payment_event("evt_y", "payment_intent.succeeded", "pi_unknown", order.id)

        response = await client.post("/payments/webhook", **signed(sign_webhook, event))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    async def test_invalid_json(self, client, sign_webhook) -> None:
        response = await client.post(
            "/payments/webhook", **signed(sign_webhook, b"not json")
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAYLOAD"

    async def test_non_object_body(self, client, sign_webhook) -> None:
        response = await client.post("/payments/webhook", **signed(sign_webhook, b"[1, 2]"))

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PAYLOAD"
