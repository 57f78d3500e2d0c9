"""Shared fixtures for API tests."""

import httpx
import pytest

from marketplace.api.payments import get_webhook_verifier
from marketplace.application.cart_merge_service import get_cart_merge_service
from marketplace.application.cart_service import get_cart_service
from marketplace.application.checkout_service import get_checkout_service
from marketplace.application.offer_service import get_offer_service
from marketplace.application.order_service import get_order_service
from marketplace.application.payment_service import get_payment_service
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.payment_gateway import WebhookSignatureVerifier
from marketplace.main import app


@pytest.fixture
def webhook_verifier() -> WebhookSignatureVerifier:
    return WebhookSignatureVerifier(secret="whsec_test_secret", tolerance_seconds=300)


@pytest.fixture
async def client(
    cart_service,
    merge_service,
    checkout_service,
    order_service,
    payment_service,
    offer_service,
    webhook_verifier,
):
    """Create a client without authentication, wired to the test services."""
    app.dependency_overrides.update(
        {
            get_cart_service: lambda: cart_service,
            get_cart_merge_service: lambda: merge_service,
            get_checkout_service: lambda: checkout_service,
            get_order_service: lambda: order_service,
            get_payment_service: lambda: payment_service,
            get_offer_service: lambda: offer_service,
            get_webhook_verifier: lambda: webhook_verifier,
        }
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {settings.api_key}"}


@pytest.fixture
def as_user(auth_headers):
    """Build headers for a caller with a role."""

    def _headers(user_id: str = "user-1", role: str | None = None) -> dict[str, str]:
        headers = {**auth_headers, "X-User-Id": user_id}
        if role:
            headers["X-User-Role"] = role
        return headers

    return _headers
