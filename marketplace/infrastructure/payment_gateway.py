"""Payment gateway boundary.

Provides:
- A gateway interface for payment intents and refunds
- A Stripe adapter built on the official SDK
- A deterministic in-process sandbox adapter
- Webhook signature verification
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import stripe
import structlog
from starlette.concurrency import run_in_threadpool

from marketplace.domain.value_objects import Money
from marketplace.infrastructure.config import settings

logger = structlog.get_logger()


class PaymentGatewayError(Exception):
    """Error from the payment gateway."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"[payment-gateway] {message}")


@dataclass
class GatewayIntent:
    """A payment intent opened with the gateway."""

    id: str
    client_secret: str
    status: str = "requires_payment_method"


@dataclass
class GatewayRefund:
    """A refund issued through the gateway."""

    id: str
    payment_intent_id: str
    amount_cents: int
    status: str = "succeeded"


class PaymentGateway(ABC):
    """Opaque payment gateway."""

    @abstractmethod
    async def create_intent(
        self,
        amount: Money,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> GatewayIntent:
        """Open a payment intent for an amount."""

    @abstractmethod
    async def cancel_intent(self, payment_intent_id: str) -> None:
        """Void an intent that has not been paid."""

    @abstractmethod
    async def refund(
        self,
        payment_intent_id: str,
        amount: Money,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        """Refund part or all of a captured payment."""

    async def close(self) -> None:
        """Release network resources."""


# ============================================================================
# Sandbox Gateway
# ============================================================================


@dataclass
class SandboxPaymentGateway(PaymentGateway):
    """In-process gateway that accepts every request.

    Results are delivered by posting webhook events, as with a real
    gateway in test mode.
    """

    intents: dict[str, dict[str, Any]] = field(default_factory=dict)
    refunds: list[GatewayRefund] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)

    async def create_intent(
        self,
        amount: Money,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> GatewayIntent:
        intent_id = f"pi_sandbox_{uuid4().hex[:24]}"
        intent = GatewayIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:16]}",
        )
        self.intents[intent_id] = {
            "amount": amount.amount_cents,
            "currency": amount.currency,
            "metadata": dict(metadata),
        }
        logger.info("Sandbox payment intent created", payment_intent_id=intent_id)
        return intent

    async def cancel_intent(self, payment_intent_id: str) -> None:
        self.cancelled.append(payment_intent_id)
        logger.info("Sandbox payment intent cancelled", payment_intent_id=payment_intent_id)

    async def refund(
        self,
        payment_intent_id: str,
        amount: Money,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        refund = GatewayRefund(
            id=f"re_sandbox_{uuid4().hex[:24]}",
            payment_intent_id=payment_intent_id,
            amount_cents=amount.amount_cents,
        )
        self.refunds.append(refund)
        logger.info(
            "Sandbox refund issued",
            payment_intent_id=payment_intent_id,
            amount_cents=amount.amount_cents,
        )
        return refund


# ============================================================================
# Stripe Gateway
# ============================================================================


class StripePaymentGateway(PaymentGateway):
    """Stripe adapter.

    SDK calls are blocking, so they run in the threadpool and are cut off
    after ``timeout`` seconds.
    """

    def __init__(self, secret_key: str, timeout: float = 10.0) -> None:
        self.secret_key = secret_key
        self.timeout = timeout

    async def _call(
        self,
        operation: str,
        method: Callable[..., Any],
        *args: Any,
        idempotency_key: str | None = None,
        **params: Any,
    ) -> Any:
        options: dict[str, Any] = {"api_key": self.secret_key}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        try:
            return await asyncio.wait_for(
                run_in_threadpool(method, *args, **params, **options),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Payment gateway timed out", operation=operation, timeout=self.timeout)
            raise PaymentGatewayError(f"{operation} timed out after {self.timeout}s") from e
        except stripe.StripeError as e:
            logger.error(
                "Payment gateway rejected request",
                operation=operation,
                status_code=e.http_status,
                gateway_code=e.code,
            )
            raise PaymentGatewayError(e.user_message or str(e), e.http_status) from e

    async def create_intent(
        self,
        amount: Money,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> GatewayIntent:
        intent = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount.amount_cents,
            currency=amount.currency.lower(),
            automatic_payment_methods={"enabled": True},
            metadata=dict(metadata),
            idempotency_key=idempotency_key,
        )
        return GatewayIntent(
            id=intent["id"],
            client_secret=intent["client_secret"],
            status=intent.get("status", "requires_payment_method"),
        )

    async def cancel_intent(self, payment_intent_id: str) -> None:
        await self._call("cancel_intent", stripe.PaymentIntent.cancel, payment_intent_id)

    async def refund(
        self,
        payment_intent_id: str,
        amount: Money,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount.amount_cents,
            idempotency_key=idempotency_key,
        )
        return GatewayRefund(
            id=refund["id"],
            payment_intent_id=payment_intent_id,
            amount_cents=refund.get("amount", amount.amount_cents),
            status=refund.get("status", "pending"),
        )


# ============================================================================
# Webhook Signatures
# ============================================================================


class WebhookSignatureVerifier:
    """Verifies the gateway's ``Stripe-Signature`` header.

    The header carries ``t=<unix>,v1=<hex>`` where the hex digest is an
    HMAC-SHA256 of ``"<t>.<raw body>"`` under the endpoint secret.
    """

    def __init__(self, secret: str | None = None, tolerance_seconds: int | None = None) -> None:
        self.secret = secret or settings.payment_webhook_secret
        self.tolerance_seconds = (
            tolerance_seconds
            if tolerance_seconds is not None
            else settings.webhook_tolerance_seconds
        )

    def verify(self, payload: bytes, header: str | None) -> bool:
        """Verify a signature header against the raw request body.

        Returns:
            True if a v1 signature matches and the timestamp is fresh.
        """
        if not header:
            logger.warning("Missing webhook signature")
            return False
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), header, self.secret, self.tolerance_seconds
            )
        except UnicodeDecodeError:
            logger.warning("Webhook payload is not UTF-8")
            return False
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Webhook signature rejected", reason=str(e), signature_prefix=header[:20])
            return False
        return True


# ============================================================================
# Global Gateway
# ============================================================================


_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get the configured payment gateway."""
    global _gateway
    if _gateway is None:
        if settings.payment_gateway == "stripe":
            _gateway = StripePaymentGateway(
                secret_key=settings.stripe_secret_key,
                timeout=settings.payment_gateway_timeout_seconds,
            )
        else:
            _gateway = SandboxPaymentGateway()
    return _gateway


async def reset_payment_gateway() -> None:
    """Close and forget the global gateway."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
    _gateway = None
