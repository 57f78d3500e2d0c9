"""Payment API endpoints.

- POST /payments/intents - open a payment intent for a pending order
- POST /payments/webhook - receive gateway events (signature-verified)
"""

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from marketplace.api.dependencies import get_actor
from marketplace.api.schemas import (
    ErrorResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PriceSchema,
    WebhookResponse,
)
from marketplace.application.payment_service import (
    PaymentOutcome,
    PaymentService,
    get_payment_service,
)
from marketplace.domain.exceptions import OrderNotFoundError, PaymentNotFoundError
from marketplace.domain.value_objects import Actor
from marketplace.infrastructure.payment_gateway import WebhookSignatureVerifier

logger = structlog.get_logger()

router = APIRouter(prefix="/payments", tags=["Payments"])

# Gateway event types and the outcome each one reports.
EVENT_OUTCOMES = {
    "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentOutcome.FAILED,
}


def get_webhook_verifier() -> WebhookSignatureVerifier:
    return WebhookSignatureVerifier()


@router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Create payment intent",
)
async def create_payment_intent(
    request: PaymentIntentRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentIntentResponse:
    """Open a payment intent for the shopper's pending order.

    Calling again while an intent is pending returns that intent. After
    a failed payment a new attempt is created and stock is reserved again.
    """
    result = await service.create_payment_intent(
        request.order_id, user_id=None if actor.is_admin else actor.id
    )
    return PaymentIntentResponse(
        payment_id=result.payment_id,
        order_id=result.order_id,
        gateway_payment_id=result.gateway_payment_id,
        client_secret=result.client_secret,
        amount=PriceSchema.from_money(result.amount),
        status=result.status,
        created=result.created,
    )


def _invalid_payload(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error_code": "INVALID_PAYLOAD", "message": message},
    )


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Receive payment gateway webhook",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[PaymentService, Depends(get_payment_service)],
    verifier: Annotated[WebhookSignatureVerifier, Depends(get_webhook_verifier)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Apply a gateway payment event.

    The ``Stripe-Signature`` header must carry a fresh ``t=..,v1=..``
    HMAC of the raw body. Replayed events answer with status
    ``duplicate``; unknown event types and payments answer ``ignored``.
    """
    body = await request.body()
    if not verifier.verify(body, stripe_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        )

    try:
        event: dict[str, Any] = json.loads(body)
    except ValueError:
        raise _invalid_payload("Webhook body is not valid JSON") from None
    if not isinstance(event, dict):
        raise _invalid_payload("Webhook body must be a JSON object")

    event_id = event.get("id")
    event_type = event.get("type", "")
    intent = (event.get("data") or {}).get("object") or {}
    if not isinstance(intent, dict):
        raise _invalid_payload("Webhook data.object must be an object")

    logger.info("Received payment webhook", event_id=event_id, event_type=event_type)

    outcome = EVENT_OUTCOMES.get(event_type)
    if outcome is None:
        logger.info("Ignoring payment webhook type", event_id=event_id, event_type=event_type)
        return WebhookResponse(
            success=True,
            event_id=event_id,
            status="ignored",
            message=f"Unhandled event type: {event_type}",
        )

    order_id = (intent.get("metadata") or {}).get("order_id")
    try:
        result = await service.handle_payment_result(
            order_id,
            outcome,
            intent,
            gateway_payment_id=intent.get("id"),
            event_id=event_id,
            event_type=event_type,
        )
    except (OrderNotFoundError, PaymentNotFoundError) as e:
        logger.warning(
            "Payment webhook for unknown payment",
            event_id=event_id,
            order_id=order_id,
            gateway_payment_id=intent.get("id"),
            error=e.message,
        )
        return WebhookResponse(
            success=True, event_id=event_id, status="ignored", message=e.message
        )

    return WebhookResponse(
        success=result.success,
        event_id=event_id,
        status=result.status,
        message=result.message,
    )
