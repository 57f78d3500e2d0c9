"""Order API endpoints.

Shopper routes:
- POST /orders - place an order from the cart
- GET /orders - list orders (paginated)
- GET /orders/{id} - order details, payment and status history
- POST /orders/{id}/cancel - cancel before shipping
- POST /orders/{id}/return - request a return of delivered items

Seller routes:
- POST /seller/order-items/{id}/status - ship or deliver an item
- POST /order-items/{id}/return/approve - refund a returned item
- POST /order-items/{id}/return/reject - keep the item delivered
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from marketplace.api.dependencies import get_actor
from marketplace.api.schemas import (
    AddressSchema,
    CheckoutRequest,
    ErrorResponse,
    ItemStatusUpdateRequest,
    OrderCancelRequest,
    OrderItemSchema,
    OrderResponse,
    OrdersListResponse,
    OrderSummarySchema,
    PaymentSchema,
    PriceSchema,
    ReturnRejectRequest,
    ReturnRequest,
    StatusHistorySchema,
)
from marketplace.application.checkout_service import CheckoutService, get_checkout_service
from marketplace.application.order_service import OrderScope, OrderService, get_order_service
from marketplace.domain.entities import Order, Payment
from marketplace.domain.value_objects import Actor

router = APIRouter(tags=["Orders"])


# ============================================================================
# Converters
# ============================================================================


def order_to_response(
    order: Order,
    payment: Payment | None = None,
    history: list[dict[str, Any]] | None = None,
) -> OrderResponse:
    items = [
        OrderItemSchema(
            id=item.id,
            offer_id=item.offer_id,
            product_id=item.product_id,
            seller_id=item.seller_id,
            quantity=item.quantity,
            price_at_purchase=PriceSchema.from_money(item.price_at_purchase),
            line_total=PriceSchema.from_money(item.line_total),
            status=item.status,
            tracking_number=item.tracking_number,
            shipping_carrier=item.shipping_carrier,
            shipped_at=item.shipped_at,
            delivered_at=item.delivered_at,
            return_reason=item.return_reason,
            refunded_at=item.refunded_at,
        )
        for item in order.items
    ]

    payment_schema = None
    if payment is not None:
        payment_schema = PaymentSchema(
            id=payment.id,
            status=payment.status,
            amount=PriceSchema.from_money(payment.amount),
            refunded_amount=(
                PriceSchema.from_money(payment.refunded_amount)
                if payment.refunded_amount
                else None
            ),
            gateway_payment_id=payment.gateway_payment_id,
        )

    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        total=PriceSchema.from_money(order.total),
        shipping_address=AddressSchema(**order.shipping_address.to_dict()),
        items=items,
        cancel_reason=order.cancel_reason,
        payment=payment_schema,
        status_history=[StatusHistorySchema(**entry) for entry in history or []],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def order_to_summary(order: Order) -> OrderSummarySchema:
    return OrderSummarySchema(
        id=order.id,
        status=order.status,
        total=PriceSchema.from_money(order.total),
        item_count=sum(item.quantity for item in order.items),
        created_at=order.created_at,
    )


# ============================================================================
# Shopper Endpoints
# ============================================================================


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Place order",
)
async def place_order(
    request: CheckoutRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[CheckoutService, Depends(get_checkout_service)],
) -> OrderResponse:
    """Place an order from the shopper's cart.

    Every line is re-validated and its stock reserved in one transaction;
    any failure leaves stock, cart and orders unchanged and names the
    offending line.
    """
    order = await service.place_order(actor.id, request.address_id)
    return order_to_response(order)


@router.get(
    "/orders",
    response_model=OrdersListResponse,
    responses={403: {"model": ErrorResponse}},
    summary="List orders",
)
async def list_orders(
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    scope: OrderScope | None = Query(
        default=None, description="purchases or sales; sellers default to sales"
    ),
) -> OrdersListResponse:
    """List the caller's orders, newest first.

    Sellers see the orders that contain their items, narrowed to those
    items, or their own purchases with ``scope=purchases``.
    """
    result = await service.list_orders(actor, page=page, page_size=page_size, scope=scope)
    return OrdersListResponse(
        items=[order_to_summary(order) for order in result.orders],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get order",
)
async def get_order(
    order_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    view = await service.get_order(order_id, actor)
    return order_to_response(view.order, view.payment, view.history)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Cancel order",
)
async def cancel_order(
    order_id: str,
    request: OrderCancelRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    """Cancel an order none of whose items has shipped.

    Reserved stock is released and a captured payment is refunded.
    """
    order = await service.cancel_order(order_id, actor, request.reason)
    return order_to_response(order)


@router.post(
    "/orders/{order_id}/return",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Request return",
)
async def request_return(
    order_id: str,
    request: ReturnRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    order = await service.request_return(
        order_id, actor, request.reason, item_ids=request.item_ids
    )
    return order_to_response(order)


# ============================================================================
# Seller Endpoints
# ============================================================================


@router.post(
    "/seller/order-items/{item_id}/status",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Update item status",
)
async def update_order_item_status(
    item_id: str,
    request: ItemStatusUpdateRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    """Move an item forward: processing to shipped, shipped to delivered.

    Shipping requires ``tracking_number`` and ``carrier``.
    """
    order = await service.update_order_item_status(
        item_id,
        request.status,
        actor,
        tracking_number=request.tracking_number,
        carrier=request.carrier,
    )
    return order_to_response(order)


@router.post(
    "/order-items/{item_id}/return/approve",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Approve return",
)
async def approve_return(
    item_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    order = await service.approve_return(item_id, actor)
    return order_to_response(order)


@router.post(
    "/order-items/{item_id}/return/reject",
    response_model=OrderResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Reject return",
)
async def reject_return(
    item_id: str,
    request: ReturnRejectRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> OrderResponse:
    order = await service.reject_return(item_id, actor, reason=request.reason)
    return order_to_response(order)
