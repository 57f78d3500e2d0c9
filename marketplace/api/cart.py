"""Cart API endpoints.

Guests are identified by ``X-Guest-Token``; signed-in shoppers by
``X-User-Id``, which takes precedence when both are sent.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from marketplace.api.dependencies import get_actor, get_cart_owner
from marketplace.api.schemas import (
    CartItemAddRequest,
    CartItemResponse,
    CartItemUpdateRequest,
    CartLineSchema,
    CartMergeRequest,
    CartMergeResponse,
    CartResponse,
    DroppedLineSchema,
    ErrorResponse,
    PriceSchema,
)
from marketplace.application.cart_merge_service import (
    CartMergeService,
    GuestLine,
    get_cart_merge_service,
)
from marketplace.application.cart_service import (
    CartOwner,
    CartService,
    CartView,
    get_cart_service,
)
from marketplace.domain.entities import CartItem
from marketplace.domain.value_objects import Actor

router = APIRouter(prefix="/cart", tags=["Cart"])


def cart_item_to_response(item: CartItem) -> CartItemResponse:
    return CartItemResponse(
        offer_id=item.offer_id,
        quantity=item.quantity,
        unit_price_at_add=PriceSchema.from_money(item.unit_price_at_add),
        added_at=item.added_at,
    )


def cart_to_response(cart: CartView) -> CartResponse:
    items = [
        CartLineSchema(
            offer_id=line.offer_id,
            product_id=line.product_id,
            seller_id=line.seller_id,
            quantity=line.quantity,
            unit_price_at_add=PriceSchema.from_money(line.unit_price_at_add),
            current_price=(
                PriceSchema.from_money(line.current_price) if line.current_price else None
            ),
            is_deal_active=line.is_deal_active,
            available_stock=line.available_stock,
            available=line.available,
            line_total=PriceSchema.from_money(line.line_total),
        )
        for line in cart.lines
    ]
    subtotal = cart.subtotal
    return CartResponse(
        owner_id=cart.owner_id,
        is_guest=cart.is_guest,
        items=items,
        item_count=cart.item_count,
        subtotal=PriceSchema.from_money(subtotal) if subtotal else None,
    )


@router.get("", response_model=CartResponse, summary="Get cart")
async def get_cart(
    owner: Annotated[CartOwner, Depends(get_cart_owner)],
    service: Annotated[CartService, Depends(get_cart_service)],
) -> CartResponse:
    """Get the cart with each line's current price and stock.

    Current prices are informational; checkout re-resolves them.
    """
    return cart_to_response(await service.get_cart(owner))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Clear cart")
async def clear_cart(
    owner: Annotated[CartOwner, Depends(get_cart_owner)],
    service: Annotated[CartService, Depends(get_cart_service)],
) -> Response:
    await service.clear_cart(owner)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/items",
    response_model=CartItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Add to cart",
)
async def add_cart_item(
    request: CartItemAddRequest,
    owner: Annotated[CartOwner, Depends(get_cart_owner)],
    service: Annotated[CartService, Depends(get_cart_service)],
) -> CartItemResponse:
    """Add units of an offer; an existing line is incremented."""
    item = await service.add_to_cart(owner, request.offer_id, request.quantity)
    return cart_item_to_response(item)


@router.patch(
    "/items/{offer_id}",
    response_model=CartItemResponse | None,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Set line quantity",
)
async def update_cart_item(
    offer_id: str,
    request: CartItemUpdateRequest,
    owner: Annotated[CartOwner, Depends(get_cart_owner)],
    service: Annotated[CartService, Depends(get_cart_service)],
) -> CartItemResponse | None:
    """Set a line's quantity. Zero removes the line and returns null."""
    item = await service.update_cart_item(owner, offer_id, request.quantity)
    return cart_item_to_response(item) if item else None


@router.delete(
    "/items/{offer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Remove line",
)
async def remove_cart_item(
    offer_id: str,
    owner: Annotated[CartOwner, Depends(get_cart_owner)],
    service: Annotated[CartService, Depends(get_cart_service)],
) -> Response:
    await service.remove_from_cart(owner, offer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/merge", response_model=CartMergeResponse, summary="Merge guest cart")
async def merge_cart(
    request: CartMergeRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[CartMergeService, Depends(get_cart_merge_service)],
) -> CartMergeResponse:
    """Fold a guest cart into the signed-in shopper's cart.

    Quantities of lines present in both carts are added. Lines that
    cannot be added are reported as dropped. The guest cart is cleared.
    """
    if request.guest_token is None and request.items is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error_code": "VALIDATION_ERROR",
                "message": "Either guest_token or items is required",
            },
        )
    guest_items = None
    if request.items is not None:
        guest_items = [
            GuestLine(offer_id=line.offer_id, quantity=line.quantity)
            for line in request.items
        ]
    report = await service.merge_guest_cart(
        actor.id,
        guest_items=guest_items,
        guest_token=request.guest_token,
        merge_key=request.merge_key,
    )
    return CartMergeResponse(
        user_id=report.user_id,
        already_merged=report.already_merged,
        merged=[cart_item_to_response(item) for item in report.merged],
        dropped=[
            DroppedLineSchema(
                offer_id=line.offer_id,
                quantity=line.quantity,
                error_code=line.error_code,
                message=line.message,
            )
            for line in report.dropped
        ],
    )
