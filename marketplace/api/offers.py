"""Offer API endpoints.

- GET /products/{id}/best-offer - offer and price shown for a product
- POST /seller/offers - list a product
- PATCH /seller/offers/{id} - reprice, change deal, condition or status
- POST /seller/offers/{id}/stock - stock correction
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from marketplace.api.dependencies import get_actor
from marketplace.api.schemas import (
    BestOfferResponse,
    DealSchema,
    ErrorResponse,
    OfferCreateRequest,
    OfferResponse,
    OfferUpdateRequest,
    PriceSchema,
    StockAdjustRequest,
    StockResponse,
)
from marketplace.application.offer_service import UNSET, OfferService, get_offer_service
from marketplace.domain.entities import Offer
from marketplace.domain.value_objects import Actor, Deal

router = APIRouter(tags=["Offers"])


def offer_to_response(offer: Offer) -> OfferResponse:
    deal = None
    if offer.deal is not None:
        deal = DealSchema(
            price=PriceSchema.from_money(offer.deal.price),
            starts_at=offer.deal.starts_at,
            ends_at=offer.deal.ends_at,
        )
    return OfferResponse(
        id=offer.id,
        product_id=offer.product_id,
        seller_id=offer.seller_id,
        price=PriceSchema.from_money(offer.price),
        stock_quantity=offer.stock_quantity,
        condition=offer.condition,
        status=offer.status,
        deal=deal,
        created_at=offer.created_at,
        updated_at=offer.updated_at,
    )


def _deal_from_request(request: OfferCreateRequest | OfferUpdateRequest) -> Deal | None:
    return Deal.from_fields(
        request.deal_price.to_money() if request.deal_price else None,
        request.deal_starts_at,
        request.deal_ends_at,
    )


@router.get(
    "/products/{product_id}/best-offer",
    response_model=BestOfferResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Resolve best offer",
)
async def get_best_offer(
    product_id: str,
    service: Annotated[OfferService, Depends(get_offer_service)],
) -> BestOfferResponse:
    """Get the offer a shopper would buy and its current price.

    Without a purchasable offer the product's base price is returned
    for display with ``purchasable`` false.
    """
    resolution = await service.get_best_offer(product_id)
    return BestOfferResponse(
        product_id=resolution.product_id,
        offer=offer_to_response(resolution.offer) if resolution.offer else None,
        effective_price=(
            PriceSchema.from_money(resolution.effective_price)
            if resolution.effective_price
            else None
        ),
        is_deal_active=resolution.is_deal_active,
        purchasable=resolution.purchasable,
    )


@router.post(
    "/seller/offers",
    response_model=OfferResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Create offer",
)
async def create_offer(
    request: OfferCreateRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OfferService, Depends(get_offer_service)],
) -> OfferResponse:
    offer = await service.create_offer(
        actor,
        product_id=request.product_id,
        price=request.price.to_money(),
        stock_quantity=request.stock_quantity,
        condition=request.condition,
        deal=_deal_from_request(request),
        status=request.status,
    )
    return offer_to_response(offer)


@router.patch(
    "/seller/offers/{offer_id}",
    response_model=OfferResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Update offer",
)
async def update_offer(
    offer_id: str,
    request: OfferUpdateRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OfferService, Depends(get_offer_service)],
) -> OfferResponse:
    """Update an offer.

    Setting ``status`` to draft takes the offer out of resolution, carts
    and checkout.
    """
    offer = await service.update_offer(
        offer_id,
        actor,
        price=request.price.to_money() if request.price else None,
        deal=_deal_from_request(request) if request.touches_deal else UNSET,
        condition=request.condition,
        status=request.status,
    )
    return offer_to_response(offer)


@router.post(
    "/seller/offers/{offer_id}/stock",
    response_model=StockResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Adjust stock",
)
async def adjust_stock(
    offer_id: str,
    request: StockAdjustRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[OfferService, Depends(get_offer_service)],
) -> StockResponse:
    stock = await service.adjust_stock(offer_id, actor, request.delta)
    return StockResponse(offer_id=offer_id, stock_quantity=stock)
