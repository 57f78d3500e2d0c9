"""Offer resolution.

Picks the offer and price a shopper pays for a product. The same
function serves product display, the add-to-cart price snapshot and
checkout re-validation, so what is shown and what is charged never drift.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from marketplace.domain.entities import Offer
from marketplace.domain.value_objects import Money


@dataclass(frozen=True)
class OfferResolution:
    """Result of resolving the best offer for a product.

    Attributes:
        product_id: Product that was resolved.
        offer: Selected offer, or None when the product has no offers.
        effective_price: Deal price when the selected offer's deal is
            active, else its regular price; the product base price when
            there is no offer.
        is_deal_active: Whether the effective price is a deal price.
        purchasable: False when the price is display-only (no offers,
            or no offer with stock).
    """

    product_id: str
    offer: Offer | None
    effective_price: Money | None
    is_deal_active: bool
    purchasable: bool


def effective_price(offer: Offer, now: datetime) -> Money:
    """Price charged for an offer at ``now``."""
    if offer.deal is not None and offer.deal.is_active(now):
        return offer.deal.price
    return offer.price


def resolve_best_offer(
    product_id: str,
    offers: Sequence[Offer],
    now: datetime,
    base_price: Money | None = None,
) -> OfferResolution:
    """Deterministically select the offer a shopper should buy.

    Offers with an active deal win over all others and are ranked by deal
    price; otherwise every offer is ranked by regular price. Ties go to
    the lowest seller id. The cheapest ranked offer with stock is chosen;
    when none has stock the cheapest is returned as display-only.

    Args:
        product_id: Product being resolved.
        offers: Active offers of the product.
        now: Evaluation time.
        base_price: Product list price used when there are no offers.

    Returns:
        OfferResolution for the product.
    """
    if not offers:
        return OfferResolution(
            product_id=product_id,
            offer=None,
            effective_price=base_price,
            is_deal_active=False,
            purchasable=False,
        )

    deal_active = [offer for offer in offers if offer.is_deal_active(now)]
    if deal_active:
        ranked = sorted(
            deal_active,
            key=lambda o: (o.deal.price.amount_cents, o.seller_id),
        )
    else:
        ranked = sorted(offers, key=lambda o: (o.price.amount_cents, o.seller_id))

    in_stock = next((offer for offer in ranked if offer.stock_quantity > 0), None)
    selected = in_stock or ranked[0]
    return OfferResolution(
        product_id=product_id,
        offer=selected,
        effective_price=effective_price(selected, now),
        is_deal_active=bool(deal_active),
        purchasable=in_stock is not None,
    )
