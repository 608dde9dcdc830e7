"""
Price estimation from a product's quantity tiers.

Formula (GBP):
    unit_price = tier.base_price
    subtotal   = unit_price * quantity
    shipping   = shipping.base_rate + shipping.per_item_rate * quantity
    total      = subtotal + shipping + tier.setup_fee
"""

from __future__ import annotations

from typing import Optional

from models.order import EstimatedCost
from models.product import PricingTier, PrintProduct


def find_pricing_tier(product: PrintProduct, quantity: int) -> Optional[PricingTier]:
    """First tier whose [min, max] band contains ``quantity``, or None."""
    for tier in product.pricing_tiers:
        if tier.covers(quantity):
            return tier
    return None


def estimate_cost(product: PrintProduct, quantity: int, tier: Optional[PricingTier] = None) -> Optional[EstimatedCost]:
    """
    Price ``quantity`` copies of ``product``.

    Returns:
        EstimatedCost, or None when no tier covers the quantity
    """
    tier = tier or find_pricing_tier(product, quantity)
    if tier is None:
        return None

    subtotal = round(tier.base_price * quantity, 2)
    shipping = round(product.shipping_cost.base_rate + product.shipping_cost.per_item_rate * quantity, 2)
    total = round(subtotal + shipping + tier.setup_fee, 2)

    return EstimatedCost(
        unit_price=tier.base_price,
        subtotal=subtotal,
        shipping=shipping,
        setup_fee=tier.setup_fee,
        total=total,
        currency="GBP",
    )
