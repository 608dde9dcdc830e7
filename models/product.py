"""
Print product catalog models.

A print product is a book format the parent can order (e.g. "A4 hardcover,
24-80 pages"). It carries pricing tiers by quantity, a shipping formula,
and the broker-side description of the book:

- ``mixam_spec``: human-level spec (binding, materials, trim size). Used by
  the document builder's lookup tables when no validated mapping exists.
- ``mixam_mapping``: exact broker catalogue IDs, set once an admin has
  checked the product against the broker's catalogue. Wins when present
  and ``validated`` is true.

Both are kept as plain dicts: they are copied verbatim into the order's
``productSnapshot`` so later catalogue edits never change a placed order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass(frozen=True)
class PricingTier:
    """Unit price for a quantity band. ``max_quantity=None`` means no upper limit."""

    min_quantity: int
    max_quantity: Optional[int]
    base_price: float
    setup_fee: float = 0.0

    def covers(self, quantity: int) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minQuantity": self.min_quantity,
            "maxQuantity": self.max_quantity,
            "basePrice": self.base_price,
            "setupFee": self.setup_fee,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricingTier":
        return cls(
            min_quantity=int(data.get("minQuantity", 1)),
            max_quantity=data.get("maxQuantity"),
            base_price=float(data.get("basePrice", 0.0)),
            setup_fee=float(data.get("setupFee", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class ShippingCost:
    """Shipping formula: base_rate + per_item_rate * quantity."""

    base_rate: float = 0.0
    per_item_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"baseRate": self.base_rate, "perItemRate": self.per_item_rate}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ShippingCost":
        data = data or {}
        return cls(
            base_rate=float(data.get("baseRate", 0.0)),
            per_item_rate=float(data.get("perItemRate", 0.0)),
        )


@dataclass
class PrintProduct:
    """A book format in the catalog."""

    id: str
    name: str
    active: bool = True
    pricing_tiers: List[PricingTier] = field(default_factory=list)
    shipping_cost: ShippingCost = field(default_factory=ShippingCost)
    mixam_spec: Dict[str, Any] = field(default_factory=dict)
    mixam_mapping: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "active": self.active,
            "pricingTiers": [tier.to_dict() for tier in self.pricing_tiers],
            "shippingCost": self.shipping_cost.to_dict(),
            "mixamSpec": self.mixam_spec,
        }
        if self.mixam_mapping:
            data["mixamMapping"] = self.mixam_mapping
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintProduct":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            active=bool(data.get("active", True)),
            pricing_tiers=[PricingTier.from_dict(t) for t in data.get("pricingTiers", [])],
            shipping_cost=ShippingCost.from_dict(data.get("shippingCost")),
            mixam_spec=dict(data.get("mixamSpec") or {}),
            mixam_mapping=data.get("mixamMapping"),
        )


@dataclass(frozen=True)
class PrintableAssets:
    """
    The print-ready output of a storybook, as published by the generator.

    ``owner_uid`` is the parent who owns the storybook; only they (or an
    admin) may order prints of it.
    """

    story_id: str
    output_id: str
    owner_uid: str
    cover_pdf_url: str = ""
    interior_pdf_url: str = ""
    padding_pdf_url: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintableAssets":
        return cls(
            story_id=data["storyId"],
            output_id=data.get("outputId", "") or "",
            owner_uid=data.get("ownerUid", ""),
            cover_pdf_url=data.get("coverPdfUrl", "") or "",
            interior_pdf_url=data.get("interiorPdfUrl", "") or "",
            padding_pdf_url=data.get("paddingPdfUrl", "") or "",
            metadata=dict(data.get("metadata") or {}),
        )
