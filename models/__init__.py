"""
Data models for the print fulfillment service.

This module contains dataclasses for:
- FulfillmentStatus: Order lifecycle states and the transition graph
- PrintOrder: The stored order document and its value objects
- PrintProduct: Catalog entries and storybook printable assets
- Broker results: Normalized Mixam responses with their interaction traces

Value objects (addresses, files, audit entries, broker results) are frozen.
"""

from .status import FulfillmentStatus, ALLOWED_TRANSITIONS, can_transition, map_broker_status
from .order import (
    PrintOrder,
    ShippingAddress,
    EstimatedCost,
    PrintableFiles,
    PrintableMetadata,
    ValidationResult,
    StatusHistoryEntry,
    ProcessLogEntry,
)
from .product import PrintProduct, PricingTier, ShippingCost, PrintableAssets
from .broker import BrokerInteraction, SubmitResult, ConfirmResult, CancelResult, OrderStatusResult

__all__ = [
    # Status
    "FulfillmentStatus",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "map_broker_status",
    # Order models
    "PrintOrder",
    "ShippingAddress",
    "EstimatedCost",
    "PrintableFiles",
    "PrintableMetadata",
    "ValidationResult",
    "StatusHistoryEntry",
    "ProcessLogEntry",
    # Catalog models
    "PrintProduct",
    "PricingTier",
    "ShippingCost",
    "PrintableAssets",
    # Broker models
    "BrokerInteraction",
    "SubmitResult",
    "ConfirmResult",
    "CancelResult",
    "OrderStatusResult",
]
