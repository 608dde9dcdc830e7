"""
Services layer for the print fulfillment service.

This module contains the business logic services:
- OrderRepository: Order document store (in-memory or JSON files)
- InteractionLogger: Broker call audit trail
- NotificationDispatcher: Best-effort order events
- StatusReconciler: Broker status refresh and webhooks
- OrderService: Parent order placement and lookup
- FulfillmentService: Admin state machine

Thread Model:
    Flask request threads call the services directly. Repositories and
    in-process stores guard their state with threading.Lock.
"""

from .order_store import OrderRepository, InMemoryOrderRepository, JsonFileOrderRepository
from .notifications import NotificationDispatcher, OrderEvent
from .interaction_logger import InteractionLogger
from .reconciler import StatusReconciler, ReconcileOutcome
from .catalog import ProductCatalog, StorybookAssetStore, load_catalog
from .order_service import OrderService
from .fulfillment_service import FulfillmentService, SubmissionSettings

__all__ = [
    "OrderRepository",
    "InMemoryOrderRepository",
    "JsonFileOrderRepository",
    "NotificationDispatcher",
    "OrderEvent",
    "InteractionLogger",
    "StatusReconciler",
    "ReconcileOutcome",
    "ProductCatalog",
    "StorybookAssetStore",
    "load_catalog",
    "OrderService",
    "FulfillmentService",
    "SubmissionSettings",
]
