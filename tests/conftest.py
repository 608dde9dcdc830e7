"""Shared fixtures for the print fulfillment tests."""

import pytest

from core.auth import Principal
from core.mixam_client import MockMixamClient
from models.order import (
    PrintOrder,
    PrintableFiles,
    PrintableMetadata,
    ShippingAddress,
    StatusHistoryEntry,
    ValidationResult,
)
from models.product import PricingTier, PrintableAssets, PrintProduct, ShippingCost
from models.status import FulfillmentStatus
from services.catalog import ProductCatalog, StorybookAssetStore
from services.fulfillment_service import FulfillmentService, SubmissionSettings
from services.interaction_logger import InteractionLogger
from services.notifications import NotificationDispatcher
from services.order_service import OrderService
from services.order_store import InMemoryOrderRepository
from services.reconciler import StatusReconciler


# Fixtures

@pytest.fixture
def admin():
    return Principal(uid="admin-1", email="admin@example.com", is_admin=True)


@pytest.fixture
def parent():
    return Principal(uid="parent-1", email="parent@example.com")


@pytest.fixture
def other_parent():
    return Principal(uid="parent-2", email="other@example.com")


@pytest.fixture
def hardcover_product():
    """A4 case-bound book: 24 page minimum."""
    return PrintProduct(
        id="hardcover-a4",
        name="Hardcover Storybook (A4)",
        pricing_tiers=[
            PricingTier(min_quantity=1, max_quantity=4, base_price=24.99, setup_fee=5.0),
            PricingTier(min_quantity=5, max_quantity=None, base_price=20.0),
        ],
        shipping_cost=ShippingCost(base_rate=4.99, per_item_rate=1.25),
        mixam_spec={
            "format": {"trimSize": "A4"},
            "binding": {"type": "case"},
            "cover": {"material": {"type": "gloss", "weight": 170}},
            "interior": {"material": {"type": "silk", "weight": 150}},
        },
    )


@pytest.fixture
def uk_address():
    return {
        "name": "Jane Smith",
        "line1": "10 Downing Street",
        "line2": "",
        "city": "London",
        "state": "Greater London",
        "postalCode": "sw1a2aa",
        "country": "GB",
    }


@pytest.fixture
def repository():
    return InMemoryOrderRepository()


@pytest.fixture
def broker():
    return MockMixamClient()


@pytest.fixture
def events():
    """Events delivered to a recording subscriber."""
    return []


@pytest.fixture
def notifier(events):
    dispatcher = NotificationDispatcher()
    dispatcher.subscribe(events.append)
    return dispatcher


@pytest.fixture
def interaction_logger(repository):
    return InteractionLogger(repository)


@pytest.fixture
def reconciler(repository, broker, interaction_logger, notifier):
    return StatusReconciler(repository, broker, interaction_logger, notifier)


@pytest.fixture
def fulfillment(repository, broker, interaction_logger, notifier, reconciler):
    return FulfillmentService(
        repository,
        broker,
        interaction_logger,
        notifier,
        reconciler,
        settings=SubmissionSettings(
            payment_method="TEST_ORDER",
            status_callback_url="https://app.example.com/webhooks/mixam",
        ),
    )


@pytest.fixture
def catalog(hardcover_product):
    inactive = PrintProduct(id="retired", name="Retired Format", active=False,
                            pricing_tiers=[PricingTier(1, None, 10.0)])
    return ProductCatalog([hardcover_product, inactive])


@pytest.fixture
def assets():
    return StorybookAssetStore([
        PrintableAssets(
            story_id="story-1",
            output_id="output-1",
            owner_uid="parent-1",
            cover_pdf_url="https://files.example.com/story-1/cover.pdf",
            interior_pdf_url="https://files.example.com/story-1/interior.pdf",
            metadata={"interiorPageCount": 24, "trimSize": "A4"},
        ),
    ])


@pytest.fixture
def order_service(repository, catalog, assets, notifier):
    return OrderService(repository, catalog, assets, notifier)


@pytest.fixture
def make_order(repository, hardcover_product):
    """
    Store an order in the given status and return it.

    Usage:
        order = make_order(FulfillmentStatus.APPROVED, interior_pages=24)
    """
    counter = {"n": 0}

    def factory(
        status=FulfillmentStatus.AWAITING_APPROVAL,
        interior_pages=24,
        cover_url="https://files.example.com/cover.pdf",
        interior_url="https://files.example.com/interior.pdf",
        validation_result=None,
        **fields
    ):
        counter["n"] += 1
        order = PrintOrder(
            id=fields.pop("id", f"order-{counter['n']}"),
            parent_uid=fields.pop("parent_uid", "parent-1"),
            story_id="story-1",
            print_product_id=hardcover_product.id,
            product_snapshot=fields.pop("product_snapshot", hardcover_product.to_dict()),
            quantity=fields.pop("quantity", 2),
            shipping_address=ShippingAddress(
                name="Jane Smith",
                line1="10 Downing Street",
                city="London",
                postal_code="SW1A 2AA",
                state="Greater London",
            ),
            contact_email=fields.pop("contact_email", "parent@example.com"),
            printable_files=PrintableFiles(cover_pdf_url=cover_url, interior_pdf_url=interior_url),
            printable_metadata=PrintableMetadata(interior_page_count=interior_pages, trim_size="A4"),
            validation_result=validation_result or ValidationResult(),
            status=status,
            status_history=[StatusHistoryEntry(status=status.value, note="Seeded", source="system")],
            **fields
        )
        return repository.create(order)

    return factory
