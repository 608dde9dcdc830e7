"""
Unit tests for parent-facing order operations and the catalog seed.
"""

from pathlib import Path

import pytest

from core.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from models.product import PrintableAssets
from models.status import FulfillmentStatus
from services.catalog import load_catalog
from services.order_service import parent_view


S = FulfillmentStatus
CATALOG_SEED = Path(__file__).resolve().parent.parent / "data" / "catalog.json"


# Fixtures

@pytest.fixture
def payload(uk_address):
    return {
        "storyId": "story-1",
        "productId": "hardcover-a4",
        "quantity": 2,
        "shippingAddress": uk_address,
    }


class TestCreateOrder:
    """Tests for OrderService.create_order."""

    def test_creates_order_awaiting_approval(self, order_service, parent, payload, events):
        order = order_service.create_order(parent, payload)

        assert order.status == S.AWAITING_APPROVAL
        assert order.parent_uid == "parent-1"
        assert order.output_id == "output-1"
        assert order.version == 1
        assert order.contact_email == "parent@example.com"
        assert order.payment_status == "unpaid"
        assert order.shipping_address.postal_code == "SW1A 2AA"
        assert order.printable_metadata.interior_page_count == 24
        assert order.product_snapshot["id"] == "hardcover-a4"
        assert order.status_history[0].note == "Order created by parent, pending admin approval"
        assert [e.event for e in order.process_log] == ["order_created", "address_validated", "pdfs_linked"]
        assert events[-1].kind == "order_submitted"

    def test_cost_is_frozen_from_pricing_tier(self, order_service, parent, payload):
        cost = order_service.create_order(parent, payload).estimated_cost

        assert cost.unit_price == 24.99
        assert cost.subtotal == 49.98
        assert cost.shipping == 7.49
        assert cost.setup_fee == 5.0
        assert cost.total == 62.47

    def test_missing_fields(self, order_service, parent):
        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(parent, {"quantity": 1})
        assert excinfo.value.message == "Missing required fields: storyId, productId, shippingAddress"

    def test_quantity_must_be_integer(self, order_service, parent, payload):
        payload["quantity"] = "lots"
        with pytest.raises(ValidationError):
            order_service.create_order(parent, payload)

    @pytest.mark.parametrize("quantity", [2.9, True, "2.5"])
    def test_quantity_is_not_truncated(self, order_service, parent, payload, quantity):
        payload["quantity"] = quantity

        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(parent, payload)
        assert excinfo.value.message == "Quantity must be a whole number"
        assert order_service.repository.list_orders() == []

    def test_whole_float_quantity_accepted(self, order_service, parent, payload):
        payload["quantity"] = 3.0
        assert order_service.create_order(parent, payload).quantity == 3

    def test_all_failures_reported(self, order_service, parent, payload):
        payload["quantity"] = 500
        payload["shippingAddress"] = dict(payload["shippingAddress"], postalCode="NOPE", country="FR")

        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(parent, payload)

        errors = excinfo.value.errors
        assert "Currently only UK addresses are supported" in errors
        assert "Quantity must be between 1 and 100" in errors
        assert order_service.repository.list_orders() == []

    def test_unknown_product(self, order_service, parent, payload):
        payload["productId"] = "poster"
        with pytest.raises(NotFoundError):
            order_service.create_order(parent, payload)

    def test_inactive_product(self, order_service, parent, payload):
        payload["productId"] = "retired"
        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(parent, payload)
        assert excinfo.value.message == "Print product Retired Format is not available"

    def test_unknown_storybook(self, order_service, parent, payload):
        payload["storyId"] = "story-404"
        with pytest.raises(NotFoundError):
            order_service.create_order(parent, payload)

    def test_not_owner(self, order_service, other_parent, payload):
        with pytest.raises(PermissionDeniedError) as excinfo:
            order_service.create_order(other_parent, payload)
        assert excinfo.value.message == "You can only order prints of your own storybooks"

    def test_missing_pdf(self, order_service, assets, parent, payload):
        assets.publish(PrintableAssets(story_id="story-1", output_id="output-2", owner_uid="parent-1",
                                       cover_pdf_url="https://files.example.com/cover.pdf"))

        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(parent, payload)
        assert excinfo.value.errors == ["Interior PDF is missing"]

    def test_explicit_output_id(self, order_service, assets, parent, payload):
        assets.publish(PrintableAssets(story_id="story-1", output_id="output-2", owner_uid="parent-1"))
        payload["outputId"] = "output-1"

        assert order_service.create_order(parent, payload).output_id == "output-1"


class TestPaymentAndReads:
    def test_mark_paid(self, order_service, make_order, parent):
        order = make_order()
        paid = order_service.mark_paid(order.id, parent)

        assert paid.payment_status == "paid"
        assert paid.raw["paidAt"]
        assert paid.status == S.AWAITING_APPROVAL
        assert paid.process_log[-1].event == "payment_recorded"

    def test_mark_paid_twice(self, order_service, make_order, parent):
        order = make_order()
        first = order_service.mark_paid(order.id, parent)
        second = order_service.mark_paid(order.id, parent)

        assert second.version == first.version

    def test_cannot_pay_cancelled_order(self, order_service, make_order, parent):
        order = make_order(S.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            order_service.mark_paid(order.id, parent)

    def test_other_parent_cannot_read(self, order_service, make_order, other_parent, admin):
        order = make_order()

        with pytest.raises(PermissionDeniedError):
            order_service.get_order(order.id, other_parent)
        assert order_service.get_order(order.id, admin).id == order.id

    def test_list_for_parent(self, order_service, make_order, parent, other_parent):
        make_order()
        make_order(parent_uid="parent-2")

        assert [o.parent_uid for o in order_service.list_for_parent(parent)] == ["parent-1"]
        assert len(order_service.list_for_parent(other_parent)) == 1

    def test_admin_filters(self, order_service, make_order, admin):
        make_order(S.AWAITING_APPROVAL)
        make_order(S.APPROVED)
        make_order(S.SHIPPED)
        make_order(S.CANCELLED)

        assert [o.status for o in order_service.list_orders(admin, "pending")] == [S.AWAITING_APPROVAL]
        assert [o.status for o in order_service.list_orders(admin, "approved")] == [S.APPROVED]
        assert [o.status for o in order_service.list_orders(admin, "submitted")] == [S.SHIPPED]
        assert len(order_service.list_orders(admin, "all")) == 4

    def test_filters_are_admin_only(self, order_service, parent):
        with pytest.raises(PermissionDeniedError):
            order_service.list_orders(parent, "all")

    def test_unknown_filter(self, order_service, admin):
        with pytest.raises(ValidationError):
            order_service.list_orders(admin, "everything")

    def test_parent_view_hides_audit_detail(self, make_order):
        document = parent_view(make_order())

        assert "processLog" not in document
        assert "mixamInteractions" not in document
        assert "statusHistory" in document


class TestCatalogSeed:
    def test_loads_bundled_seed(self):
        catalog, assets = load_catalog(str(CATALOG_SEED))

        assert [p.id for p in catalog.active_products()] == ["hardcover-a4", "paperback-a5"]
        assert catalog.get("spiral-a4").active is False
        assert assets.get("story-demo-1").owner_uid == "parent-demo"

    def test_empty_path(self):
        catalog, assets = load_catalog("")
        assert catalog.active_products() == []
        assert assets.get("anything") is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_catalog(str(tmp_path / "missing.json"))

    def test_malformed_file(self, tmp_path):
        seed = tmp_path / "catalog.json"
        seed.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_catalog(str(seed))
