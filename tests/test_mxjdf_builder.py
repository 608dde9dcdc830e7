"""
Unit tests for the MxJdf job document builder.
"""

import pytest

from models.order import PrintableMetadata
from models.status import FulfillmentStatus
from modules.mxjdf_builder import (
    DEFAULT_PHONE,
    build_mxjdf_document,
    round_up_pages,
    size_spec,
    sub_product_id,
    validate_mxjdf_document,
)


COVER = "https://files.example.com/cover.pdf"
INTERIOR = "https://files.example.com/interior.pdf"


def _build(order, **kwargs):
    return build_mxjdf_document(order, order.printable_metadata, COVER, INTERIOR, **kwargs)


def _component(document, component_type):
    components = document["orderItems"][0]["itemSpecification"]["components"]
    return next(c for c in components if c["componentType"] == component_type)


class TestHelpers:
    def test_round_up_pages(self):
        assert round_up_pages(24) == 24
        assert round_up_pages(25) == 28

    def test_din_sizes(self):
        assert size_spec("A5 portrait") == {"format": 5}
        assert size_spec("A4") == {"format": 4}

    def test_standard_size(self):
        assert size_spec('8.5" x 11"') == {"format": 4, "standardSize": "IN_8_5_X_11"}

    def test_unknown_size_defaults_to_a4(self):
        assert size_spec("postcard") == {"format": 4}


class TestDocument:
    """Tests for build_mxjdf_document."""

    def test_document_shape(self, make_order):
        order = make_order(FulfillmentStatus.APPROVED)
        document = _build(order, payment_method="TEST_ORDER", status_callback_url="https://app/webhooks/mixam")

        assert document["metadata"] == {
            "externalOrderId": order.id,
            "statusCallbackUrl": "https://app/webhooks/mixam",
        }
        assert document["paymentMethod"] == "TEST_ORDER"
        item = document["orderItems"][0]
        assert item["itemSpecification"]["copies"] == 2
        assert [a["url"] for a in item["assets"]] == [COVER, INTERIOR]
        assert item["metadata"]["externalItemId"] == f"ITEM-{order.id}"
        assert document["deliveries"][0]["itemDeliveryDetails"] == [
            {"itemId": f"ITEM-{order.id}", "copies": 2}
        ]
        assert validate_mxjdf_document(document) == []

    def test_hardcover_from_spec(self, make_order):
        order = make_order(FulfillmentStatus.APPROVED)
        document = _build(order)

        bound = _component(document, "BOUND")
        assert bound["binding"]["type"] == "CASE"
        assert bound["pages"] == 24
        assert bound["format"] == 4
        assert _component(document, "END_PAPERS")
        assert _component(document, "COVER")["backColours"] == "NONE"
        assert sub_product_id(order) == 1

    def test_pages_rounded_up(self, make_order):
        order = make_order(FulfillmentStatus.APPROVED, interior_pages=26)
        document = build_mxjdf_document(order, PrintableMetadata(interior_page_count=26), COVER, INTERIOR)
        assert _component(document, "BOUND")["pages"] == 28

    def test_validated_mapping_wins(self, make_order, hardcover_product):
        snapshot = hardcover_product.to_dict()
        snapshot["mixamMapping"] = {
            "validated": True,
            "subProductId": 7,
            "boundComponent": {"format": 5, "substrate": {"typeId": 3, "weightId": 2, "colourId": 0}},
            "coverComponent": {"format": 5, "substrate": {"typeId": 2, "weightId": 14, "colourId": 0},
                               "lamination": "GLOSS"},
            "binding": {"type": "PUR"},
        }
        order = make_order(FulfillmentStatus.APPROVED, product_snapshot=snapshot)
        document = _build(order)

        assert document["orderItems"][0]["subProductId"] == 7
        bound = _component(document, "BOUND")
        assert bound["format"] == 5
        assert bound["binding"]["type"] == "PUR"
        assert _component(document, "COVER")["lamination"] == "GLOSS"

    def test_delivery_address(self, make_order):
        document = _build(make_order(FulfillmentStatus.APPROVED))
        address = document["deliveries"][0]["address"]

        assert address["firstName"] == "Jane"
        assert address["lastName"] == "Smith"
        assert address["postcode"] == "SW1A 2AA"
        assert address["phoneNumber"] == DEFAULT_PHONE
        assert document["billingAddress"] == address

    def test_separate_billing_address(self, make_order):
        billing = {"name": "Acme Books Ltd", "line1": "1 High St", "city": "Leeds",
                   "postalCode": "LS1 1AA", "country": "GB", "email": "accounts@acme.example"}
        document = _build(make_order(FulfillmentStatus.APPROVED), billing_address=billing)

        assert document["billingAddress"]["town"] == "Leeds"
        assert document["billingAddress"]["emailAddress"] == "accounts@acme.example"
        assert document["invoiceAddress"] == document["billingAddress"]

    def test_bad_payment_method(self, make_order):
        with pytest.raises(ValueError):
            _build(make_order(FulfillmentStatus.APPROVED), payment_method="IOU")


class TestValidateDocument:
    def test_reports_missing_parts(self):
        errors = validate_mxjdf_document({})

        assert "metadata.externalOrderId is required" in errors
        assert "At least one orderItem is required" in errors
        assert "paymentMethod is required" in errors
        assert "billingAddress is required" in errors

    def test_missing_email(self, make_order):
        order = make_order(FulfillmentStatus.APPROVED, contact_email="")
        errors = validate_mxjdf_document(_build(order))
        assert "deliveries[0].address.emailAddress is required" in errors
