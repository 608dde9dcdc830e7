"""
Unit tests for the order repositories.

The same mutation rules must hold for every implementation, so the rule
tests run against both the in-memory and the JSON file store.
"""

import json
from pathlib import Path

import pytest

from core.exceptions import ConcurrentModificationError, ConflictError, NotFoundError
from models.order import PrintOrder, ProcessLogEntry, ShippingAddress, StatusHistoryEntry
from models.status import FulfillmentStatus
from services.order_store import InMemoryOrderRepository, JsonFileOrderRepository


def _order(order_id="order-1", status=FulfillmentStatus.AWAITING_APPROVAL, created_at="2024-01-01T00:00:00+00:00",
           parent_uid="parent-1"):
    return PrintOrder(
        id=order_id,
        parent_uid=parent_uid,
        story_id="story-1",
        print_product_id="hardcover-a4",
        quantity=1,
        shipping_address=ShippingAddress(name="A B", line1="1 Road", city="Leeds", postal_code="LS1 1AA"),
        status=status,
        created_at=created_at,
    )


def _history(status):
    return StatusHistoryEntry(status=status.value, note="test", source="admin", user_id="admin-1")


# Fixtures

@pytest.fixture(params=["memory", "files"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryOrderRepository()
    return JsonFileOrderRepository(tmp_path / "orders")


class TestReadsAndCreate:
    def test_create_sets_version_one(self, store):
        created = store.create(_order())

        assert created.version == 1
        assert created.updated_at
        assert store.get("order-1").status == FulfillmentStatus.AWAITING_APPROVAL

    def test_duplicate_create(self, store):
        store.create(_order())
        with pytest.raises(ConflictError):
            store.create(_order())

    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_list_filters_and_orders_newest_first(self, store):
        store.create(_order("a", created_at="2024-01-01T00:00:00+00:00"))
        store.create(_order("b", created_at="2024-03-01T00:00:00+00:00", status=FulfillmentStatus.APPROVED))
        store.create(_order("c", created_at="2024-02-01T00:00:00+00:00", parent_uid="parent-2"))

        assert [o.id for o in store.list_orders()] == ["b", "c", "a"]
        assert [o.id for o in store.list_orders(statuses=[FulfillmentStatus.APPROVED])] == ["b"]
        assert [o.id for o in store.list_orders(parent_uid="parent-2")] == ["c"]
        assert len(store.list_orders(limit=2)) == 2


class TestMutationRules:
    """Tests for the rules every writer is held to."""

    def test_update_bumps_version_and_appends_history(self, store):
        store.create(_order())
        updated = store.update(
            "order-1",
            {"fulfillmentStatus": "approved"},
            expected_version=1,
            history=_history(FulfillmentStatus.APPROVED),
            log=[ProcessLogEntry(event="order_approved", message="ok")],
        )

        assert updated.version == 2
        assert updated.status == FulfillmentStatus.APPROVED
        assert [h.status for h in updated.status_history] == ["approved"]
        assert [e.event for e in updated.process_log] == ["order_approved"]

    def test_status_change_requires_history(self, store):
        store.create(_order())
        with pytest.raises(ValueError):
            store.update("order-1", {"fulfillmentStatus": "approved"})

    def test_history_requires_status_change(self, store):
        store.create(_order())
        with pytest.raises(ValueError):
            store.update("order-1", {"fulfillmentNotes": "x"}, history=_history(FulfillmentStatus.AWAITING_APPROVAL))

    @pytest.mark.parametrize("key", ["statusHistory", "processLog", "mixamInteractions", "version", "id"])
    def test_protected_keys(self, store, key):
        store.create(_order())
        with pytest.raises(ValueError):
            store.update("order-1", {key: []})

    def test_mixam_order_id_is_write_once(self, store):
        store.create(_order())
        store.update("order-1", {"mixamOrderId": "mx-1"})
        store.update("order-1", {"mixamOrderId": "mx-1"})

        with pytest.raises(ConflictError):
            store.update("order-1", {"mixamOrderId": "mx-2"})

    def test_mixam_order_id_is_unique(self, store):
        store.create(_order("a"))
        store.create(_order("b"))
        store.update("a", {"mixamOrderId": "mx-1"})

        with pytest.raises(ConflictError):
            store.update("b", {"mixamOrderId": "mx-1"})
        assert store.find_by_mixam_order_id("mx-1").id == "a"

    def test_appends_do_not_bump_version(self, store):
        store.create(_order())
        store.append_log("order-1", ProcessLogEntry(event="note", message="hello"))
        store.append_interactions("order-1", [{"id": "mxi_1", "action": "submit"}])

        order = store.get("order-1")
        assert order.version == 1
        assert order.process_log[-1].event == "note"
        assert order.mixam_interactions == [{"id": "mxi_1", "action": "submit"}]

    def test_stale_version_proceeds_by_default(self, store):
        store.create(_order())
        store.update("order-1", {"fulfillmentNotes": "first"})

        updated = store.update("order-1", {"fulfillmentNotes": "second"}, expected_version=1)
        assert updated.version == 3

    def test_stale_version_raises_when_strict(self):
        store = InMemoryOrderRepository(strict_versioning=True)
        store.create(_order())
        store.update("order-1", {"fulfillmentNotes": "first"})

        with pytest.raises(ConcurrentModificationError):
            store.update("order-1", {"fulfillmentNotes": "second"}, expected_version=1)

    def test_returned_orders_are_copies(self, store):
        store.create(_order())
        order = store.get("order-1")
        order.custom_options["hacked"] = True

        assert "hacked" not in store.get("order-1").custom_options


class TestJsonFileStore:
    def test_documents_written_as_json(self, tmp_path):
        store = JsonFileOrderRepository(tmp_path)
        store.create(_order())

        document = json.loads((tmp_path / "order-1.json").read_text(encoding="utf-8"))
        assert document["fulfillmentStatus"] == "awaiting_approval"
        assert document["version"] == 1
        assert not list(tmp_path.glob("*.tmp"))

    def test_lookup_closes_every_file(self, tmp_path, monkeypatch):
        store = JsonFileOrderRepository(tmp_path)
        store.create(_order("a", created_at="2024-01-01T00:00:00+00:00"))
        store.create(_order("b", created_at="2024-01-02T00:00:00+00:00"))
        store.update("a", {"mixamOrderId": "mx-1"})

        handles = []
        real_open = Path.open

        def tracking_open(self, *args, **kwargs):
            handle = real_open(self, *args, **kwargs)
            handles.append(handle)
            return handle

        monkeypatch.setattr(Path, "open", tracking_open)

        assert store.find_by_mixam_order_id("mx-1").id == "a"
        assert handles
        assert all(handle.closed for handle in handles)
        assert isinstance(store._all(), list)

    def test_unsafe_id_is_not_found(self, tmp_path):
        store = JsonFileOrderRepository(tmp_path)
        with pytest.raises(NotFoundError):
            store.get("../etc/passwd")

    def test_unknown_keys_survive_round_trip(self, tmp_path):
        store = JsonFileOrderRepository(tmp_path)
        store.create(_order())
        store.update("order-1", {"approvedBy": "admin-1"})

        assert store.get("order-1").to_dict()["approvedBy"] == "admin-1"
