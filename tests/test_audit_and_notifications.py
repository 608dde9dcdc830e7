"""
Unit tests for the broker interaction log and order event dispatch.
"""

from unittest.mock import MagicMock

from models.broker import BrokerInteraction
from services.interaction_logger import InteractionLogger, new_interaction_id
from services.notifications import NotificationDispatcher, OrderEvent, ORDER_APPROVED


def _interaction(**overrides):
    fields = dict(action="submit", method="POST", endpoint="/api/public/orders",
                  payload_summary="{}", http_status=200, duration_ms=12)
    fields.update(overrides)
    return BrokerInteraction(**fields)


class TestInteractionLogger:
    """Tests for InteractionLogger."""

    def test_interaction_ids(self):
        first, second = new_interaction_id(), new_interaction_id()
        assert first.startswith("mxi_")
        assert first != second

    def test_records_success_and_failure(self, repository, make_order):
        order = make_order()
        logger = InteractionLogger(repository)

        records = logger.record(order.id, [
            _interaction(action="authenticate", endpoint="/api/user/token"),
            _interaction(http_status=500, error_message="Internal error"),
        ], mixam_order_id="mx-1")

        stored = repository.get(order.id).mixam_interactions
        assert stored == records
        assert [r["action"] for r in stored] == ["authenticate", "submit"]
        assert stored[1]["httpStatus"] == 500
        assert stored[1]["errorMessage"] == "Internal error"
        assert all(r["orderId"] == order.id and r["mixamOrderId"] == "mx-1" for r in stored)

    def test_records_call_without_response(self, repository, make_order):
        order = make_order()
        InteractionLogger(repository).record(order.id, [
            _interaction(http_status=None, error_message="Network error calling Mixam API"),
        ])

        record = repository.get(order.id).mixam_interactions[0]
        assert "httpStatus" not in record
        assert record["errorMessage"] == "Network error calling Mixam API"
        assert "mixamOrderId" not in record

    def test_appends_never_overwrite(self, repository, make_order):
        order = make_order()
        logger = InteractionLogger(repository)
        logger.record(order.id, [_interaction()])
        logger.record(order.id, [_interaction(action="confirm")])

        assert [r["action"] for r in repository.get(order.id).mixam_interactions] == ["submit", "confirm"]

    def test_nothing_to_record(self, repository):
        assert InteractionLogger(repository).record("order-x", []) == []

    def test_storage_failure_is_swallowed(self):
        repository = MagicMock()
        repository.append_interactions.side_effect = OSError("disk full")

        assert InteractionLogger(repository).record("order-1", [_interaction()]) == []


class TestNotificationDispatcher:
    """Tests for best-effort event delivery."""

    def test_delivers_to_all_handlers(self):
        dispatcher = NotificationDispatcher()
        received = []
        dispatcher.subscribe(received.append)
        dispatcher.subscribe(lambda event: received.append(event.kind))

        delivered = dispatcher.emit(OrderEvent(kind=ORDER_APPROVED, order_id="o1", status="approved"))

        assert delivered == 2
        assert received[0].order_id == "o1"
        assert received[1] == ORDER_APPROVED

    def test_failing_handler_does_not_stop_others(self):
        dispatcher = NotificationDispatcher()
        received = []

        def broken(event):
            raise RuntimeError("SMTP down")

        dispatcher.subscribe(broken)
        dispatcher.subscribe(received.append)

        assert dispatcher.emit(OrderEvent(kind=ORDER_APPROVED, order_id="o1", status="approved")) == 1
        assert len(received) == 1
