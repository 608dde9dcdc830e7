"""
Unit tests for the fulfillment state machine.

Runs against the in-memory repository and the mock broker; broker failures
are simulated with a MagicMock broker.
"""

from unittest.mock import MagicMock

import pytest

from core.exceptions import (
    BrokerError,
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationError,
)
from models.broker import BrokerInteraction
from models.order import ValidationResult
from models.status import FulfillmentStatus
from services.fulfillment_service import FulfillmentService


S = FulfillmentStatus


def _events(order):
    return [entry.event for entry in order.process_log]


def _network_error():
    return BrokerError(
        "Network error calling Mixam API (https://mixam.co.uk/api/public/orders): connection reset",
        interactions=[BrokerInteraction(
            action="submit", method="POST", endpoint="/api/public/orders",
            error_message="connection reset", duration_ms=3000,
        )],
    )


# Fixtures

@pytest.fixture
def failing_broker():
    broker = MagicMock()
    broker.submit_order.side_effect = _network_error()
    return broker


@pytest.fixture
def service_with(repository, interaction_logger, notifier, reconciler):
    """Build a FulfillmentService around a given broker."""
    def factory(broker):
        return FulfillmentService(repository, broker, interaction_logger, notifier, reconciler)
    return factory


@pytest.fixture
def submitted_order(fulfillment, make_order, admin):
    order = make_order(S.APPROVED)
    return fulfillment.submit(order.id, admin)


class TestPermissions:
    """Admin checks happen before the order is read or written."""

    @pytest.mark.parametrize("action", ["approve", "submit", "confirm", "mark_confirmed", "reset", "refresh_status"])
    def test_parent_is_refused(self, fulfillment, make_order, parent, action):
        order = make_order()

        with pytest.raises(PermissionDeniedError):
            getattr(fulfillment, action)(order.id, parent)

        stored = fulfillment.repository.get(order.id)
        assert stored.version == order.version
        assert stored.process_log == order.process_log

    def test_parent_cannot_cancel(self, fulfillment, make_order, parent):
        with pytest.raises(PermissionDeniedError):
            fulfillment.cancel(make_order().id, parent, "changed my mind")


class TestApproveAndReject:
    def test_approve(self, fulfillment, make_order, admin, events):
        order = make_order(S.AWAITING_APPROVAL)
        approved = fulfillment.approve(order.id, admin)

        assert approved.status == S.APPROVED
        assert approved.version == order.version + 1
        assert approved.status_history[-1].note == "Approved by admin admin@example.com"
        assert approved.status_history[-1].source == "admin"
        assert approved.raw["approvedBy"] == "admin-1"
        assert [e.kind for e in events] == ["order_approved"]

    def test_approve_wrong_status_is_logged(self, fulfillment, make_order, admin):
        order = make_order(S.SUBMITTED)

        with pytest.raises(InvalidTransitionError):
            fulfillment.approve(order.id, admin)

        stored = fulfillment.repository.get(order.id)
        assert stored.status == S.SUBMITTED
        assert _events(stored) == ["approve_refused"]

    def test_approve_failed_validation(self, fulfillment, make_order, admin):
        order = make_order(S.READY_TO_SUBMIT,
                           validation_result=ValidationResult(valid=False, errors=["Cover PDF is missing"]))

        with pytest.raises(ValidationError) as excinfo:
            fulfillment.approve(order.id, admin)
        assert excinfo.value.errors == ["Cover PDF is missing"]

    def test_reject(self, fulfillment, make_order, admin, events):
        order = make_order(S.AWAITING_APPROVAL)
        rejected = fulfillment.reject(order.id, admin, "Blurry artwork")

        assert rejected.status == S.CANCELLED
        assert rejected.raw["approvalStatus"] == "rejected"
        assert rejected.raw["rejectedReason"] == "Blurry artwork"
        assert events[-1].kind == "order_rejected"

    def test_reject_requires_reason(self, fulfillment, make_order, admin):
        order = make_order(S.AWAITING_APPROVAL)
        with pytest.raises(ValidationError):
            fulfillment.reject(order.id, admin, "")
        assert fulfillment.repository.get(order.id).status == S.AWAITING_APPROVAL


class TestSubmit:
    """Submission, including broker failures and retries."""

    def test_submit_success(self, fulfillment, make_order, admin, hardcover_product, events):
        snapshot = hardcover_product.to_dict()
        snapshot["mixamSpec"]["binding"] = {"type": "PUR"}
        order = make_order(S.AWAITING_APPROVAL, interior_pages=32, quantity=5, product_snapshot=snapshot)

        fulfillment.approve(order.id, admin)
        submitted = fulfillment.submit(order.id, admin)

        assert submitted.status == S.SUBMITTED
        assert submitted.mixam_order_id.startswith("MOCK-")
        assert submitted.mixam_job_number.startswith("MXM")
        assert submitted.mixam_status == "PENDING"
        assert submitted.submit_attempts == 1
        assert [h.status for h in submitted.status_history] == [
            "awaiting_approval", "approved", "validating", "submitted",
        ]
        assert submitted.status_history[-1].note == f"Submitted to Mixam. Job Number: {submitted.mixam_job_number}"
        assert _events(submitted)[-2:] == ["mixam_submit_attempt", "mixam_submitted"]
        assert submitted.mixam_interactions[0]["action"] == "submit"
        assert events[-1].kind == "order_sent_to_printer"

    def test_bad_page_count_blocks_submit(self, fulfillment, make_order, admin, hardcover_product):
        snapshot = hardcover_product.to_dict()
        snapshot["mixamSpec"]["binding"] = {"type": "PUR"}
        order = make_order(S.APPROVED, interior_pages=30, product_snapshot=snapshot)

        with pytest.raises(ValidationError) as excinfo:
            fulfillment.submit(order.id, admin)

        assert excinfo.value.http_status == 400
        assert "must be a multiple of 4" in excinfo.value.message
        stored = fulfillment.repository.get(order.id)
        assert stored.status == S.APPROVED
        assert stored.submit_attempts == 0
        assert _events(stored) == ["submit_refused"]

    def test_missing_pdf_blocks_submit(self, fulfillment, make_order, admin):
        order = make_order(S.APPROVED, cover_url="")
        with pytest.raises(ValidationError) as excinfo:
            fulfillment.submit(order.id, admin)
        assert "Cover PDF is missing" in excinfo.value.errors

    def test_submit_requires_approval(self, fulfillment, make_order, admin):
        order = make_order(S.AWAITING_APPROVAL)
        with pytest.raises(InvalidTransitionError):
            fulfillment.submit(order.id, admin)

    def test_network_error_rolls_back(self, service_with, failing_broker, make_order, admin):
        service = service_with(failing_broker)
        order = make_order(S.APPROVED)

        with pytest.raises(BrokerError):
            service.submit(order.id, admin)

        stored = service.repository.get(order.id)
        assert stored.status == S.APPROVED
        assert stored.mixam_order_id is None
        assert stored.submit_attempts == 1
        assert [h.status for h in stored.status_history][-2:] == ["validating", "approved"]
        assert stored.status_history[-1].note.startswith("Submission to Mixam failed (attempt 1): Network error")
        assert stored.fulfillment_notes.startswith("Submission failed: Network error")
        assert stored.mixam_interactions[0]["errorMessage"] == "connection reset"
        failed = [e for e in stored.process_log if e.event == "mixam_submit_failed"]
        assert failed[0].data["attempt"] == 1

    def test_retry_after_failure(self, service_with, make_order, admin, broker):
        flaky = MagicMock(wraps=broker)
        calls = {"n": 0}

        def submit_order(document):
            calls["n"] += 1
            if calls["n"] == 1:
                raise _network_error()
            return broker.submit_order(document)

        flaky.submit_order.side_effect = submit_order
        service = service_with(flaky)
        order = make_order(S.APPROVED)

        with pytest.raises(BrokerError):
            service.submit(order.id, admin)
        submitted = service.submit(order.id, admin)

        assert submitted.status == S.SUBMITTED
        assert submitted.submit_attempts == 2
        attempts = [e.data["attempt"] for e in submitted.process_log if e.event == "mixam_submit_attempt"]
        assert attempts == [1, 2]
        assert [e.data["attempt"] for e in submitted.process_log if e.event == "mixam_submitted"] == [2]

    def test_submit_document_sent_to_broker(self, make_order, admin, service_with, broker):
        spy = MagicMock(wraps=broker)
        service = service_with(spy)
        order = make_order(S.APPROVED)

        service.submit(order.id, admin)

        document = spy.submit_order.call_args[0][0]
        assert document["metadata"]["externalOrderId"] == order.id
        assert document["orderItems"][0]["assets"][1]["url"] == order.printable_files.interior_pdf_url


class TestConfirm:
    def test_confirm(self, fulfillment, submitted_order, admin):
        confirmed = fulfillment.confirm(submitted_order.id, admin)

        assert confirmed.status == S.CONFIRMED
        assert confirmed.mixam_status == "CONFIRMED"
        assert confirmed.status_history[-1].note == "Confirmed with Mixam by admin admin@example.com"
        assert confirmed.mixam_interactions[-1]["action"] == "confirm"

    def test_confirm_without_broker_order(self, fulfillment, make_order, admin):
        order = make_order(S.SUBMITTED)
        with pytest.raises(ValidationError):
            fulfillment.confirm(order.id, admin)
        assert _events(fulfillment.repository.get(order.id)) == ["confirm_refused"]

    def test_confirm_failure_leaves_status(self, service_with, make_order, admin):
        broker = MagicMock()
        broker.confirm_order.side_effect = BrokerError(
            "Failed to confirm order (400): Artwork missing", status_code=400,
            interactions=[BrokerInteraction(action="confirm", method="POST", endpoint="/x", http_status=400,
                                            error_message="Artwork missing")],
        )
        order = make_order(S.SUBMITTED, mixam_order_id="mx-1")
        service = service_with(broker)

        with pytest.raises(BrokerError):
            service.confirm(order.id, admin)

        stored = service.repository.get(order.id)
        assert stored.status == S.SUBMITTED
        assert stored.version == order.version
        assert _events(stored) == ["mixam_confirm_failed"]
        assert stored.mixam_interactions[0]["httpStatus"] == 400

    def test_mark_confirmed(self, fulfillment, make_order, admin):
        order = make_order(S.ON_HOLD, mixam_order_id="mx-1")
        confirmed = fulfillment.mark_confirmed(order.id, admin)

        assert confirmed.status == S.CONFIRMED
        assert confirmed.raw["confirmedManually"] is True
        assert confirmed.mixam_interactions == []


class TestCancel:
    def test_cancel_before_submission(self, fulfillment, make_order, admin, events):
        order = make_order(S.APPROVED)
        cancelled = fulfillment.cancel(order.id, admin, "Duplicate order")

        assert cancelled.status == S.CANCELLED
        assert cancelled.raw["cancellationReason"] == "Duplicate order"
        assert cancelled.fulfillment_notes == "Cancelled: Duplicate order"
        assert cancelled.mixam_interactions == []
        assert events[-1].kind == "order_cancelled"

    def test_cancel_submitted_cancels_at_broker(self, fulfillment, submitted_order, admin, broker):
        cancelled = fulfillment.cancel(submitted_order.id, admin)

        assert cancelled.status == S.CANCELLED
        assert cancelled.mixam_status == "CANCELED"
        assert cancelled.mixam_interactions[-1]["action"] == "cancel"

    def test_broker_refuses_in_production(self, fulfillment, submitted_order, admin, broker):
        broker.set_status(submitted_order.mixam_order_id, "INPRODUCTION")

        with pytest.raises(ConflictError) as excinfo:
            fulfillment.cancel(submitted_order.id, admin, "Too late")

        assert excinfo.value.http_status == 409
        stored = fulfillment.repository.get(submitted_order.id)
        assert stored.status == S.SUBMITTED
        assert stored.version == submitted_order.version
        failed = stored.mixam_interactions[-1]
        assert failed["action"] == "cancel"
        assert failed["httpStatus"] == 409
        assert _events(stored)[-1] == "cancel_refused"

    def test_other_broker_errors_still_cancel_locally(self, service_with, make_order, admin):
        broker = MagicMock()
        broker.cancel_order.side_effect = BrokerError("Order not found: mx-1", status_code=404)
        order = make_order(S.SUBMITTED, mixam_order_id="mx-1")

        cancelled = service_with(broker).cancel(order.id, admin)

        assert cancelled.status == S.CANCELLED
        assert "mixam_cancel_failed" in _events(cancelled)
        assert cancelled.mixam_status is None

    @pytest.mark.parametrize("status", [S.IN_PRODUCTION, S.SHIPPED, S.DELIVERED])
    def test_production_cannot_be_cancelled(self, fulfillment, make_order, admin, status):
        order = make_order(status)

        with pytest.raises(InvalidTransitionError) as excinfo:
            fulfillment.cancel(order.id, admin)
        assert excinfo.value.message == "Orders in production or later cannot be cancelled."

    def test_cancel_twice(self, fulfillment, make_order, admin):
        order = make_order(S.APPROVED)
        fulfillment.cancel(order.id, admin)
        with pytest.raises(InvalidTransitionError):
            fulfillment.cancel(order.id, admin)


class TestRecovery:
    @pytest.mark.parametrize("status", [S.VALIDATING, S.SUBMITTING, S.VALIDATION_FAILED])
    def test_reset(self, fulfillment, make_order, admin, status):
        order = make_order(status)
        reset = fulfillment.reset(order.id, admin)

        assert reset.status == S.APPROVED
        assert f"was {status.value}" in reset.status_history[-1].note

    def test_reset_refused_for_submitted(self, fulfillment, make_order, admin):
        with pytest.raises(InvalidTransitionError):
            fulfillment.reset(make_order(S.SUBMITTED).id, admin)

    def test_revalidate_fails_then_passes_with_corrections(self, fulfillment, make_order, admin):
        order = make_order(S.AWAITING_APPROVAL, interior_pages=20)

        failed = fulfillment.revalidate(order.id, admin)
        assert failed.status == S.VALIDATION_FAILED
        assert not failed.validation_result.valid
        assert [h.status for h in failed.status_history][-2:] == ["validating", "validation_failed"]

        fixed = fulfillment.revalidate(order.id, admin, {
            "printableFiles": {"interiorPdfUrl": "https://files.example.com/interior-v2.pdf"},
            "printableMetadata": {"interiorPageCount": 28},
        })
        assert fixed.status == S.READY_TO_SUBMIT
        assert fixed.validation_result.valid
        assert fixed.printable_metadata.interior_page_count == 28
        assert fixed.printable_files.interior_pdf_url.endswith("interior-v2.pdf")
        assert fixed.printable_files.cover_pdf_url == order.printable_files.cover_pdf_url

    def test_non_numeric_page_count_correction(self, fulfillment, make_order, admin):
        order = make_order(S.VALIDATION_FAILED, interior_pages=20)

        with pytest.raises(ValidationError) as excinfo:
            fulfillment.revalidate(order.id, admin, {"printableMetadata": {"interiorPageCount": "thirty-two"}})

        assert excinfo.value.message == "interiorPageCount must be a whole number"
        stored = fulfillment.repository.get(order.id)
        assert stored.status == S.VALIDATION_FAILED
        assert stored.printable_metadata.interior_page_count == 20
        assert _events(stored)[-1] == "revalidate_refused"

    def test_fractional_page_count_correction(self, fulfillment, make_order, admin):
        order = make_order(S.VALIDATION_FAILED, interior_pages=20)

        with pytest.raises(ValidationError):
            fulfillment.revalidate(order.id, admin, {"printableMetadata": {"interiorPageCount": 31.5}})
        assert fulfillment.repository.get(order.id).status == S.VALIDATION_FAILED

    def test_revalidated_order_can_be_approved(self, fulfillment, make_order, admin):
        order = make_order(S.VALIDATION_FAILED,
                           validation_result=ValidationResult(valid=False, errors=["old"]))
        fulfillment.revalidate(order.id, admin)

        assert fulfillment.approve(order.id, admin).status == S.APPROVED
