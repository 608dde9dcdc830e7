"""
Fulfillment state machine.

Admin actions on a print order, each enforcing its preconditions against
the transition graph in models.status before anything is written:

    approve         awaiting_approval | ready_to_submit  -> approved
    reject          awaiting_approval | ready_to_submit  -> cancelled
    revalidate      draft | validation_failed | ready_to_submit | awaiting_approval
                        -> validating -> ready_to_submit | validation_failed
    submit          approved -> validating -> submitted
                                            -> approved (broker failure, rolled back)
    confirm         submitted | on_hold -> confirmed      (broker confirm)
    mark_confirmed  submitted | on_hold -> confirmed      (confirmed on broker website)
    cancel          anything up to confirmed -> cancelled (broker cancel first)
    reset           validating | submitting | validation_failed -> approved
    refresh_status  delegated to the StatusReconciler

AUDIT RULE:
    Every refusal on an existing order appends a ``*_refused`` process log
    entry before the error propagates. Every broker call's trace is written
    to the interaction log, whether the call succeeded or not. Permission
    failures are raised before the order is read, so they leave no trace.

SUBMIT ATTEMPTS:
    ``submitAttempts`` is incremented when a submission starts. The process
    log carries ``mixam_submit_attempt`` / ``mixam_submitted`` /
    ``mixam_submit_failed`` entries tagged with the attempt number, so a
    retried order shows which attempt produced which broker call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from core.auth import Principal, require_admin
from core.exceptions import (
    BrokerError,
    ConflictError,
    FulfillmentError,
    InvalidTransitionError,
    ValidationError,
)
from core.mixam_client import PrintBrokerClient
from models.order import (
    PrintOrder,
    PrintableFiles,
    PrintableMetadata,
    ProcessLogEntry,
    StatusHistoryEntry,
    utc_now_iso,
)
from models.status import (
    APPROVABLE_STATUSES,
    CANCELLABLE_STATUSES,
    CONFIRMABLE_STATUSES,
    RESETTABLE_STATUSES,
    REVALIDATABLE_STATUSES,
    FulfillmentStatus,
    can_transition,
)
from modules.mxjdf_builder import build_mxjdf_document, validate_mxjdf_document
from modules.validation import PrintValidator, parse_whole_number
from services.interaction_logger import InteractionLogger
from services.notifications import (
    NotificationDispatcher,
    OrderEvent,
    ORDER_APPROVED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_REJECTED,
    ORDER_SENT_TO_PRINTER,
)
from services.order_store import OrderRepository
from services.reconciler import ReconcileOutcome, StatusReconciler
from logging_config import get_logger, get_order_logger


# Module logger
logger = get_logger(__name__)


PAGE_COUNT_FIELDS = ("interiorPageCount", "paddingPageCount", "coverPageCount")


@dataclass(frozen=True)
class SubmissionSettings:
    """Account-level settings copied into every broker job document."""

    payment_method: str = "ACCOUNT"
    status_callback_url: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None


class FulfillmentService:
    """
    Admin-driven transitions of print orders.

    Collaborators are injected so tests can swap the broker for a mock and
    the store for an in-memory repository.
    """

    def __init__(
        self,
        repository: OrderRepository,
        broker: PrintBrokerClient,
        interaction_logger: InteractionLogger,
        notifier: NotificationDispatcher,
        reconciler: StatusReconciler,
        validator: Optional[PrintValidator] = None,
        settings: Optional[SubmissionSettings] = None,
    ):
        self.repository = repository
        self.broker = broker
        self.interaction_logger = interaction_logger
        self.notifier = notifier
        self.reconciler = reconciler
        self.validator = validator or PrintValidator()
        self.settings = settings or SubmissionSettings()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _transition(
        self,
        order: PrintOrder,
        target: FulfillmentStatus,
        note: str,
        principal: Principal,
        patch: Optional[Dict[str, Any]] = None,
        log: Sequence[ProcessLogEntry] = (),
    ) -> PrintOrder:
        """Write one legal status change with its history entry."""
        if not can_transition(order.status, target):
            raise InvalidTransitionError(
                f"Cannot move order from {order.status.value} to {target.value}",
                current_status=order.status.value,
                target_status=target.value,
            )
        full_patch = dict(patch or {})
        full_patch["fulfillmentStatus"] = target.value
        history = StatusHistoryEntry(
            status=target.value,
            note=note,
            source=principal.source,
            user_id=principal.uid,
        )
        updated = self.repository.update(
            order.id, full_patch, expected_version=order.version, history=history, log=log,
        )
        get_order_logger(order.id).info(f"{order.status.value} -> {target.value}: {note}")
        return updated

    def _log_entry(self, event: str, message: str, principal: Principal, **data: Any) -> ProcessLogEntry:
        return ProcessLogEntry(
            event=event,
            message=message,
            data=data,
            source=principal.source,
            user_id=principal.uid,
        )

    def _refused(self, order: PrintOrder, action: str, principal: Principal, error: FulfillmentError) -> FulfillmentError:
        """Record a refused action on the order and hand back the error to raise."""
        self.repository.append_log(order.id, self._log_entry(
            f"{action}_refused",
            error.message,
            principal,
            status=order.status.value,
        ))
        get_order_logger(order.id).warning(f"{action} refused in status {order.status.value}: {error.message}")
        return error

    def _notify(self, kind: str, order: PrintOrder, **data: Any) -> None:
        self.notifier.emit(OrderEvent(kind=kind, order_id=order.id, status=order.status.value, data=data))

    def _wrong_status(self, order: PrintOrder, action: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"Cannot {action} order in status {order.status.value}",
            current_status=order.status.value,
        )

    # =========================================================================
    # APPROVAL
    # =========================================================================

    def approve(self, order_id: str, principal: Principal) -> PrintOrder:
        """
        Approve an order for printing.

        Raises:
            PermissionDeniedError: Caller is not an admin
            NotFoundError: Unknown order
            InvalidTransitionError: Order is not awaiting approval
            ValidationError: Order failed validation
        """
        require_admin(principal)
        order = self.repository.get(order_id)

        if order.status not in APPROVABLE_STATUSES:
            raise self._refused(order, "approve", principal, self._wrong_status(order, "approve"))
        if order.validation_failed:
            raise self._refused(order, "approve", principal, ValidationError(
                "Order failed validation and cannot be approved",
                errors=order.validation_result.errors,
            ))

        updated = self._transition(
            order,
            FulfillmentStatus.APPROVED,
            f"Approved by admin {principal.display_name}",
            principal,
            patch={
                "approvalStatus": "approved",
                "approvedAt": utc_now_iso(),
                "approvedBy": principal.uid,
            },
            log=[self._log_entry("order_approved", "Order approved", principal)],
        )
        self._notify(ORDER_APPROVED, updated, approved_by=principal.uid)
        return updated

    def reject(self, order_id: str, principal: Principal, reason: str) -> PrintOrder:
        """
        Reject an order awaiting approval (it becomes cancelled).

        Raises:
            ValidationError: No reason given
            InvalidTransitionError: Order is not awaiting approval
        """
        require_admin(principal)
        order = self.repository.get(order_id)

        if not reason:
            raise self._refused(order, "reject", principal, ValidationError("A rejection reason is required"))
        if order.status not in APPROVABLE_STATUSES:
            raise self._refused(order, "reject", principal, self._wrong_status(order, "reject"))

        now = utc_now_iso()
        updated = self._transition(
            order,
            FulfillmentStatus.CANCELLED,
            f"Rejected by admin {principal.display_name}: {reason}",
            principal,
            patch={
                "approvalStatus": "rejected",
                "rejectedReason": reason,
                "rejectedAt": now,
                "rejectedBy": principal.uid,
                "cancelledAt": now,
                "cancelledBy": principal.uid,
                "cancellationReason": reason,
            },
            log=[self._log_entry("order_rejected", reason, principal)],
        )
        self._notify(ORDER_REJECTED, updated, reason=reason)
        return updated

    @staticmethod
    def _correction_patch(order: PrintOrder, corrections: Dict[str, Any]) -> Dict[str, Any]:
        """Merge admin corrections over the stored files and page counts."""
        patch: Dict[str, Any] = {}
        files = corrections.get("printableFiles")
        if files:
            if not isinstance(files, dict):
                raise ValidationError("printableFiles must be an object")
            merged = {**order.printable_files.to_dict(), **files}
            patch["printableFiles"] = PrintableFiles.from_dict(merged).to_dict()
        metadata = corrections.get("printableMetadata")
        if metadata:
            if not isinstance(metadata, dict):
                raise ValidationError("printableMetadata must be an object")
            merged = {**order.printable_metadata.to_dict(), **metadata}
            for key in PAGE_COUNT_FIELDS:
                merged[key] = parse_whole_number(merged.get(key) or 0, key)
            patch["printableMetadata"] = PrintableMetadata.from_dict(merged).to_dict()
        return patch

    def revalidate(
        self,
        order_id: str,
        principal: Principal,
        corrections: Optional[Dict[str, Any]] = None,
    ) -> PrintOrder:
        """
        Re-run the full validation gate, optionally after correcting files.

        Args:
            corrections: Optional {"printableFiles": {...}, "printableMetadata": {...}}
                partial dicts merged over the stored values

        Returns:
            Order in ready_to_submit (passed) or validation_failed (failed)

        Raises:
            ValidationError: A correction is malformed (e.g. a non-numeric page count)
        """
        require_admin(principal)
        order = self.repository.get(order_id)
        if order.status not in REVALIDATABLE_STATUSES:
            raise self._refused(order, "revalidate", principal, self._wrong_status(order, "revalidate"))

        try:
            patch = self._correction_patch(order, corrections or {})
        except ValidationError as e:
            raise self._refused(order, "revalidate", principal, e)

        in_flight = self._transition(
            order,
            FulfillmentStatus.VALIDATING,
            f"Revalidation started by admin {principal.display_name}",
            principal,
            patch=patch,
            log=[self._log_entry(
                "order_revalidation_started",
                "Revalidating order" + (" with corrections" if patch else ""),
                principal,
                corrected=sorted(patch),
            )],
        )

        result = self.validator.validate_order(in_flight)
        if result.valid:
            target, note = FulfillmentStatus.READY_TO_SUBMIT, "Validation passed"
        else:
            target, note = FulfillmentStatus.VALIDATION_FAILED, "Validation failed: " + "; ".join(result.errors)

        return self._transition(
            in_flight,
            target,
            note,
            principal,
            patch={"validationResult": result.to_dict()},
            log=[self._log_entry(
                "order_revalidated",
                note,
                principal,
                valid=result.valid,
                errors=result.errors,
                warnings=result.warnings,
            )],
        )

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, order_id: str, principal: Principal) -> PrintOrder:
        """
        Submit an approved order to the broker.

        Flow:
            1. Check status, validation result, PDFs and page constraints
            2. approved -> validating, submitAttempts += 1
            3. Build the job document and submit it
            4. Success: validating -> submitted, broker IDs stored
               Failure: validating -> approved, failure noted, error re-raised

        Raises:
            InvalidTransitionError: Order is not approved
            ValidationError: Files or page counts fail the print constraints
            BrokerError: Broker refused or was unreachable (order rolled back)
        """
        require_admin(principal)
        order = self.repository.get(order_id)

        if order.status != FulfillmentStatus.APPROVED:
            raise self._refused(order, "submit", principal, InvalidTransitionError(
                f"Order must be approved before submitting (current status: {order.status.value})",
                current_status=order.status.value,
            ))
        if order.validation_failed:
            raise self._refused(order, "submit", principal, ValidationError(
                "Order failed validation and cannot be submitted",
                errors=order.validation_result.errors,
            ))
        gate = self.validator.validate_for_submission(order)
        if not gate.valid:
            raise self._refused(order, "submit", principal, ValidationError.from_errors(gate.errors))

        attempt = order.submit_attempts + 1
        in_flight = self._transition(
            order,
            FulfillmentStatus.VALIDATING,
            f"Submitting to Mixam (attempt {attempt})",
            principal,
            patch={"submitAttempts": attempt},
            log=[self._log_entry("mixam_submit_attempt", f"Submission attempt {attempt}", principal, attempt=attempt)],
        )

        try:
            document = build_mxjdf_document(
                in_flight,
                in_flight.printable_metadata,
                in_flight.printable_files.cover_pdf_url,
                in_flight.printable_files.interior_pdf_url,
                billing_address=self.settings.billing_address,
                payment_method=self.settings.payment_method,
                status_callback_url=self.settings.status_callback_url,
            )
            problems = validate_mxjdf_document(document)
            if problems:
                raise ValidationError.from_errors(problems)

            result = self.broker.submit_order(document)
            self.interaction_logger.record(order.id, result.interactions, result.order_id)

            updated = self._transition(
                in_flight,
                FulfillmentStatus.SUBMITTED,
                f"Submitted to Mixam. Job Number: {result.job_number or result.order_id}",
                principal,
                patch={
                    "mixamOrderId": result.order_id,
                    "mixamJobNumber": result.job_number,
                    "mixamStatus": result.status,
                    "mixamResponse": result.raw,
                    "submittedToMixamAt": utc_now_iso(),
                    "submittedToMixamBy": principal.uid,
                    "fulfillmentNotes": "",
                },
                log=[self._log_entry(
                    "mixam_submitted",
                    f"Submitted to Mixam on attempt {attempt}",
                    principal,
                    attempt=attempt,
                    mixamOrderId=result.order_id,
                    mixamJobNumber=result.job_number,
                )],
            )
        except Exception as e:
            if isinstance(e, BrokerError):
                self.interaction_logger.record(order.id, e.interactions)
            message = e.message if isinstance(e, FulfillmentError) else str(e)
            self._rollback_submission(order.id, attempt, principal, message)
            raise

        self._notify(ORDER_SENT_TO_PRINTER, updated, mixam_order_id=result.order_id, job_number=result.job_number)
        return updated

    def _rollback_submission(self, order_id: str, attempt: int, principal: Principal, message: str) -> PrintOrder:
        """validating -> approved after a failed submission attempt."""
        current = self.repository.get(order_id)
        logger.error(f"Submission attempt {attempt} for order {order_id} failed: {message}")
        return self._transition(
            current,
            FulfillmentStatus.APPROVED,
            f"Submission to Mixam failed (attempt {attempt}): {message}",
            principal,
            patch={"fulfillmentNotes": f"Submission failed: {message}"},
            log=[self._log_entry(
                "mixam_submit_failed",
                message,
                principal,
                attempt=attempt,
            )],
        )

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    def _check_confirmable(self, order: PrintOrder, action: str, principal: Principal) -> None:
        if order.status not in CONFIRMABLE_STATUSES:
            raise self._refused(order, action, principal, self._wrong_status(order, "confirm"))
        if not order.mixam_order_id:
            raise self._refused(order, action, principal, ValidationError(
                "Order has not been submitted to Mixam (no Mixam order ID)"
            ))

    def confirm(self, order_id: str, principal: Principal) -> PrintOrder:
        """
        Confirm a submitted order with the broker.

        Raises:
            InvalidTransitionError / ValidationError: Not confirmable
            BrokerError: Broker refused (order unchanged)
        """
        require_admin(principal)
        order = self.repository.get(order_id)
        self._check_confirmable(order, "confirm", principal)

        try:
            result = self.broker.confirm_order(order.mixam_order_id)
        except BrokerError as e:
            self.interaction_logger.record(order.id, e.interactions, order.mixam_order_id)
            self.repository.append_log(order.id, self._log_entry(
                "mixam_confirm_failed", e.message, principal, mixamOrderId=order.mixam_order_id,
            ))
            raise

        self.interaction_logger.record(order.id, result.interactions, order.mixam_order_id)
        updated = self._transition(
            order,
            FulfillmentStatus.CONFIRMED,
            f"Confirmed with Mixam by admin {principal.display_name}",
            principal,
            patch={
                "confirmedAt": utc_now_iso(),
                "confirmedBy": principal.uid,
                "mixamStatus": result.status,
            },
            log=[self._log_entry("mixam_confirmed", "Confirmed with Mixam", principal, mixamStatus=result.status)],
        )
        self._notify(ORDER_CONFIRMED, updated)
        return updated

    def mark_confirmed(self, order_id: str, principal: Principal) -> PrintOrder:
        """Record a confirmation the admin made on the broker's website."""
        require_admin(principal)
        order = self.repository.get(order_id)
        self._check_confirmable(order, "mark_confirmed", principal)

        updated = self._transition(
            order,
            FulfillmentStatus.CONFIRMED,
            f"Marked as confirmed by admin {principal.display_name} (confirmed on Mixam website)",
            principal,
            patch={
                "confirmedAt": utc_now_iso(),
                "confirmedBy": principal.uid,
                "confirmedManually": True,
            },
            log=[self._log_entry("order_marked_confirmed", "Confirmation recorded manually", principal)],
        )
        self._notify(ORDER_CONFIRMED, updated, manual=True)
        return updated

    # =========================================================================
    # CANCELLATION / RECOVERY
    # =========================================================================

    def cancel(self, order_id: str, principal: Principal, reason: Optional[str] = None) -> PrintOrder:
        """
        Cancel an order, cancelling at the broker first when it has been submitted.

        A broker refusal because the job is already in production stops the
        cancellation (ConflictError, order unchanged). Any other broker error
        is logged and the local cancellation goes ahead.

        Raises:
            InvalidTransitionError: Order is in production or later
            ConflictError: Broker reports the job is already in production
        """
        require_admin(principal)
        order = self.repository.get(order_id)

        if order.status not in CANCELLABLE_STATUSES:
            if order.status == FulfillmentStatus.CANCELLED:
                error = InvalidTransitionError("Order is already cancelled", current_status=order.status.value)
            else:
                error = InvalidTransitionError(
                    "Orders in production or later cannot be cancelled.",
                    current_status=order.status.value,
                )
            raise self._refused(order, "cancel", principal, error)

        broker_cancelled = False
        log = []
        if order.mixam_order_id:
            try:
                result = self.broker.cancel_order(order.mixam_order_id)
                self.interaction_logger.record(order.id, result.interactions, order.mixam_order_id)
                broker_cancelled = True
            except BrokerError as e:
                self.interaction_logger.record(order.id, e.interactions, order.mixam_order_id)
                if e.is_already_in_production:
                    raise self._refused(order, "cancel", principal, ConflictError(
                        f"Mixam refused the cancellation: {e.message}",
                        {"mixam_order_id": order.mixam_order_id},
                    ))
                logger.warning(f"Mixam cancel failed for order {order.id}, cancelling locally: {e.message}")
                log.append(self._log_entry(
                    "mixam_cancel_failed",
                    f"Mixam cancel failed, cancelled locally: {e.message}",
                    principal,
                    mixamOrderId=order.mixam_order_id,
                ))

        patch: Dict[str, Any] = {
            "cancelledAt": utc_now_iso(),
            "cancelledBy": principal.uid,
        }
        if reason:
            patch["cancellationReason"] = reason
            patch["fulfillmentNotes"] = f"Cancelled: {reason}"
        if broker_cancelled:
            patch["mixamStatus"] = "CANCELED"

        log.append(self._log_entry(
            "order_cancelled",
            reason or "Cancelled",
            principal,
            brokerCancelled=broker_cancelled,
        ))
        updated = self._transition(
            order,
            FulfillmentStatus.CANCELLED,
            reason or f"Cancelled by admin {principal.display_name}",
            principal,
            patch=patch,
            log=log,
        )
        self._notify(ORDER_CANCELLED, updated, reason=reason, broker_cancelled=broker_cancelled)
        return updated

    def reset(self, order_id: str, principal: Principal) -> PrintOrder:
        """Push an order stuck mid-submission (or failed validation) back to approved."""
        require_admin(principal)
        order = self.repository.get(order_id)
        if order.status not in RESETTABLE_STATUSES:
            raise self._refused(order, "reset", principal, self._wrong_status(order, "reset"))

        return self._transition(
            order,
            FulfillmentStatus.APPROVED,
            f"Reset to approved by admin {principal.display_name} (was {order.status.value})",
            principal,
            log=[self._log_entry("order_reset", f"Reset from {order.status.value}", principal,
                                 previousStatus=order.status.value)],
        )

    def refresh_status(self, order_id: str, principal: Principal) -> ReconcileOutcome:
        """Pull the broker's current status into the order."""
        require_admin(principal)
        return self.reconciler.refresh(order_id, principal)
