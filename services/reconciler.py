"""
Broker status reconciliation.

Two ways broker-side progress reaches an order:

    refresh(order_id)            admin asks for the current broker status
    handle_webhook(body, sig)    broker pushes a status change

Both end in the same apply step:

    1. Map the broker status through models.status.BROKER_STATUS_MAP
       (unknown statuses raise UnknownBrokerStatusError, logged on the order)
    2. Always record mixamStatus, mixamStatusCheckedAt and a
       ``mixam_status_refreshed`` process log entry
    3. Change fulfillmentStatus (with one history entry) only when the
       mapped status differs and the edge is legal. A broker status that
       would move the order backwards is logged and ignored.

Refreshing twice with the same broker status therefore adds process log
entries but never a second history entry.

WEBHOOK PAYLOAD:
    {orderId, status, statusReason?, metadata: {externalOrderId},
     hasErrors, artworkComplete, items: [{itemId, hasErrors, errors: [...]}],
     shipments?: [{trackingUrl, consignmentNumber, courier, parcelNumbers, date}]}

    The webhook status is only a hint: the broker is asked for the
    authoritative status, falling back to the payload when that call fails.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.auth import Principal
from core.exceptions import (
    AuthenticationError,
    BrokerError,
    NotFoundError,
    UnknownBrokerStatusError,
    ValidationError,
)
from core.mixam_client import PrintBrokerClient, summarize_payload
from models.broker import BrokerInteraction, OrderStatusResult
from models.order import PrintOrder, ProcessLogEntry, StatusHistoryEntry, utc_now_iso
from models.status import FulfillmentStatus, can_transition, map_broker_status
from services.interaction_logger import InteractionLogger
from services.notifications import NotificationDispatcher, OrderEvent, ORDER_STATUS_CHANGED
from services.order_store import OrderRepository
from logging_config import get_logger, get_order_logger


# Module logger
logger = get_logger(__name__)


WEBHOOK_PATH = "/webhooks/mixam"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of applying a broker status to an order."""

    order: PrintOrder
    previous_status: FulfillmentStatus
    mixam_status: str
    changed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order.id,
            "previousStatus": self.previous_status.value,
            "status": self.order.status.value,
            "mixamStatus": self.mixam_status,
            "changed": self.changed,
        }


def sign_webhook_body(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a webhook body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def collect_artwork_errors(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten per-item artwork errors from a webhook payload."""
    errors = []
    for item in payload.get("items") or []:
        if not item.get("hasErrors"):
            continue
        for error in item.get("errors") or []:
            errors.append({
                "itemId": item.get("itemId"),
                "filename": error.get("filename"),
                "page": error.get("page"),
                "message": error.get("message"),
            })
    return errors


class StatusReconciler:
    """Folds broker-reported status into local orders."""

    def __init__(
        self,
        repository: OrderRepository,
        broker: PrintBrokerClient,
        interaction_logger: InteractionLogger,
        notifier: NotificationDispatcher,
        webhook_secret: str = "",
    ):
        self.repository = repository
        self.broker = broker
        self.interaction_logger = interaction_logger
        self.notifier = notifier
        self.webhook_secret = webhook_secret

    # =========================================================================
    # APPLY
    # =========================================================================

    def _apply(
        self,
        order: PrintOrder,
        mixam_status: str,
        target: FulfillmentStatus,
        principal: Optional[Principal],
        patch: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> ReconcileOutcome:
        source = principal.source if principal else "mixam"
        user_id = principal.uid if principal else None
        previous = order.status

        full_patch = dict(patch or {})
        full_patch["mixamStatus"] = mixam_status
        full_patch["mixamStatusCheckedAt"] = utc_now_iso()

        history = None
        log = []
        changed = False
        if target != previous:
            if can_transition(previous, target):
                changed = True
                full_patch["fulfillmentStatus"] = target.value
                history = StatusHistoryEntry(
                    status=target.value,
                    note=note or f"Mixam status updated: {previous.value} → {target.value}",
                    source="mixam",
                    user_id=user_id,
                    mixam_status=mixam_status,
                )
            else:
                get_order_logger(order.id).warning(
                    f"Ignoring broker status {mixam_status}: {previous.value} -> {target.value} is not allowed"
                )
                log.append(ProcessLogEntry(
                    event="mixam_status_ignored",
                    message=f"Broker status {mixam_status} would move order from {previous.value} "
                            f"to {target.value}; ignored",
                    data={"currentStatus": previous.value, "mappedStatus": target.value},
                    source=source,
                    user_id=user_id,
                ))

        log.append(ProcessLogEntry(
            event="mixam_status_refreshed",
            message=f"Mixam status {mixam_status}",
            data={
                "previousStatus": previous.value,
                "newStatus": target.value if changed else previous.value,
                "mixamStatus": mixam_status,
                "changed": changed,
            },
            source=source,
            user_id=user_id,
        ))

        updated = self.repository.update(
            order.id, full_patch, expected_version=order.version, history=history, log=log,
        )
        if changed:
            get_order_logger(order.id).info(f"Broker status {mixam_status}: {previous.value} -> {target.value}")
            self.notifier.emit(OrderEvent(
                kind=ORDER_STATUS_CHANGED,
                order_id=order.id,
                status=target.value,
                data={"previous_status": previous.value, "mixam_status": mixam_status},
            ))
        return ReconcileOutcome(order=updated, previous_status=previous, mixam_status=mixam_status, changed=changed)

    def _unknown_status(self, order: PrintOrder, error: UnknownBrokerStatusError, principal: Optional[Principal]) -> None:
        self.repository.append_log(order.id, ProcessLogEntry(
            event="mixam_status_unknown",
            message=error.message,
            data={"mixamStatus": error.broker_status},
            source=principal.source if principal else "mixam",
            user_id=principal.uid if principal else None,
        ))
        logger.error(f"Order {order.id}: {error.message}")

    @staticmethod
    def _result_patch(order: PrintOrder, result: OrderStatusResult) -> Dict[str, Any]:
        patch: Dict[str, Any] = {}
        if result.job_number and not order.mixam_job_number:
            patch["mixamJobNumber"] = result.job_number
        if result.status_reason:
            patch["mixamStatusReason"] = result.status_reason
        if result.tracking_url:
            patch["mixamTrackingUrl"] = result.tracking_url
        if result.estimated_delivery:
            patch["mixamEstimatedDelivery"] = result.estimated_delivery
        if result.artwork_errors:
            patch["mixamArtworkErrors"] = list(result.artwork_errors)
        return patch

    # =========================================================================
    # REFRESH
    # =========================================================================

    def _lookup(self, order: PrintOrder) -> OrderStatusResult:
        """Query by broker order ID, falling back to the job number."""
        lookup_ids = [i for i in (order.mixam_order_id, order.mixam_job_number) if i]
        last_error: Optional[BrokerError] = None
        for lookup_id in dict.fromkeys(lookup_ids):
            try:
                result = self.broker.get_order_status(lookup_id)
            except BrokerError as e:
                self.interaction_logger.record(order.id, e.interactions, order.mixam_order_id)
                last_error = e
                logger.info(f"Status lookup by {lookup_id} failed for order {order.id}: {e.message}")
                continue
            self.interaction_logger.record(order.id, result.interactions, order.mixam_order_id)
            return result
        raise last_error

    def refresh(self, order_id: str, principal: Optional[Principal] = None) -> ReconcileOutcome:
        """
        Pull the broker's current status into the order.

        Raises:
            ValidationError: Order has never been submitted
            BrokerError: Lookup failed (by ID and by job number)
            UnknownBrokerStatusError: Broker reported an unmapped status
        """
        order = self.repository.get(order_id)
        if not order.mixam_order_id and not order.mixam_job_number:
            error = ValidationError("Order has not been submitted to Mixam (no Mixam order ID or job number)")
            self.repository.append_log(order.id, ProcessLogEntry(
                event="refresh_status_refused",
                message=error.message,
                source=principal.source if principal else "system",
                user_id=principal.uid if principal else None,
            ))
            raise error

        try:
            result = self._lookup(order)
        except BrokerError as e:
            self.repository.append_log(order.id, ProcessLogEntry(
                event="mixam_status_refresh_failed",
                message=e.message,
                source=principal.source if principal else "system",
                user_id=principal.uid if principal else None,
            ))
            raise

        try:
            target = map_broker_status(result.status)
        except UnknownBrokerStatusError as e:
            self._unknown_status(order, e, principal)
            raise

        # The lookup may have taken a while; apply against the current version.
        order = self.repository.get(order_id)
        return self._apply(order, result.status, target, principal, patch=self._result_patch(order, result))

    # =========================================================================
    # WEBHOOK
    # =========================================================================

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        Check the X-Mixam-Signature header when a webhook secret is configured.

        Raises:
            AuthenticationError: Missing or wrong signature
        """
        if not self.webhook_secret:
            return
        expected = sign_webhook_body(body, self.webhook_secret)
        if not signature or not hmac.compare_digest(signature.strip().lower(), expected):
            logger.error("Rejected Mixam webhook with invalid signature")
            raise AuthenticationError("Invalid signature")

    def handle_webhook(self, body: bytes, signature: Optional[str] = None) -> Dict[str, Any]:
        """
        Process a broker status callback.

        Returns:
            Response body. Anything short of a bad signature is acknowledged
            so the broker does not retry.

        Raises:
            AuthenticationError: Signature check failed
        """
        self.verify_signature(body, signature)

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            logger.error("Mixam webhook body is not valid JSON")
            return {"received": True, "error": "Invalid JSON"}
        if not isinstance(payload, dict):
            return {"received": True, "error": "Invalid payload"}

        webhook_order_id = payload.get("orderId")
        webhook_status = payload.get("status") or ""
        logger.info(f"Mixam webhook: order {webhook_order_id} status {webhook_status}")

        external_id = (payload.get("metadata") or {}).get("externalOrderId")
        if not external_id:
            logger.error("Mixam webhook without metadata.externalOrderId")
            return {"received": True, "error": "Missing externalOrderId"}

        try:
            order = self.repository.get(external_id)
        except NotFoundError:
            logger.error(f"Mixam webhook for unknown order {external_id}")
            return {"received": True, "warning": "Order not found"}

        if order.mixam_order_id and webhook_order_id and str(webhook_order_id) != order.mixam_order_id:
            message = (
                f"Webhook broker order {webhook_order_id} does not match "
                f"order's broker order {order.mixam_order_id}"
            )
            logger.warning(f"Order {order.id}: {message}")
            self.repository.append_log(order.id, ProcessLogEntry(
                event="mixam_webhook_rejected",
                message=message,
                data={"webhookOrderId": webhook_order_id},
                source="mixam",
            ))
            return {"received": True, "warning": "Order ID mismatch"}

        self.interaction_logger.record(order.id, [BrokerInteraction(
            action=f"webhook:status.{webhook_status}",
            method="POST",
            endpoint=WEBHOOK_PATH,
            direction="inbound",
            payload_summary=summarize_payload(payload),
            http_status=200,
        )], order.mixam_order_id or webhook_order_id)

        effective_status = webhook_status
        patch: Dict[str, Any] = {
            "mixamHasErrors": bool(payload.get("hasErrors")),
            "mixamArtworkComplete": payload.get("artworkComplete"),
            "lastWebhookAt": utc_now_iso(),
        }
        if order.mixam_order_id:
            try:
                result = self.broker.get_order_status(order.mixam_order_id)
                self.interaction_logger.record(order.id, result.interactions, order.mixam_order_id)
                effective_status = result.status or webhook_status
                patch.update(self._result_patch(order, result))
            except BrokerError as e:
                self.interaction_logger.record(order.id, e.interactions, order.mixam_order_id)
                logger.warning(f"Status refresh after webhook failed for order {order.id}: {e.message}")

        if payload.get("statusReason"):
            patch["mixamStatusReason"] = payload["statusReason"]
            patch["fulfillmentNotes"] = payload["statusReason"]
        patch.update(self._shipment_patch(payload))

        try:
            target = map_broker_status(effective_status)
        except UnknownBrokerStatusError as e:
            self._unknown_status(order, e, None)
            return {"received": True, "orderId": order.id, "warning": e.message}

        artwork_errors = collect_artwork_errors(payload)
        if payload.get("hasErrors"):
            target = FulfillmentStatus.ON_HOLD
        if artwork_errors:
            patch["mixamArtworkErrors"] = artwork_errors
            patch["fulfillmentNotes"] = "Artwork errors: " + "; ".join(str(e["message"]) for e in artwork_errors)

        order = self.repository.get(order.id)
        outcome = self._apply(
            order,
            effective_status,
            target,
            None,
            patch=patch,
            note=payload.get("statusReason") or None,
        )
        return {"received": True, "orderId": order.id, "status": outcome.order.status.value}

    @staticmethod
    def _shipment_patch(payload: Dict[str, Any]) -> Dict[str, Any]:
        shipments = payload.get("shipments") or []
        if not shipments:
            return {}
        latest = shipments[-1]
        patch: Dict[str, Any] = {"mixamShipments": shipments}
        if latest.get("trackingUrl"):
            patch["mixamTrackingUrl"] = latest["trackingUrl"]
        if latest.get("consignmentNumber"):
            patch["mixamTrackingNumber"] = latest["consignmentNumber"]
        if latest.get("courier"):
            patch["mixamCarrier"] = latest["courier"]
        if latest.get("parcelNumbers"):
            patch["mixamParcelNumbers"] = latest["parcelNumbers"]
        if (latest.get("date") or {}).get("date"):
            patch["mixamShipmentDate"] = latest["date"]["date"]
        return patch
