"""
Admin order routes.

Handles:
- GET  /orders?filter=pending|approved|submitted|all - Admin order queue
- POST /orders/<id>/approve         - Approve for printing
- POST /orders/<id>/reject          - Reject with a reason
- POST /orders/<id>/revalidate      - Re-run validation (optional corrections)
- POST /orders/<id>/submit          - Submit to Mixam
- POST /orders/<id>/confirm         - Confirm with Mixam
- POST /orders/<id>/mark-confirmed  - Record a confirmation made on Mixam's site
- POST /orders/<id>/cancel          - Cancel (at Mixam first, if submitted)
- POST /orders/<id>/reset           - Recover an order stuck mid-submission
- POST /orders/<id>/refresh-status  - Pull current status from Mixam

Every handler authenticates first; the services check admin rights before
reading the order. Errors are rendered by the FulfillmentError handler.
"""

from flask import Blueprint, request

from routes.helpers import (
    MAX_REASON_LENGTH,
    current_principal,
    json_body,
    ok,
    sanitize_mapping,
    sanitize_text,
    service,
)
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

admin_orders_bp = Blueprint("admin_orders", __name__)


def _fulfillment():
    return service("FULFILLMENT_SERVICE")


@admin_orders_bp.route("/orders", methods=["GET"])
def list_orders():
    principal = current_principal()
    filter_name = sanitize_text(request.args.get("filter", "all"), max_length=20)
    orders = service("ORDER_SERVICE").list_orders(principal, filter_name)
    return ok(filter=filter_name, count=len(orders), orders=[o.to_dict() for o in orders])


@admin_orders_bp.route("/orders/<order_id>/approve", methods=["POST"])
def approve(order_id: str):
    order = _fulfillment().approve(order_id, current_principal())
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/reject", methods=["POST"])
def reject(order_id: str):
    principal = current_principal()
    reason = sanitize_text(json_body().get("reason"), max_length=MAX_REASON_LENGTH)
    order = _fulfillment().reject(order_id, principal, reason)
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/revalidate", methods=["POST"])
def revalidate(order_id: str):
    """
    Re-run validation.

    Optional body: {"printableFiles": {...}, "printableMetadata": {...}}
    with corrected values (e.g. a re-rendered interior PDF).
    """
    principal = current_principal()
    body = sanitize_mapping(json_body())
    corrections = {
        key: body[key]
        for key in ("printableFiles", "printableMetadata")
        if isinstance(body.get(key), dict)
    }
    order = _fulfillment().revalidate(order_id, principal, corrections)
    return ok(order=order.to_dict(), validationResult=order.validation_result.to_dict())


@admin_orders_bp.route("/orders/<order_id>/submit", methods=["POST"])
def submit(order_id: str):
    order = _fulfillment().submit(order_id, current_principal())
    return ok(
        order=order.to_dict(),
        mixamOrderId=order.mixam_order_id,
        mixamJobNumber=order.mixam_job_number,
    )


@admin_orders_bp.route("/orders/<order_id>/confirm", methods=["POST"])
def confirm(order_id: str):
    order = _fulfillment().confirm(order_id, current_principal())
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/mark-confirmed", methods=["POST"])
def mark_confirmed(order_id: str):
    order = _fulfillment().mark_confirmed(order_id, current_principal())
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/cancel", methods=["POST"])
def cancel(order_id: str):
    principal = current_principal()
    reason = sanitize_text(json_body().get("reason"), max_length=MAX_REASON_LENGTH)
    order = _fulfillment().cancel(order_id, principal, reason or None)
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/reset", methods=["POST"])
def reset(order_id: str):
    order = _fulfillment().reset(order_id, current_principal())
    return ok(order=order.to_dict())


@admin_orders_bp.route("/orders/<order_id>/refresh-status", methods=["POST"])
def refresh_status(order_id: str):
    outcome = _fulfillment().refresh_status(order_id, current_principal())
    return ok(order=outcome.order.to_dict(), **outcome.to_dict())
