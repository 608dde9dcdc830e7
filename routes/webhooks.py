"""
Mixam webhook route.

Handles:
- POST /webhooks/mixam - Status callback from Mixam
- GET  /webhooks/mixam - Reachability check

The callback always answers 200 unless the signature is wrong, so Mixam
does not retry deliveries that failed on our side.
"""

from flask import Blueprint, jsonify, request

from core.exceptions import AuthenticationError
from models.order import utc_now_iso
from routes.helpers import service
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/webhooks/mixam", methods=["POST"])
def mixam_webhook():
    reconciler = service("RECONCILER")
    body = request.get_data()
    try:
        result = reconciler.handle_webhook(body, request.headers.get("X-Mixam-Signature"))
    except AuthenticationError:
        raise
    except Exception as e:
        logger.error(f"Error processing Mixam webhook: {e}", exc_info=True)
        result = {"received": True, "error": "Internal processing error"}
    return jsonify(result), 200


@webhooks_bp.route("/webhooks/mixam", methods=["GET"])
def mixam_webhook_ready():
    return jsonify({
        "service": "Mixam Webhook Handler",
        "status": "ready",
        "timestamp": utc_now_iso(),
        "endpoint": "/webhooks/mixam",
    })
