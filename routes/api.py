"""
Operational routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app, jsonify

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """
    Health check endpoint.

    Reports the environment and whether the broker is mocked. Does not call
    the broker.
    """
    return jsonify({
        "status": "healthy",
        "environment": current_app.config.get("ENVIRONMENT"),
        "mixamMockMode": bool(current_app.config.get("MIXAM_MOCK_MODE")),
        "orderStore": type(current_app.config["ORDER_REPOSITORY"]).__name__,
    })
