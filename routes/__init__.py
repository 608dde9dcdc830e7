"""
Flask route blueprints for the print fulfillment service.

This module contains all route handlers organized by caller:
- parent_orders: Product list, order placement, payment, order lookup
- admin_orders: Approval queue and fulfillment actions
- webhooks: Mixam status callbacks
- api: Health check

Each blueprint is registered with the Flask app in create_app().
"""

from .parent_orders import parent_orders_bp
from .admin_orders import admin_orders_bp
from .webhooks import webhooks_bp
from .api import api_bp

__all__ = [
    "parent_orders_bp",
    "admin_orders_bp",
    "webhooks_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(parent_orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(api_bp)
