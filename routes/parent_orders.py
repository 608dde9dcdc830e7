"""
Parent order routes.

Handles:
- GET  /products         - Active print products
- POST /orders           - Place a print order for a storybook
- GET  /orders/mine      - The caller's orders
- GET  /orders/<id>      - One order (owner or admin)
- POST /orders/<id>/pay  - Record payment (simulated)
"""

from flask import Blueprint

from routes.helpers import current_principal, json_body, ok, sanitize_mapping, service
from services.order_service import parent_view
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

parent_orders_bp = Blueprint("parent_orders", __name__)

ORDER_FIELDS = ("storyId", "outputId", "productId", "quantity", "shippingAddress", "customOptions", "contactEmail")


def _view(order, principal):
    return order.to_dict() if principal.is_admin else parent_view(order)


@parent_orders_bp.route("/products", methods=["GET"])
def list_products():
    current_principal()
    products = service("CATALOG").active_products()
    return ok(products=[p.to_dict() for p in products])


@parent_orders_bp.route("/orders", methods=["POST"])
def create_order():
    """
    Place an order.

    Body: {storyId, outputId?, productId, quantity, shippingAddress,
           customOptions?, contactEmail?}
    """
    principal = current_principal()
    body = json_body()
    payload = sanitize_mapping({key: body[key] for key in ORDER_FIELDS if key in body})

    order = service("ORDER_SERVICE").create_order(principal, payload)
    logger.info(f"Order {order.id} placed by {principal.uid}")
    return ok(201, orderId=order.id, order=_view(order, principal))


@parent_orders_bp.route("/orders/mine", methods=["GET"])
def my_orders():
    principal = current_principal()
    orders = service("ORDER_SERVICE").list_for_parent(principal)
    return ok(count=len(orders), orders=[parent_view(o) for o in orders])


@parent_orders_bp.route("/orders/<order_id>", methods=["GET"])
def get_order(order_id: str):
    principal = current_principal()
    order = service("ORDER_SERVICE").get_order(order_id, principal)
    return ok(order=_view(order, principal))


@parent_orders_bp.route("/orders/<order_id>/pay", methods=["POST"])
def pay(order_id: str):
    principal = current_principal()
    order = service("ORDER_SERVICE").mark_paid(order_id, principal)
    return ok(order=_view(order, principal))
