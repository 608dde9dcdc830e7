"""
Parent-facing order operations.

    create_order     storybook + product + address -> order awaiting approval
    mark_paid        simulated payment (paymentStatus = paid)
    get_order        one order, for its owner or an admin
    list_for_parent  the caller's own orders
    list_orders      admin queue by filter (pending, approved, submitted, all)

Order creation runs the address, pricing and file checks of the validation
gate. Page constraints are checked again at submit time, when the admin may
have corrected the printable files.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from core.auth import Principal, require_admin
from core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from models.order import (
    PrintOrder,
    PrintableFiles,
    PrintableMetadata,
    ProcessLogEntry,
    StatusHistoryEntry,
    utc_now_iso,
)
from models.status import FulfillmentStatus, TERMINAL_STATUSES
from modules.pricing import estimate_cost
from modules.validation import PrintValidator, parse_whole_number
from services.catalog import ProductCatalog, StorybookAssetStore
from services.notifications import NotificationDispatcher, OrderEvent, ORDER_SUBMITTED
from services.order_store import OrderRepository
from logging_config import get_logger, get_order_logger


# Module logger
logger = get_logger(__name__)


LIST_FILTERS: Dict[str, Optional[List[FulfillmentStatus]]] = {
    "pending": [FulfillmentStatus.AWAITING_APPROVAL, FulfillmentStatus.READY_TO_SUBMIT],
    "approved": [FulfillmentStatus.APPROVED],
    "submitted": [
        FulfillmentStatus.SUBMITTED,
        FulfillmentStatus.ON_HOLD,
        FulfillmentStatus.CONFIRMED,
        FulfillmentStatus.IN_PRODUCTION,
        FulfillmentStatus.PRINTED,
        FulfillmentStatus.SHIPPED,
        FulfillmentStatus.DELIVERED,
    ],
    "all": None,
}

# Audit detail only admins see
ADMIN_ONLY_KEYS = ("processLog", "mixamInteractions", "mixamResponse", "lastWebhookPayload")


def parent_view(order: PrintOrder) -> Dict[str, Any]:
    """Order document without the admin-only audit detail."""
    document = order.to_dict()
    for key in ADMIN_ONLY_KEYS:
        document.pop(key, None)
    return document


class OrderService:
    """Order creation and lookup for parents (and the admin queue)."""

    def __init__(
        self,
        repository: OrderRepository,
        catalog: ProductCatalog,
        assets: StorybookAssetStore,
        notifier: NotificationDispatcher,
        validator: Optional[PrintValidator] = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.assets = assets
        self.notifier = notifier
        self.validator = validator or PrintValidator()

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_order(self, principal: Principal, payload: Dict[str, Any]) -> PrintOrder:
        """
        Place a print order for a storybook.

        Args:
            principal: Parent placing the order
            payload: {storyId, outputId?, productId, quantity, shippingAddress,
                customOptions?, contactEmail?}

        Returns:
            The stored order, in awaiting_approval

        Raises:
            ValidationError: Missing fields, bad address, no pricing, missing PDFs
            NotFoundError: Unknown product or storybook output
            PermissionDeniedError: Caller does not own the storybook
        """
        story_id = payload.get("storyId") or ""
        product_id = payload.get("productId") or ""
        missing = [name for name, value in (("storyId", story_id), ("productId", product_id)) if not value]
        if not isinstance(payload.get("shippingAddress"), dict):
            missing.append("shippingAddress")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        quantity = parse_whole_number(payload.get("quantity", 1), "Quantity")

        product = self.catalog.get(product_id)
        if product is None:
            raise NotFoundError(f"Print product not found: {product_id}", resource="product", resource_id=product_id)
        if not product.active:
            raise ValidationError(f"Print product {product.name} is not available")

        assets = self.assets.get(story_id, payload.get("outputId") or "")
        if assets is None:
            raise NotFoundError(
                f"No printable output found for storybook {story_id}",
                resource="storybook",
                resource_id=story_id,
            )
        if assets.owner_uid != principal.uid and not principal.is_admin:
            raise PermissionDeniedError("You can only order prints of your own storybooks")

        files = PrintableFiles(
            cover_pdf_url=assets.cover_pdf_url,
            interior_pdf_url=assets.interior_pdf_url,
            padding_pdf_url=assets.padding_pdf_url,
        )
        metadata = PrintableMetadata.from_dict(assets.metadata)

        result, address = self.validator.validate_for_creation(
            payload["shippingAddress"], product, quantity, files,
        )
        if not result.valid:
            logger.info(f"Rejected order for story {story_id}: {result.errors}")
            raise ValidationError.from_errors(result.errors, result.warnings)

        order_id = uuid.uuid4().hex
        order = PrintOrder(
            id=order_id,
            parent_uid=principal.uid,
            story_id=story_id,
            output_id=assets.output_id,
            print_product_id=product.id,
            product_snapshot=product.to_dict(),
            quantity=quantity,
            shipping_address=address,
            custom_options=dict(payload.get("customOptions") or {}),
            contact_email=payload.get("contactEmail") or principal.email,
            estimated_cost=estimate_cost(product, quantity),
            printable_files=files,
            printable_metadata=metadata,
            validation_result=result,
            status=FulfillmentStatus.AWAITING_APPROVAL,
            payment_status="unpaid",
            status_history=[StatusHistoryEntry(
                status=FulfillmentStatus.AWAITING_APPROVAL.value,
                note="Order created by parent, pending admin approval",
                source="parent",
                user_id=principal.uid,
            )],
            process_log=[
                ProcessLogEntry(
                    event="order_created",
                    message=f"Order created for {quantity} x {product.name}",
                    data={"productId": product.id, "quantity": quantity},
                    source="parent",
                    user_id=principal.uid,
                ),
                ProcessLogEntry(
                    event="address_validated",
                    message=f"Shipping address validated ({address.postal_code})",
                    data={"warnings": list(result.warnings)} if result.warnings else {},
                    source="system",
                ),
                ProcessLogEntry(
                    event="pdfs_linked",
                    message="Printable PDFs linked from storybook output",
                    data={"outputId": assets.output_id, "interiorPageCount": metadata.interior_page_count},
                    source="system",
                ),
            ],
        )

        stored = self.repository.create(order)
        get_order_logger(order_id).info(
            f"Created for parent {principal.uid}: {quantity} x {product.id}, "
            f"total {stored.estimated_cost.total if stored.estimated_cost else 'n/a'}"
        )
        self.notifier.emit(OrderEvent(
            kind=ORDER_SUBMITTED,
            order_id=stored.id,
            status=stored.status.value,
            data={"parent_uid": principal.uid, "product_id": product.id, "quantity": quantity},
        ))
        return stored

    # =========================================================================
    # PAYMENT
    # =========================================================================

    def mark_paid(self, order_id: str, principal: Principal) -> PrintOrder:
        """Record a (simulated) payment. Paying twice is a no-op."""
        order = self.get_order(order_id, principal)
        if order.payment_status == "paid":
            return order
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Cannot pay for an order in status {order.status.value}",
                current_status=order.status.value,
            )

        updated = self.repository.update(
            order.id,
            {"paymentStatus": "paid", "paidAt": utc_now_iso()},
            expected_version=order.version,
            log=[ProcessLogEntry(
                event="payment_recorded",
                message="Payment recorded",
                source=principal.source,
                user_id=principal.uid,
            )],
        )
        get_order_logger(order.id).info("Marked as paid")
        return updated

    # =========================================================================
    # READS
    # =========================================================================

    def get_order(self, order_id: str, principal: Principal) -> PrintOrder:
        """
        Raises:
            NotFoundError: Unknown order
            PermissionDeniedError: Caller is neither the owner nor an admin
        """
        order = self.repository.get(order_id)
        if order.parent_uid != principal.uid and not principal.is_admin:
            raise PermissionDeniedError("You do not have access to this order")
        return order

    def list_for_parent(self, principal: Principal) -> List[PrintOrder]:
        return self.repository.list_orders(parent_uid=principal.uid)

    def list_orders(self, principal: Principal, filter_name: str = "all") -> List[PrintOrder]:
        """
        Admin order queue.

        Raises:
            PermissionDeniedError: Caller is not an admin
            ValidationError: Unknown filter
        """
        require_admin(principal)
        if filter_name not in LIST_FILTERS:
            raise ValidationError(
                f"Unknown filter {filter_name!r}; expected one of {', '.join(LIST_FILTERS)}"
            )
        return self.repository.list_orders(statuses=LIST_FILTERS[filter_name])
