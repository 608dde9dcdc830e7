"""
Validation gate for print orders.

Encodes the physical constraints a book must meet before the broker will
print it, plus the commercial checks that make an order placeable at all.

Checks (in order, every failure collected rather than stopping at the first):
    a. Delivery address is valid for the supported country (UK)
    b. Quantity is within limits and a pricing tier covers it
    c. Cover and interior PDFs are present
    d. Interior page count is a multiple of 4
    e. Interior page count meets the binding minimum (24 case, 8 otherwise)

Order creation applies a-c, submission applies c-e, and an admin
revalidation applies all five.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from core.exceptions import ValidationError
from models.order import PrintOrder, PrintableFiles, ShippingAddress, ValidationResult
from models.product import PrintProduct
from modules.address_validator import validate_uk_address
from modules.pricing import find_pricing_tier
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


CASE_BINDINGS = frozenset({"case", "case_with_sewing"})


def parse_whole_number(value: Any, label: str) -> int:
    """
    Parse an integer field from request input.

    Booleans and fractional numbers are rejected rather than truncated.

    Raises:
        ValidationError: "<label> must be a whole number"
    """
    message = f"{label} must be a whole number"
    if isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(message)
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message) from None


def is_case_binding(binding_type: str) -> bool:
    """Hardcover (case-bound) books have a higher page minimum."""
    return (binding_type or "").lower() in CASE_BINDINGS


class PrintValidator:
    """
    Stateless validation gate.

    All methods return a ValidationResult; none of them raise for a failed
    check. Callers decide whether a failed result is a 400 or a state change.
    """

    MIN_QUANTITY = 1
    MAX_QUANTITY = 100
    PAGE_MULTIPLE = 4
    MIN_PAGES_CASE = 24
    MIN_PAGES_DEFAULT = 8

    # =========================================================================
    # INDIVIDUAL CHECKS
    # =========================================================================

    def check_address(self, address: Dict[str, Any]) -> Tuple[ValidationResult, Optional[ShippingAddress]]:
        """Check (a). Returns the result and the normalized address (None if invalid)."""
        outcome = validate_uk_address(address or {})
        result = ValidationResult(valid=outcome.valid, errors=list(outcome.errors), warnings=list(outcome.warnings))
        return result, outcome.normalized

    def check_pricing(self, product: PrintProduct, quantity: int) -> ValidationResult:
        """Check (b)."""
        result = ValidationResult()
        if quantity < self.MIN_QUANTITY or quantity > self.MAX_QUANTITY:
            result.add_error(f"Quantity must be between {self.MIN_QUANTITY} and {self.MAX_QUANTITY}")
            return result
        if find_pricing_tier(product, quantity) is None:
            result.add_error(f"No pricing available for quantity {quantity}")
        return result

    def check_files(self, files: PrintableFiles) -> ValidationResult:
        """Check (c)."""
        result = ValidationResult()
        if not files.cover_pdf_url:
            result.add_error("Cover PDF is missing")
        if not files.interior_pdf_url:
            result.add_error("Interior PDF is missing")
        return result

    def min_pages_for(self, binding_type: str) -> int:
        return self.MIN_PAGES_CASE if is_case_binding(binding_type) else self.MIN_PAGES_DEFAULT

    def check_page_constraints(self, page_count: int, binding_type: str) -> ValidationResult:
        """Checks (d) and (e)."""
        result = ValidationResult()
        minimum = self.min_pages_for(binding_type)

        if page_count < minimum:
            result.add_error(
                f"Interior page count ({page_count}) is below the minimum required for "
                f"{binding_type} binding ({minimum} pages)."
            )
        if page_count % self.PAGE_MULTIPLE != 0:
            result.add_error(
                f"Interior page count ({page_count}) must be a multiple of "
                f"{self.PAGE_MULTIPLE} for {binding_type} binding."
            )
        return result

    # =========================================================================
    # COMPOSED GATES
    # =========================================================================

    def validate_for_creation(
        self,
        address: Dict[str, Any],
        product: PrintProduct,
        quantity: int,
        files: PrintableFiles,
    ) -> Tuple[ValidationResult, Optional[ShippingAddress]]:
        """Checks a-c, run before a parent's order is stored."""
        result, normalized = self.check_address(address)
        result.merge(self.check_pricing(product, quantity))
        result.merge(self.check_files(files))
        return result, normalized

    def validate_for_submission(self, order: PrintOrder) -> ValidationResult:
        """Checks c-e, run immediately before handing the order to the broker."""
        result = self.check_files(order.printable_files)
        result.merge(self.check_page_constraints(
            order.printable_metadata.interior_page_count,
            order.binding_type,
        ))
        return result

    def validate_order(self, order: PrintOrder) -> ValidationResult:
        """All checks a-e against a stored order."""
        result, _ = self.check_address(order.shipping_address.to_dict())
        product = PrintProduct.from_dict(order.product_snapshot) if order.product_snapshot.get("id") else None
        if product is None:
            result.add_error("Order has no product snapshot")
        else:
            result.merge(self.check_pricing(product, order.quantity))
        result.merge(self.validate_for_submission(order))

        logger.debug(
            f"Validated order {order.id}: valid={result.valid}, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result
