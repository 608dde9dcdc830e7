"""
MxJdf document builder for the Mixam public order API.

Turns a print order into the JSON job document the broker expects:

    {
      "metadata": {"externalOrderId", "statusCallbackUrl"},
      "orderItems": [{
          "product": "BOOK", "subProductId", "quoteType": "QUOTE",
          "itemSpecification": {"copies", "product", "components": [...]},
          "assets": [{"url", "name"}, ...],
          "metadata": {"externalItemId"}
      }],
      "billingAddress", "invoiceAddress",
      "deliveries": [{"address", "itemDeliveryDetails": [{"itemId", "copies"}]}],
      "plainPackaging": false,
      "paymentMethod": "TEST_ORDER" | "ACCOUNT" | "CARD_ON_FILE"
    }

Two paths:
    1. Product has a validated ``mixamMapping``: its exact catalogue IDs are
       copied into the components.
    2. Otherwise the human-level ``mixamSpec`` is translated through the
       lookup tables below (formats, substrates, paper weights).

The builder is a pure function: same order in, same document out. PDFs are
referenced by URL; the broker fetches them itself.
"""

from __future__ import annotations

import math
from typing import Dict, Any, List, Optional

from models.order import PrintOrder, PrintableMetadata, ShippingAddress
from modules.validation import is_case_binding
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


PAYMENT_METHODS = ("TEST_ORDER", "ACCOUNT", "CARD_ON_FILE")
DEFAULT_PHONE = "+44 000 000 0000"

# =============================================================================
# LOOKUP TABLES (legacy path)
# =============================================================================

# DIN sizes: 0=A0 ... 7=A7
DIN_FORMAT_IDS = {f"A{n}": n for n in range(8)}
DEFAULT_FORMAT = DIN_FORMAT_IDS["A4"]

# Non-DIN sizes from the hardcover book catalogue. 8x10 is not offered, so
# it goes to Letter. Order matters: first match wins.
STANDARD_SIZES = (
    (("8.5", "11"), "IN_8_5_X_11"),
    (("5.5", "8.5"), "DEMY"),
    (("8", "10"), "IN_8_5_X_11"),
    (("6", "9"), "US_ROYAL"),
)

SUBSTRATE_TYPES = {
    "silk": 1,
    "gloss": 2,
    "uncoated": 3,
    "matt": 1,
}

# gsm -> weightId
WEIGHT_IDS_DIN = {90: 0, 115: 2, 130: 3, 150: 4, 170: 5, 200: 14, 250: 14, 300: 14}
WEIGHT_IDS_STANDARD = {90: 0, 115: 2, 130: 3, 150: 4, 170: 4, 200: 4, 250: 4, 300: 4}

DEFAULT_INTERIOR_WEIGHT_ID_DIN = 5       # 170gsm
DEFAULT_COVER_WEIGHT_ID_DIN = 14         # 200gsm
DEFAULT_INTERIOR_WEIGHT_ID_STANDARD = 4  # 150gsm
DEFAULT_COVER_WEIGHT_ID_STANDARD = 4

# Hardcover: the printed cover wraps board, and end papers are mandatory
HARDCOVER_COVER_SUBSTRATE = {"typeId": 1, "weightId": 5, "colourId": 0}
HARDCOVER_END_PAPER_SUBSTRATE = {"typeId": 0, "weightId": 0, "colourId": 1}

LAMINATIONS = ("GLOSS", "MATT", "SOFT_TOUCH")


# =============================================================================
# HELPERS
# =============================================================================

def size_spec(trim_size: str) -> Dict[str, Any]:
    """
    Translate a trim size label into broker format fields.

    Returns:
        {"format": int} for DIN sizes, or
        {"format": 4, "standardSize": str} for supported non-DIN sizes.
        Unknown sizes default to A4.

    Examples:
        >>> size_spec("A5 portrait")
        {'format': 5}
        >>> size_spec('8.5" x 11"')
        {'format': 4, 'standardSize': 'IN_8_5_X_11'}
    """
    trim_lower = (trim_size or "").lower()

    for key, format_id in DIN_FORMAT_IDS.items():
        if key.lower() in trim_lower:
            return {"format": format_id}

    for needles, standard_size in STANDARD_SIZES:
        if all(needle in trim_lower for needle in needles):
            return {"format": DEFAULT_FORMAT, "standardSize": standard_size}

    return {"format": DEFAULT_FORMAT}


def round_up_pages(page_count: int) -> int:
    """Broker requires a multiple of 4 pages."""
    return int(math.ceil(page_count / 4.0) * 4)


def _split_name(name: str, default_first: str, default_last: str) -> List[str]:
    parts = (name or "").split()
    first = parts[0] if parts else default_first
    last = " ".join(parts[1:]) or default_last
    return [first, last]


def _broker_address(
    address: ShippingAddress,
    email: str,
    phone: Optional[str] = None,
    default_first: str = "Customer",
    default_last: str = "Name",
) -> Dict[str, Any]:
    first_name, last_name = _split_name(address.name, default_first, default_last)
    data = {
        "firstName": first_name,
        "lastName": last_name,
        "postcode": address.postal_code,
        "line1": address.line1,
        "town": address.city,
        "county": address.state or address.city,
        "country": address.country or "GB",
        "phoneNumber": phone or DEFAULT_PHONE,
        "emailAddress": email,
    }
    if address.line2:
        data["line2"] = address.line2
    return data


def _billing_address(billing: Optional[Dict[str, Any]], shipping: Dict[str, Any]) -> Dict[str, Any]:
    if not billing:
        return shipping
    return _broker_address(
        ShippingAddress.from_dict(billing),
        email=billing.get("email", ""),
        phone=billing.get("phone"),
        default_first="Billing",
        default_last="Contact",
    )


def _head_and_tail_bands(order: PrintOrder) -> str:
    binding_spec = (order.product_snapshot.get("mixamSpec") or {}).get("binding") or {}
    colour = order.custom_options.get("headTailBandColor")
    if binding_spec.get("allowHeadTailBandSelection") and colour:
        return str(colour).upper().replace(" ", "_")
    return "NONE"


def _cover_lamination(cover_spec: Dict[str, Any]) -> str:
    refinings = (cover_spec.get("material") or {}).get("refinings") or []
    for refining in refinings:
        if refining.get("type") == "LAMINATION" and refining.get("effect") in LAMINATIONS:
            return refining["effect"]
    return "NONE"


# =============================================================================
# COMPONENTS
# =============================================================================

def _components_from_mapping(order: PrintOrder, mapping: Dict[str, Any], pages: int) -> List[Dict[str, Any]]:
    bound = mapping["boundComponent"]
    cover = mapping["coverComponent"]
    binding = mapping["binding"]

    def placement(component: Dict[str, Any]) -> Dict[str, Any]:
        data = {"format": component["format"]}
        if component.get("standardSize"):
            data["standardSize"] = component["standardSize"]
        data["orientation"] = component.get("orientation", "PORTRAIT")
        return data

    components = [
        {
            "componentType": "BOUND",
            **placement(bound),
            "colours": "PROCESS",
            "substrate": dict(bound["substrate"]),
            "pages": pages,
            "lamination": "NONE",
            "binding": {
                "type": binding["type"],
                "edge": binding.get("edge", "LEFT_RIGHT"),
                "sewn": bool(binding.get("sewn", False)),
                "headAndTailBands": _head_and_tail_bands(order),
            },
        },
        {
            "componentType": "COVER",
            **placement(cover),
            "colours": "PROCESS",
            "substrate": dict(cover["substrate"]),
            "lamination": cover.get("lamination", "NONE"),
            "backColours": cover.get("backColours", "NONE"),
            "backLamination": "NONE",
            "spineColours": "NONE",
        },
    ]

    end_papers = mapping.get("endPapersComponent")
    if end_papers:
        components.append({
            "componentType": "END_PAPERS",
            **placement(bound),
            "colours": "NONE",
            "substrate": dict(end_papers["substrate"]),
            "lamination": "NONE",
        })
    return components


def _components_from_spec(order: PrintOrder, metadata: PrintableMetadata, pages: int) -> List[Dict[str, Any]]:
    spec = order.product_snapshot.get("mixamSpec") or {}
    binding_spec = spec.get("binding") or {}
    cover_spec = spec.get("cover") or {}
    interior_spec = spec.get("interior") or {}
    format_spec = spec.get("format") or {}

    trim_size = metadata.trim_size or format_spec.get("trimSize", "")
    placement = size_spec(trim_size)
    is_standard = "standardSize" in placement
    placement["orientation"] = "LANDSCAPE" if format_spec.get("orientation") == "LANDSCAPE" else "PORTRAIT"

    weight_ids = WEIGHT_IDS_STANDARD if is_standard else WEIGHT_IDS_DIN
    default_interior_weight = DEFAULT_INTERIOR_WEIGHT_ID_STANDARD if is_standard else DEFAULT_INTERIOR_WEIGHT_ID_DIN
    default_cover_weight = DEFAULT_COVER_WEIGHT_ID_STANDARD if is_standard else DEFAULT_COVER_WEIGHT_ID_DIN

    interior_material = interior_spec.get("material") or {}
    cover_material = cover_spec.get("material") or {}

    interior_substrate = {
        "typeId": SUBSTRATE_TYPES.get(interior_material.get("type"), 1),
        "weightId": weight_ids.get(interior_material.get("weight"), default_interior_weight),
        "colourId": 0,
    }
    hardcover = is_case_binding(binding_spec.get("type", ""))
    binding_type = "CASE" if hardcover else "PUR"

    if hardcover:
        cover_substrate = dict(HARDCOVER_COVER_SUBSTRATE)
    else:
        cover_substrate = {
            "typeId": SUBSTRATE_TYPES.get(cover_material.get("type"), 1),
            "weightId": weight_ids.get(cover_material.get("weight"), default_cover_weight),
            "colourId": 0,
        }

    logger.debug(
        f"Legacy mapping for order {order.id}: trim={trim_size!r} -> {placement}, "
        f"binding={binding_type}, interior={interior_substrate}, cover={cover_substrate}"
    )

    components = [
        {
            "componentType": "BOUND",
            **placement,
            "colours": "PROCESS",
            "substrate": interior_substrate,
            "pages": pages,
            "lamination": "NONE",
            "binding": {
                "type": binding_type,
                "edge": binding_spec.get("edge") or "LEFT_RIGHT",
                "sewn": bool(binding_spec.get("sewn", False)),
                "headAndTailBands": _head_and_tail_bands(order),
            },
        },
        {
            "componentType": "COVER",
            **placement,
            "colours": "PROCESS",
            "substrate": cover_substrate,
            "lamination": _cover_lamination(cover_spec),
            "backColours": "NONE" if hardcover else "PROCESS",
            "backLamination": "NONE",
            "spineColours": "NONE",
        },
    ]
    if hardcover:
        components.append({
            "componentType": "END_PAPERS",
            **placement,
            "colours": "NONE",
            "substrate": dict(HARDCOVER_END_PAPER_SUBSTRATE),
            "lamination": "NONE",
        })
    return components


def sub_product_id(order: PrintOrder) -> int:
    """Hardcover sub-product is 1, everything else 0, unless the mapping says otherwise."""
    mapping = order.product_snapshot.get("mixamMapping") or {}
    if mapping.get("validated") and "subProductId" in mapping:
        return int(mapping["subProductId"])
    return 1 if is_case_binding(order.binding_type) else 0


# =============================================================================
# DOCUMENT
# =============================================================================

def build_mxjdf_document(
    order: PrintOrder,
    metadata: PrintableMetadata,
    cover_ref: str,
    interior_ref: str,
    billing_address: Optional[Dict[str, Any]] = None,
    payment_method: str = "ACCOUNT",
    status_callback_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the broker job document for an order.

    Args:
        order: Order to print (quantity, address, product snapshot)
        metadata: Printable metadata (page count, trim size)
        cover_ref: URL of the cover PDF
        interior_ref: URL of the interior PDF (padding already embedded)
        billing_address: Separate billing/invoice address (name, line1,
            city, postalCode, country, email, phone). Defaults to the
            delivery address.
        payment_method: TEST_ORDER, ACCOUNT or CARD_ON_FILE
        status_callback_url: Webhook URL the broker posts status changes to

    Returns:
        MxJdf document as a JSON-serializable dict

    Raises:
        ValueError: If payment_method is not one the broker accepts
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Unsupported payment method: {payment_method}")

    pages = round_up_pages(metadata.interior_page_count)
    if pages != metadata.interior_page_count:
        logger.info(
            f"Order {order.id}: page count {metadata.interior_page_count} rounded up to {pages}"
        )

    mapping = order.product_snapshot.get("mixamMapping") or {}
    if mapping.get("validated"):
        components = _components_from_mapping(order, mapping, pages)
    else:
        logger.warning(f"Order {order.id}: product has no validated broker mapping, using lookup tables")
        components = _components_from_spec(order, metadata, pages)

    shipping = _broker_address(order.shipping_address, email=order.contact_email,
                               phone=order.custom_options.get("contactPhone"))
    billing = _billing_address(billing_address, shipping)
    external_item_id = f"ITEM-{order.id}"

    document_metadata = {"externalOrderId": order.id}
    if status_callback_url:
        document_metadata["statusCallbackUrl"] = status_callback_url

    return {
        "metadata": document_metadata,
        "orderItems": [
            {
                "product": "BOOK",
                "subProductId": sub_product_id(order),
                "quoteType": "QUOTE",
                "itemSpecification": {
                    "copies": order.quantity,
                    "product": "BOOK",
                    "components": components,
                },
                "assets": [
                    {"url": cover_ref, "name": f"storybook-{order.id}-cover.pdf"},
                    {"url": interior_ref, "name": f"storybook-{order.id}-interior.pdf"},
                ],
                "metadata": {"externalItemId": external_item_id},
            }
        ],
        "billingAddress": billing,
        "invoiceAddress": billing,
        "deliveries": [
            {
                "address": shipping,
                "itemDeliveryDetails": [
                    {"itemId": external_item_id, "copies": order.quantity},
                ],
            }
        ],
        "plainPackaging": False,
        "paymentMethod": payment_method,
    }


def validate_mxjdf_document(document: Dict[str, Any]) -> List[str]:
    """
    Structural check of a built document.

    Returns:
        List of problems; empty when the document is complete
    """
    errors: List[str] = []

    if not (document.get("metadata") or {}).get("externalOrderId"):
        errors.append("metadata.externalOrderId is required")
    order_items = document.get("orderItems") or []
    if not order_items:
        errors.append("At least one orderItem is required")
    deliveries = document.get("deliveries") or []
    if not deliveries:
        errors.append("At least one delivery is required")
    if not document.get("paymentMethod"):
        errors.append("paymentMethod is required")

    for index, item in enumerate(order_items):
        for key in ("product", "itemSpecification", "assets", "metadata"):
            if not item.get(key):
                errors.append(f"orderItem[{index}]: {key} is required")

    def check_address(address: Optional[Dict[str, Any]], label: str) -> None:
        if not address:
            errors.append(f"{label} is required")
            return
        for key in ("firstName", "lastName", "line1", "town", "postcode", "country", "emailAddress"):
            if not address.get(key):
                errors.append(f"{label}.{key} is required")

    check_address(document.get("billingAddress"), "billingAddress")
    check_address(document.get("invoiceAddress"), "invoiceAddress")
    for index, delivery in enumerate(deliveries):
        check_address(delivery.get("address"), f"deliveries[{index}].address")

    return errors
