"""
UK delivery address validation and normalization.

The broker only ships within the UK for this account, so an address is
valid when it has the required fields, names a UK country, and carries a
well-formed UK postcode. Valid addresses come back normalized: trimmed
fields, postcode in "OUT IN" form, country collapsed to "GB".
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from models.order import ShippingAddress


UK_COUNTRY_NAMES = frozenset({
    "GB",
    "UK",
    "UNITED KINGDOM",
    "GREAT BRITAIN",
    "ENGLAND",
    "SCOTLAND",
    "WALES",
    "NORTHERN IRELAND",
})

POSTCODE_PATTERNS = (
    re.compile(r"^[A-Z]{1,2}\d{1,2}[A-Z]?\d[A-Z]{2}$"),  # A9 9AA ... AA9A 9AA
    re.compile(r"^GIR0AA$"),                             # Girobank
    re.compile(r"^[A-Z]{2}\d{2}$"),                      # BFPO
)

PO_BOX_PATTERNS = (
    re.compile(r"\bP\.?O\.?\s*BOX\b", re.IGNORECASE),
    re.compile(r"\bPOST\s*OFFICE\s*BOX\b", re.IGNORECASE),
)

MAX_LENGTHS = {
    "name": ("Recipient name", 100),
    "line1": ("Address line 1", 100),
    "line2": ("Address line 2", 100),
    "city": ("City name", 50),
}


@dataclass
class AddressValidationResult:
    """Errors block the order; warnings are passed back to the parent."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    normalized: Optional[ShippingAddress] = None


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _compact_postcode(postcode: str) -> str:
    return re.sub(r"\s+", "", postcode).upper()


def validate_uk_postcode(postcode: str) -> List[str]:
    """Return the list of problems with a UK postcode (empty when valid)."""
    if not postcode or not postcode.strip():
        return ["Postcode is required"]

    cleaned = _compact_postcode(postcode)
    errors = []
    if not any(pattern.match(cleaned) for pattern in POSTCODE_PATTERNS):
        errors.append("Invalid UK postcode format (e.g., SW1A 1AA)")
    if len(cleaned) < 5 or len(cleaned) > 7:
        errors.append("UK postcode must be 5-7 characters")
    return errors


def normalize_uk_postcode(postcode: str) -> str:
    """
    Format a postcode the way Royal Mail prints it.

    Examples:
        "sw1a1aa"  -> "SW1A 1AA"
        "gir0aa"   -> "GIR 0AA"
    """
    if not postcode:
        return ""
    cleaned = _compact_postcode(postcode)
    if cleaned == "GIR0AA":
        return "GIR 0AA"
    if cleaned.startswith("BFPO"):
        return cleaned
    if 5 <= len(cleaned) <= 7:
        return f"{cleaned[:-3]} {cleaned[-3:]}"
    return postcode.upper()


def validate_uk_address(address: Dict[str, Any]) -> AddressValidationResult:
    """
    Validate a delivery address for UK shipment.

    Args:
        address: Address dict with name, line1, line2, city, state,
            postalCode, country (camelCase, as submitted by the client)

    Returns:
        AddressValidationResult; ``normalized`` is set only when valid
    """
    name = _clean(address.get("name"))
    line1 = _clean(address.get("line1"))
    line2 = _clean(address.get("line2"))
    city = _clean(address.get("city"))
    state = _clean(address.get("state"))
    postal_code = _clean(address.get("postalCode"))
    country = _clean(address.get("country"))

    errors: List[str] = []
    warnings: List[str] = []

    # 1. Required fields
    if not name:
        errors.append("Recipient name is required")
    if not line1:
        errors.append("Address line 1 is required")
    if not city:
        errors.append("City/town is required")
    if not postal_code:
        errors.append("Postcode is required")
    if not country:
        errors.append("Country is required")

    # 2. UK only
    if country and country.upper() not in UK_COUNTRY_NAMES:
        errors.append("Currently only UK addresses are supported")

    # 3. Postcode format (missing postcode already reported above)
    if postal_code:
        errors.extend(validate_uk_postcode(postal_code))

    # 4. Field lengths
    values = {"name": name, "line1": line1, "line2": line2, "city": city}
    for key, (label, limit) in MAX_LENGTHS.items():
        if len(values[key]) > limit:
            errors.append(f"{label} is too long (max {limit} characters)")

    # 5. Warnings
    if line1 and not line2 and len(line1) < 10:
        warnings.append("Address seems unusually short - please verify it is complete")
    if not state:
        warnings.append("County/region not provided (optional but recommended)")

    normalized = None
    if not errors:
        normalized = ShippingAddress(
            name=name,
            line1=line1,
            line2=line2,
            city=city,
            state=state,
            postal_code=normalize_uk_postcode(postal_code),
            country="GB",
        )

    return AddressValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        normalized=normalized,
    )


def is_po_box(address: Dict[str, Any]) -> bool:
    """True if the street lines look like a PO Box (couriers may refuse these)."""
    street = f"{_clean(address.get('line1'))} {_clean(address.get('line2'))}"
    return any(pattern.search(street) for pattern in PO_BOX_PATTERNS)
