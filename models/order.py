"""
Print order data models.

A print order is persisted as one JSON-style document with camelCase keys
(the shape the order store, the API responses and the audit trail all
share). The dataclasses here are typed views over that document:

- ShippingAddress: normalized delivery address
- EstimatedCost: price quote frozen at order creation
- PrintableFiles / PrintableMetadata: hosted PDFs and their page counts
- ValidationResult: outcome of the validation gate
- StatusHistoryEntry / ProcessLogEntry: append-only audit records
- PrintOrder: the order itself

``PrintOrder.from_dict`` keeps the source document in ``raw`` so keys
without a typed field (approvedBy, mixamShipments, ...) survive a
``from_dict`` / ``to_dict`` round trip.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from models.status import FulfillmentStatus, parse_status


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (the store's timestamp format)."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# VALUE OBJECTS
# =============================================================================

@dataclass(frozen=True)
class ShippingAddress:
    """Delivery address. Stored normalized (postcode "OUT IN", country "GB")."""

    name: str
    line1: str
    city: str
    postal_code: str
    country: str = "GB"
    line2: str = ""
    state: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingAddress":
        return cls(
            name=data.get("name", "") or "",
            line1=data.get("line1", "") or "",
            line2=data.get("line2", "") or "",
            city=data.get("city", "") or "",
            state=data.get("state", "") or "",
            postal_code=data.get("postalCode", data.get("postal_code", "")) or "",
            country=data.get("country", "") or "",
        )


@dataclass(frozen=True)
class EstimatedCost:
    """Price quote computed from the product's pricing tiers."""

    unit_price: float
    subtotal: float
    shipping: float
    setup_fee: float
    total: float
    currency: str = "GBP"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unitPrice": self.unit_price,
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "setupFee": self.setup_fee,
            "total": self.total,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EstimatedCost":
        return cls(
            unit_price=data.get("unitPrice", 0.0),
            subtotal=data.get("subtotal", 0.0),
            shipping=data.get("shipping", 0.0),
            setup_fee=data.get("setupFee", 0.0),
            total=data.get("total", 0.0),
            currency=data.get("currency", "GBP"),
        )


@dataclass(frozen=True)
class PrintableFiles:
    """Hosted, print-ready PDFs. Passed to the broker by URL, never uploaded."""

    cover_pdf_url: str = ""
    interior_pdf_url: str = ""
    padding_pdf_url: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.cover_pdf_url and self.interior_pdf_url)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "coverPdfUrl": self.cover_pdf_url,
            "interiorPdfUrl": self.interior_pdf_url,
        }
        if self.padding_pdf_url:
            data["paddingPdfUrl"] = self.padding_pdf_url
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PrintableFiles":
        data = data or {}
        return cls(
            cover_pdf_url=data.get("coverPdfUrl", "") or "",
            interior_pdf_url=data.get("interiorPdfUrl", "") or "",
            padding_pdf_url=data.get("paddingPdfUrl", "") or "",
        )


@dataclass(frozen=True)
class PrintableMetadata:
    """Facts about the printable PDFs that the print constraints depend on."""

    interior_page_count: int = 0
    padding_page_count: int = 0
    cover_page_count: int = 0
    trim_size: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interiorPageCount": self.interior_page_count,
            "paddingPageCount": self.padding_page_count,
            "coverPageCount": self.cover_page_count,
            "trimSize": self.trim_size,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PrintableMetadata":
        data = data or {}
        return cls(
            interior_page_count=int(data.get("interiorPageCount", 0) or 0),
            padding_page_count=int(data.get("paddingPageCount", 0) or 0),
            cover_page_count=int(data.get("coverPageCount", 0) or 0),
            trim_size=data.get("trimSize", "") or "",
        )


@dataclass
class ValidationResult:
    """Outcome of the validation gate. All failing reasons are collected."""

    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.valid = self.valid and other.valid
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ValidationResult"]:
        if data is None:
            return None
        return cls(
            valid=bool(data.get("valid", True)),
            errors=list(data.get("errors", [])),
            warnings=list(data.get("warnings", [])),
        )


# =============================================================================
# AUDIT RECORDS
# =============================================================================

@dataclass(frozen=True)
class StatusHistoryEntry:
    """One status change. Appended exactly once per change, never edited."""

    status: str
    note: str
    source: str = "system"
    """Who caused the change: admin, parent, system, or mixam."""

    timestamp: str = field(default_factory=utc_now_iso)
    user_id: Optional[str] = None
    mixam_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "timestamp": self.timestamp,
            "note": self.note,
            "source": self.source,
        }
        if self.user_id:
            data["userId"] = self.user_id
        if self.mixam_status:
            data["mixamStatus"] = self.mixam_status
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            status=data.get("status", ""),
            note=data.get("note", ""),
            source=data.get("source", "system"),
            timestamp=data.get("timestamp", ""),
            user_id=data.get("userId"),
            mixam_status=data.get("mixamStatus"),
        )


@dataclass(frozen=True)
class ProcessLogEntry:
    """Operational event (submit attempt, refresh, refused cancel, ...)."""

    event: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    source: str = "system"
    timestamp: str = field(default_factory=utc_now_iso)
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "event": self.event,
            "timestamp": self.timestamp,
            "message": self.message,
            "source": self.source,
        }
        if self.data:
            entry["data"] = dict(self.data)
        if self.user_id:
            entry["userId"] = self.user_id
        return entry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessLogEntry":
        return cls(
            event=data.get("event", ""),
            message=data.get("message", ""),
            data=dict(data.get("data", {})),
            source=data.get("source", "system"),
            timestamp=data.get("timestamp", ""),
            user_id=data.get("userId"),
        )


# =============================================================================
# PRINT ORDER
# =============================================================================

@dataclass
class PrintOrder:
    """
    A parent's request to have a storybook printed and shipped.

    Only the state machine, the status reconciler and the broker webhook
    change ``status``. ``mixam_order_id`` is written once, on the first
    successful submit, and never again.
    """

    id: str
    parent_uid: str
    story_id: str
    print_product_id: str
    quantity: int
    shipping_address: ShippingAddress
    status: FulfillmentStatus = FulfillmentStatus.AWAITING_APPROVAL

    output_id: str = ""
    product_snapshot: Dict[str, Any] = field(default_factory=dict)
    custom_options: Dict[str, Any] = field(default_factory=dict)
    contact_email: str = ""
    estimated_cost: Optional[EstimatedCost] = None

    printable_files: PrintableFiles = field(default_factory=PrintableFiles)
    printable_metadata: PrintableMetadata = field(default_factory=PrintableMetadata)
    validation_result: Optional[ValidationResult] = None

    payment_status: str = "unpaid"
    fulfillment_notes: str = ""
    submit_attempts: int = 0

    mixam_order_id: Optional[str] = None
    mixam_job_number: Optional[str] = None
    mixam_status: Optional[str] = None
    mixam_status_checked_at: Optional[str] = None

    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    process_log: List[ProcessLogEntry] = field(default_factory=list)
    mixam_interactions: List[Dict[str, Any]] = field(default_factory=list)

    version: int = 1
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def validation_failed(self) -> bool:
        """True only when the gate has run and said no."""
        return self.validation_result is not None and not self.validation_result.valid

    @property
    def binding_type(self) -> str:
        """Binding type from the product's broker mapping, else its spec, else PUR."""
        mapping = self.product_snapshot.get("mixamMapping") or {}
        spec = self.product_snapshot.get("mixamSpec") or {}
        return (
            (mapping.get("binding") or {}).get("type")
            or (spec.get("binding") or {}).get("type")
            or "PUR"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the stored document shape."""
        data = dict(self.raw)
        data.update({
            "id": self.id,
            "parentUid": self.parent_uid,
            "storyId": self.story_id,
            "outputId": self.output_id,
            "printProductId": self.print_product_id,
            "productSnapshot": self.product_snapshot,
            "quantity": self.quantity,
            "customOptions": self.custom_options,
            "contactEmail": self.contact_email,
            "estimatedCost": self.estimated_cost.to_dict() if self.estimated_cost else None,
            "shippingAddress": self.shipping_address.to_dict(),
            "printableFiles": self.printable_files.to_dict(),
            "printableMetadata": self.printable_metadata.to_dict(),
            "validationResult": self.validation_result.to_dict() if self.validation_result else None,
            "fulfillmentStatus": self.status.value,
            "paymentStatus": self.payment_status,
            "fulfillmentNotes": self.fulfillment_notes,
            "submitAttempts": self.submit_attempts,
            "mixamOrderId": self.mixam_order_id,
            "mixamJobNumber": self.mixam_job_number,
            "mixamStatus": self.mixam_status,
            "mixamStatusCheckedAt": self.mixam_status_checked_at,
            "statusHistory": [entry.to_dict() for entry in self.status_history],
            "processLog": [entry.to_dict() for entry in self.process_log],
            "mixamInteractions": list(self.mixam_interactions),
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintOrder":
        """Create from a stored document."""
        cost = data.get("estimatedCost")
        return cls(
            id=data["id"],
            parent_uid=data.get("parentUid", ""),
            story_id=data.get("storyId", ""),
            output_id=data.get("outputId", "") or "",
            print_product_id=data.get("printProductId", ""),
            product_snapshot=dict(data.get("productSnapshot") or {}),
            quantity=int(data.get("quantity", 0)),
            custom_options=dict(data.get("customOptions") or {}),
            contact_email=data.get("contactEmail", "") or "",
            estimated_cost=EstimatedCost.from_dict(cost) if cost else None,
            shipping_address=ShippingAddress.from_dict(data.get("shippingAddress") or {}),
            printable_files=PrintableFiles.from_dict(data.get("printableFiles")),
            printable_metadata=PrintableMetadata.from_dict(data.get("printableMetadata")),
            validation_result=ValidationResult.from_dict(data.get("validationResult")),
            status=parse_status(data.get("fulfillmentStatus")),
            payment_status=data.get("paymentStatus", "unpaid"),
            fulfillment_notes=data.get("fulfillmentNotes", "") or "",
            submit_attempts=int(data.get("submitAttempts", 0) or 0),
            mixam_order_id=data.get("mixamOrderId"),
            mixam_job_number=data.get("mixamJobNumber"),
            mixam_status=data.get("mixamStatus"),
            mixam_status_checked_at=data.get("mixamStatusCheckedAt"),
            status_history=[StatusHistoryEntry.from_dict(e) for e in data.get("statusHistory", [])],
            process_log=[ProcessLogEntry.from_dict(e) for e in data.get("processLog", [])],
            mixam_interactions=list(data.get("mixamInteractions", [])),
            version=int(data.get("version", 1)),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            raw=dict(data),
        )
