"""
Normalized print-broker results.

The broker's responses vary in shape between endpoints (and between API
versions): an order ID may live at ``order.id`` or at the top level, a
status at ``orderStatus`` or ``status``. The protocol adapter folds every
response into one of the frozen result types below, so nothing above the
adapter ever reads a raw broker payload.

Every result carries ``interactions``: the trace of HTTP round trips that
produced it. The caller forwards that trace to the interaction logger
whether the call succeeded or not (failed calls carry their trace on the
raised BrokerError instead).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from models.order import utc_now_iso


@dataclass(frozen=True)
class BrokerInteraction:
    """One HTTP round trip with the broker (or one inbound webhook)."""

    action: str
    """Logical operation: submit, confirm, cancel, get_status, authenticate, webhook."""

    method: str
    endpoint: str
    direction: str = "outbound"
    payload_summary: str = ""
    http_status: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def succeeded(self) -> bool:
        return self.error_message is None and self.http_status is not None and self.http_status < 400

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "direction": self.direction,
            "action": self.action,
            "method": self.method,
            "endpoint": self.endpoint,
            "payloadSummary": self.payload_summary,
        }
        if self.http_status is not None:
            data["httpStatus"] = self.http_status
        if self.error_message:
            data["errorMessage"] = self.error_message
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        return data


@dataclass(frozen=True)
class SubmitResult:
    """Broker accepted a new order."""

    order_id: str
    job_number: Optional[str]
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)
    interactions: Tuple[BrokerInteraction, ...] = ()


@dataclass(frozen=True)
class ConfirmResult:
    """Broker confirmed an order (production may start)."""

    order_id: str
    status: str
    interactions: Tuple[BrokerInteraction, ...] = ()


@dataclass(frozen=True)
class CancelResult:
    """Broker cancelled an order."""

    order_id: str
    status: str
    interactions: Tuple[BrokerInteraction, ...] = ()


@dataclass(frozen=True)
class OrderStatusResult:
    """Current broker-side state of an order."""

    order_id: str
    status: str
    job_number: Optional[str] = None
    status_reason: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[str] = None
    artwork_errors: List[Dict[str, Any]] = field(default_factory=list)
    interactions: Tuple[BrokerInteraction, ...] = ()
