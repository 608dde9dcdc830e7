"""
Custom exceptions for the print fulfillment service.

Exception Hierarchy:
    FulfillmentError (base)
    ├── ConfigurationError          - Bad/missing settings (startup failure)
    ├── ValidationError             - Order failed the validation gate (400)
    ├── InvalidTransitionError      - Action not allowed in current status (400)
    ├── AuthenticationError         - No/unknown bearer token (401)
    ├── PermissionDeniedError       - Caller lacks the required role (403)
    ├── NotFoundError               - Order/product/story does not exist (404)
    ├── ConflictError               - Broker or store refused a conflicting change (409)
    │   └── ConcurrentModificationError - Stale version under strict versioning
    └── BrokerError                 - Print broker call failed (500)
        └── UnknownBrokerStatusError    - Broker reported a status we cannot map

Usage:
    Startup errors (ConfigurationError) cause the app to fail fast.
    Everything else carries an ``http_status`` and is rendered by the
    blueprint error handler as ``{"ok": false, "error": ...}``.
"""

from typing import Optional, Dict, Any, List


class FulfillmentError(Exception):
    """
    Base exception for all print fulfillment errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_response(self) -> Dict[str, Any]:
        """Body for a JSON error response."""
        return {"ok": False, "error": self.message}


# =============================================================================
# STARTUP ERRORS
# =============================================================================

class ConfigurationError(FulfillmentError):
    """
    Application settings are missing or malformed.

    Typical causes:
    - MIXAM_USERNAME / MIXAM_PASSWORD unset while mock mode is off
    - AUTH_TOKENS or MIXAM_BILLING_ADDRESS is not valid JSON
    - CATALOG_PATH points at an unreadable file
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, details)
        self.setting = setting


# =============================================================================
# REQUEST ERRORS
# =============================================================================

class ValidationError(FulfillmentError):
    """
    Input or order state failed validation.

    ``errors`` holds every failing reason; ``message`` joins them so a
    single-line response still names all of them.
    """

    http_status = 400

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
    ):
        self.errors = list(errors) if errors else [message]
        self.warnings = list(warnings or [])
        super().__init__(message, {"errors": self.errors} if errors else None)

    @classmethod
    def from_errors(cls, errors: List[str], warnings: Optional[List[str]] = None) -> "ValidationError":
        return cls("; ".join(errors), errors=errors, warnings=warnings)

    def to_response(self) -> Dict[str, Any]:
        body = {"ok": False, "error": self.message, "errors": self.errors}
        if self.warnings:
            body["warnings"] = self.warnings
        return body


class InvalidTransitionError(FulfillmentError):
    """The requested action is not allowed from the order's current status."""

    http_status = 400

    def __init__(self, message: str, current_status: Optional[str] = None, target_status: Optional[str] = None):
        details = {}
        if current_status:
            details["current_status"] = current_status
        if target_status:
            details["target_status"] = target_status
        super().__init__(message, details)
        self.current_status = current_status
        self.target_status = target_status


class AuthenticationError(FulfillmentError):
    """No bearer token was supplied, or the token is unknown."""

    http_status = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDeniedError(FulfillmentError):
    """The authenticated caller is not allowed to perform this action."""

    http_status = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class NotFoundError(FulfillmentError):
    """A referenced order, product or storybook does not exist."""

    http_status = 404

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Optional[str] = None):
        details = {}
        if resource:
            details["resource"] = resource
        if resource_id:
            details["id"] = resource_id
        super().__init__(message, details)


class ConflictError(FulfillmentError):
    """
    The change conflicts with state held elsewhere.

    Raised when the broker refuses to cancel an order that is already in
    production, and when a second local order tries to claim a broker
    order ID that is already linked.
    """

    http_status = 409


class ConcurrentModificationError(ConflictError):
    """The order was modified since it was read (strict versioning only)."""

    def __init__(self, order_id: str, expected_version: int, actual_version: int):
        message = (
            f"Order {order_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        super().__init__(message, {
            "order_id": order_id,
            "expected_version": expected_version,
            "actual_version": actual_version,
        })
        self.expected_version = expected_version
        self.actual_version = actual_version


# =============================================================================
# BROKER ERRORS
# =============================================================================

class BrokerError(FulfillmentError):
    """
    A call to the print broker failed.

    The broker's own message is kept verbatim in ``message``. ``interactions``
    holds the trace of the failed call so callers can persist it even though
    no result object was returned.
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        interactions: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if status_code is not None:
            error_details["status_code"] = status_code
        super().__init__(message, error_details)
        self.status_code = status_code
        self.interactions = list(interactions or [])

    @property
    def is_already_in_production(self) -> bool:
        """Broker refused because the job has entered production."""
        return self.status_code == 409 or "already in production" in self.message.lower()


class UnknownBrokerStatusError(BrokerError):
    """The broker reported a status that has no local mapping."""

    def __init__(self, broker_status: str, interactions: Optional[List[Any]] = None):
        super().__init__(
            f"Unknown broker status: {broker_status!r}",
            interactions=interactions,
            details={"broker_status": broker_status},
        )
        self.broker_status = broker_status
