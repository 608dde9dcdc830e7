"""
Core module for the print fulfillment service.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- auth: Bearer token authentication and admin checks
- mixam_client: Mixam API adapter and mock broker (import directly)
"""

from .exceptions import (
    FulfillmentError,
    ConfigurationError,
    ValidationError,
    InvalidTransitionError,
    AuthenticationError,
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    ConcurrentModificationError,
    BrokerError,
    UnknownBrokerStatusError,
)
from .auth import Principal, TokenAuthenticator, require_admin

__all__ = [
    "FulfillmentError",
    "ConfigurationError",
    "ValidationError",
    "InvalidTransitionError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "ConcurrentModificationError",
    "BrokerError",
    "UnknownBrokerStatusError",
    "Principal",
    "TokenAuthenticator",
    "require_admin",
]
