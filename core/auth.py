"""
Request authentication.

Identity comes from an external provider; by the time a request reaches
this service it carries an opaque bearer token. The token map is loaded
from the AUTH_TOKENS setting (JSON: token -> {"uid", "email", "isAdmin"}).

    principal = authenticator.from_request(request)
    require_admin(principal)          # raises PermissionDeniedError
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import AuthenticationError, ConfigurationError, PermissionDeniedError


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    uid: str
    email: str = ""
    is_admin: bool = False

    @property
    def source(self) -> str:
        """Audit source label for changes this caller makes."""
        return "admin" if self.is_admin else "parent"

    @property
    def display_name(self) -> str:
        return self.email or self.uid


class TokenAuthenticator:
    """Resolves ``Authorization: Bearer <token>`` headers to principals."""

    def __init__(self, tokens: Dict[str, Dict[str, Any]]):
        self._principals = {
            token: Principal(
                uid=info["uid"],
                email=info.get("email", ""),
                is_admin=bool(info.get("isAdmin", False)),
            )
            for token, info in tokens.items()
        }

    @classmethod
    def from_config(cls, raw: str) -> "TokenAuthenticator":
        """
        Build from the AUTH_TOKENS JSON string.

        Raises:
            ConfigurationError: If the setting is not a JSON object of
                token -> principal objects each carrying a uid
        """
        try:
            tokens = json.loads(raw or "{}")
        except ValueError as e:
            raise ConfigurationError(f"AUTH_TOKENS is not valid JSON: {e}", setting="AUTH_TOKENS") from e
        if not isinstance(tokens, dict) or not all(
            isinstance(info, dict) and info.get("uid") for info in tokens.values()
        ):
            raise ConfigurationError(
                "AUTH_TOKENS must map each token to an object with a uid",
                setting="AUTH_TOKENS",
            )
        return cls(tokens)

    def resolve(self, authorization_header: Optional[str]) -> Principal:
        """
        Resolve an Authorization header value.

        Raises:
            AuthenticationError: Missing header, wrong scheme, or unknown token
        """
        if not authorization_header or not authorization_header.startswith("Bearer "):
            raise AuthenticationError()
        token = authorization_header[len("Bearer "):].strip()
        principal = self._principals.get(token)
        if principal is None:
            raise AuthenticationError("Invalid or expired token")
        return principal


def require_admin(principal: Principal) -> Principal:
    """Raise PermissionDeniedError unless the caller is an admin."""
    if not principal.is_admin:
        raise PermissionDeniedError()
    return principal
