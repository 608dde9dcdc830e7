"""
Shared request helpers for the JSON blueprints.

- sanitize_text / sanitize_mapping: strip markup from free-text input
- current_principal: resolve the bearer token on the current request
- service: fetch a service object stored in app.config by create_app
- ok: standard success envelope {"ok": true, ...}
"""

import html
from typing import Any, Dict, Optional

import bleach
from flask import current_app, jsonify, request

from core.auth import Principal
from core.exceptions import ValidationError


MAX_TEXT_LENGTH = 500
MAX_REASON_LENGTH = 1000
MAX_UNESCAPE_PASSES = 4


def sanitize_text(text: Any, max_length: Optional[int] = MAX_TEXT_LENGTH) -> str:
    """
    Sanitize user input text to prevent XSS and injection attacks.

    Args:
        text: Raw input value (non-strings are converted)
        max_length: Optional maximum length to enforce

    Returns:
        Plain text with markup removed and entities decoded
    """
    if text is None or text == "":
        return ""

    text = str(text).strip()

    # Strip markup, then undo bleach's entity escaping so "&" survives.
    # Repeat until stable so entity-encoded tags are stripped too.
    for _ in range(MAX_UNESCAPE_PASSES):
        cleaned = html.unescape(bleach.clean(text, tags=[], strip=True))
        if cleaned == text:
            break
        text = cleaned
    else:
        text = bleach.clean(text, tags=[], strip=True)

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


def sanitize_mapping(data: Any, max_length: Optional[int] = MAX_TEXT_LENGTH) -> Any:
    """Recursively sanitize the string values of a JSON object."""
    if isinstance(data, dict):
        return {key: sanitize_mapping(value, max_length) for key, value in data.items()}
    if isinstance(data, list):
        return [sanitize_mapping(value, max_length) for value in data]
    if isinstance(data, str):
        return sanitize_text(data, max_length)
    return data


def json_body() -> Dict[str, Any]:
    """Request JSON object (empty dict for an empty body)."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def service(name: str) -> Any:
    return current_app.config[name]


def current_principal() -> Principal:
    """Raises AuthenticationError when the request carries no valid token."""
    return service("AUTHENTICATOR").resolve(request.headers.get("Authorization"))


def ok(status: int = 200, **data: Any):
    return jsonify({"ok": True, **data}), status
