"""
Print-broker protocol adapter for the Mixam public API.

Four operations, each returning a normalized result from models.broker:

    submit_order(document)        POST /api/public/orders
    confirm_order(order_id)       POST /api/public/orders/{id}/confirm
    cancel_order(order_id)        PUT  /api/public/orders/{id}/status  (body "CANCELED")
    get_order_status(lookup_id)   GET  /api/public/orders/{id}
                                  fallback: GET /api/public/user/orders, search by id/orderNumber

TRACE CONTRACT:
    Every HTTP round trip (token fetch included) appends a BrokerInteraction
    to the call's trace. On success the trace rides on the result's
    ``interactions``; on failure it rides on the raised BrokerError. Callers
    must persist it either way.

AUTHENTICATION:
    GET /api/user/token with HTTP basic credentials returns a JWT (plain
    text, or JSON {"token": ...}). The token is cached until five minutes
    before its ``exp`` claim (23 hours when the claim cannot be read).

MOCK MODE:
    MockMixamClient implements the same interface in-process with
    deterministic IDs derived from the external order ID. Used when
    MIXAM_MOCK_MODE is set, so the whole pipeline can run without broker
    credentials.

Usage:
    client = MixamClient(base_url, username, password, timeout=30)
    result = client.submit_order(document)
    interaction_logger.record(order_id, result.interactions, result.order_id)
"""

from __future__ import annotations

import base64
import hashlib
import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.auth import HTTPBasicAuth

from core.exceptions import BrokerError, ConfigurationError
from models.broker import (
    BrokerInteraction,
    CancelResult,
    ConfirmResult,
    OrderStatusResult,
    SubmitResult,
)
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


SUMMARY_LIMIT = 500
TOKEN_REFRESH_BUFFER_SECONDS = 5 * 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 23 * 60 * 60


def summarize_payload(payload: Any, limit: int = SUMMARY_LIMIT) -> str:
    """Compact, truncated text form of a request/response body for the audit trail."""
    if payload is None or payload == "":
        return ""
    if isinstance(payload, (dict, list)):
        text = json.dumps(payload, separators=(",", ":"), default=str)
    else:
        text = str(payload)
    if len(text) > limit:
        return text[:limit] + "...[truncated]"
    return text


def jwt_expiry(token: str) -> Optional[float]:
    """Epoch seconds from a JWT's ``exp`` claim, or None if unreadable."""
    try:
        payload_part = token.split(".")[1]
        padded = payload_part + "=" * (-len(payload_part) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (IndexError, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    return float(exp) if exp else None


# =============================================================================
# INTERFACE
# =============================================================================

class PrintBrokerClient(ABC):
    """Operations the fulfillment pipeline needs from a print broker."""

    @abstractmethod
    def submit_order(self, document: Dict[str, Any]) -> SubmitResult:
        """Hand a job document to the broker."""

    @abstractmethod
    def confirm_order(self, order_id: str) -> ConfirmResult:
        """Release a submitted order for production."""

    @abstractmethod
    def cancel_order(self, order_id: str) -> CancelResult:
        """Cancel an order that has not entered production."""

    @abstractmethod
    def get_order_status(self, lookup_id: str) -> OrderStatusResult:
        """Fetch current broker status by order ID or job number."""


# =============================================================================
# HTTP CLIENT
# =============================================================================

class MixamClient(PrintBrokerClient):
    """
    Thread-safe HTTP client for the Mixam public API.

    One instance is shared by all request threads; the token cache is
    guarded by a lock and ``requests.Session`` is used only for
    connection pooling.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Broker root URL (e.g. https://mixam.co.uk)
            username: API account username
            password: API account password
            timeout: Per-request timeout in seconds
            session: Optional preconfigured session (tests inject a mock)

        Raises:
            ConfigurationError: If credentials are missing
        """
        if not username or not password:
            raise ConfigurationError(
                "Mixam credentials not configured. Set MIXAM_USERNAME and MIXAM_PASSWORD, "
                "or enable MIXAM_MOCK_MODE",
                setting="MIXAM_USERNAME",
            )
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()

        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _send(
        self,
        action: str,
        method: str,
        path: str,
        trace: List[BrokerInteraction],
        json_body: Optional[Dict[str, Any]] = None,
        text_body: Optional[str] = None,
        auth: Optional[HTTPBasicAuth] = None,
        bearer: Optional[str] = None,
    ) -> requests.Response:
        """
        Perform one HTTP round trip and record it in ``trace``.

        Non-2xx responses are returned (and recorded) as-is; only transport
        failures raise here.
        """
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        if text_body is not None:
            headers["Content-Type"] = "text/plain"

        request_summary = summarize_payload(json_body if json_body is not None else text_body)
        started = time.monotonic()
        try:
            response = self.session.request(
                method,
                url,
                json=json_body,
                data=text_body,
                headers=headers,
                auth=auth,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            message = f"Network error calling Mixam API ({url}): {e}"
            logger.error(message)
            trace.append(BrokerInteraction(
                action=action,
                method=method,
                endpoint=path,
                payload_summary=request_summary,
                error_message=message,
                duration_ms=duration_ms,
            ))
            raise BrokerError(message, interactions=trace) from e

        duration_ms = int((time.monotonic() - started) * 1000)
        response_summary = "" if action == "authenticate" else summarize_payload(response.text)
        error_message = None if response.ok else self._broker_message(response)

        trace.append(BrokerInteraction(
            action=action,
            method=method,
            endpoint=path,
            payload_summary=" -> ".join(part for part in (request_summary, response_summary) if part),
            http_status=response.status_code,
            error_message=error_message,
            duration_ms=duration_ms,
        ))
        logger.debug(f"Mixam {method} {path} -> {response.status_code} in {duration_ms}ms")
        return response

    @staticmethod
    def _broker_message(response: requests.Response) -> str:
        """Broker's own error text: message/error/reason from JSON, else the raw body."""
        raw = response.text or ""
        try:
            data = response.json()
        except ValueError:
            return raw.strip() or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            for key in ("message", "error", "reason"):
                if data.get(key):
                    return str(data[key])
        return raw.strip() or f"HTTP {response.status_code}"

    @staticmethod
    def _json(response: requests.Response, trace: List[BrokerInteraction]) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise BrokerError(
                f"Mixam returned a non-JSON response ({response.status_code})",
                status_code=response.status_code,
                interactions=trace,
            ) from e
        return data if isinstance(data, dict) else {"items": data}

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def authenticate(self, trace: List[BrokerInteraction]) -> str:
        """
        Return a valid bearer token, fetching a new one when the cache is stale.

        Raises:
            BrokerError: If the token endpoint fails or returns no JWT
        """
        with self._token_lock:
            if self._token and self._token_expires_at > time.time() + TOKEN_REFRESH_BUFFER_SECONDS:
                return self._token

            logger.info("Requesting new Mixam API token")
            response = self._send(
                "authenticate", "GET", "/api/user/token", trace,
                auth=HTTPBasicAuth(self.username, self.password),
            )
            if not response.ok:
                raise BrokerError(
                    f"Mixam authentication failed ({response.status_code}): {self._broker_message(response)}",
                    status_code=response.status_code,
                    interactions=trace,
                )

            text = (response.text or "").strip()
            try:
                parsed = json.loads(text)
                token = parsed.get("token", text) if isinstance(parsed, dict) else text
            except ValueError:
                token = text

            if not token or not token.startswith("eyJ"):
                raise BrokerError(
                    "Mixam authentication response does not contain a valid JWT token",
                    status_code=response.status_code,
                    interactions=trace,
                )

            expires_at = jwt_expiry(token)
            if expires_at is None:
                logger.warning("Could not read JWT expiry, assuming 23 hours")
                expires_at = time.time() + DEFAULT_TOKEN_LIFETIME_SECONDS

            self._token = token
            self._token_expires_at = expires_at
            logger.info(f"Mixam token cached, expires in {int((expires_at - time.time()) / 60)} minutes")
            return token

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def submit_order(self, document: Dict[str, Any]) -> SubmitResult:
        trace: List[BrokerInteraction] = []
        token = self.authenticate(trace)
        external_id = (document.get("metadata") or {}).get("externalOrderId", "")
        logger.info(f"Submitting order {external_id} to Mixam")

        response = self._send("submit", "POST", "/api/public/orders", trace, json_body=document, bearer=token)
        if not response.ok:
            raise BrokerError(
                f"Order submission failed: {response.status_code} - {self._broker_message(response)}",
                status_code=response.status_code,
                interactions=trace,
            )

        data = self._json(response, trace)
        order_data = data.get("order") or data
        order_id = order_data.get("id") or order_data.get("orderId")
        if not order_id:
            raise BrokerError(
                "Mixam accepted the order but returned no order ID",
                status_code=response.status_code,
                interactions=trace,
            )

        job_number = order_data.get("orderNumber") or order_data.get("jobNumber")
        result = SubmitResult(
            order_id=str(order_id),
            job_number=str(job_number) if job_number else None,
            status=order_data.get("orderStatus") or order_data.get("status") or "INIT",
            raw=order_data,
            interactions=tuple(trace),
        )
        logger.info(f"Mixam accepted order {external_id}: id={result.order_id}, job={result.job_number}")
        return result

    def confirm_order(self, order_id: str) -> ConfirmResult:
        trace: List[BrokerInteraction] = []
        token = self.authenticate(trace)

        response = self._send("confirm", "POST", f"/api/public/orders/{order_id}/confirm", trace, bearer=token)
        if not response.ok:
            raise BrokerError(
                f"Failed to confirm order ({response.status_code}): {self._broker_message(response)}",
                status_code=response.status_code,
                interactions=trace,
            )

        data = self._json(response, trace) if response.text else {}
        order_data = data.get("order") or data
        status = order_data.get("orderStatus") or order_data.get("status") or "CONFIRMED"
        return ConfirmResult(order_id=order_id, status=status, interactions=tuple(trace))

    def cancel_order(self, order_id: str) -> CancelResult:
        trace: List[BrokerInteraction] = []
        token = self.authenticate(trace)

        response = self._send(
            "cancel", "PUT", f"/api/public/orders/{order_id}/status", trace,
            text_body="CANCELED", bearer=token,
        )
        if not response.ok:
            message = self._broker_message(response)
            if response.status_code == 409:
                text = f"Order cannot be cancelled: {message}"
            elif response.status_code == 404:
                text = f"Order not found: {order_id}"
            elif response.status_code == 400:
                text = f"Invalid cancel request: {message}"
            else:
                text = f"Failed to cancel order ({response.status_code}): {message}"
            raise BrokerError(text, status_code=response.status_code, interactions=trace)

        data = self._json(response, trace) if response.text else {}
        return CancelResult(
            order_id=str(data.get("orderId") or order_id),
            status=data.get("status") or "CANCELED",
            interactions=tuple(trace),
        )

    def get_order_status(self, lookup_id: str) -> OrderStatusResult:
        trace: List[BrokerInteraction] = []
        token = self.authenticate(trace)

        response = self._send("get_status", "GET", f"/api/public/orders/{lookup_id}", trace, bearer=token)
        if response.ok:
            data = self._json(response, trace)
            return self._status_result(lookup_id, data.get("order") or data, trace)

        logger.info(f"Single order lookup for {lookup_id} returned {response.status_code}, searching order list")
        response = self._send("get_status", "GET", "/api/public/user/orders", trace, bearer=token)
        if not response.ok:
            raise BrokerError(
                f"Failed to get orders: {response.status_code} - {self._broker_message(response)}",
                status_code=response.status_code,
                interactions=trace,
            )

        orders = self._order_list(self._json(response, trace))
        for order_data in orders:
            if str(order_data.get("id")) == lookup_id or str(order_data.get("orderNumber")) == lookup_id:
                return self._status_result(lookup_id, order_data, trace)

        raise BrokerError(
            f"Order {lookup_id} not found in Mixam orders list",
            status_code=404,
            interactions=trace,
        )

    @staticmethod
    def _order_list(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        for key in ("items", "orders", "content"):
            if isinstance(data.get(key), list):
                return data[key]
        for value in data.values():
            if isinstance(value, list):
                return value
        return []

    @staticmethod
    def _status_result(lookup_id: str, order_data: Dict[str, Any], trace: List[BrokerInteraction]) -> OrderStatusResult:
        tracking_url = order_data.get("trackingUrl")
        shipments = order_data.get("shipments") or []
        if not tracking_url and shipments:
            tracking_url = shipments[0].get("trackingUrl")

        job_number = order_data.get("orderNumber") or order_data.get("jobNumber")
        return OrderStatusResult(
            order_id=str(order_data.get("id") or lookup_id),
            status=order_data.get("orderStatus") or order_data.get("status") or "",
            job_number=str(job_number) if job_number else None,
            status_reason=order_data.get("statusReason"),
            tracking_url=tracking_url,
            estimated_delivery=order_data.get("estimatedDelivery"),
            artwork_errors=list(order_data.get("artworkErrors") or []),
            interactions=tuple(trace),
        )


# =============================================================================
# MOCK BROKER
# =============================================================================

class MockMixamClient(PrintBrokerClient):
    """
    In-process broker for development and demos.

    Orders get IDs derived from their external order ID, so resubmitting the
    same local order yields the same broker IDs. Status moves only when the
    mock is told to (``set_status``) or by confirm/cancel.
    """

    PRODUCTION_STATUSES = frozenset({"INPRODUCTION", "IN_PRODUCTION", "PRINTED", "DISPATCHED", "SHIPPED", "DELIVERED"})

    def __init__(self):
        self._orders: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _interaction(action: str, method: str, path: str, status: int = 200,
                     payload: Any = None, error: Optional[str] = None) -> Tuple[BrokerInteraction, ...]:
        return (BrokerInteraction(
            action=action,
            method=method,
            endpoint=path,
            payload_summary=summarize_payload(payload),
            http_status=status,
            error_message=error,
            duration_ms=0,
        ),)

    def set_status(self, order_id: str, status: str, tracking_url: Optional[str] = None) -> None:
        """Move a mock order to a new broker status."""
        with self._lock:
            order = self._orders[order_id]
            order["status"] = status
            if tracking_url:
                order["trackingUrl"] = tracking_url

    def submit_order(self, document: Dict[str, Any]) -> SubmitResult:
        external_id = (document.get("metadata") or {}).get("externalOrderId", "unknown")
        digest = hashlib.sha1(external_id.encode("utf-8")).hexdigest()
        order_id = f"MOCK-{digest[:12]}"
        job_number = f"MXM{int(digest[:8], 16) % 900000 + 100000}"

        with self._lock:
            self._orders[order_id] = {"id": order_id, "orderNumber": job_number, "status": "PENDING"}

        logger.info(f"[mock] Accepted order {external_id} as {order_id}")
        return SubmitResult(
            order_id=order_id,
            job_number=job_number,
            status="PENDING",
            raw={"id": order_id, "orderNumber": job_number, "orderStatus": "PENDING", "mock": True},
            interactions=self._interaction("submit", "POST", "/api/public/orders",
                                           payload={"externalOrderId": external_id, "id": order_id}),
        )

    def _lookup(self, action: str, method: str, path: str, lookup_id: str) -> Dict[str, Any]:
        with self._lock:
            for order in self._orders.values():
                if lookup_id in (order["id"], order["orderNumber"]):
                    return order
        raise BrokerError(
            f"Order not found: {lookup_id}",
            status_code=404,
            interactions=self._interaction(action, method, path, status=404, error="Order not found"),
        )

    def confirm_order(self, order_id: str) -> ConfirmResult:
        path = f"/api/public/orders/{order_id}/confirm"
        order = self._lookup("confirm", "POST", path, order_id)
        with self._lock:
            order["status"] = "CONFIRMED"
        return ConfirmResult(order_id=order_id, status="CONFIRMED",
                             interactions=self._interaction("confirm", "POST", path, payload=order))

    def cancel_order(self, order_id: str) -> CancelResult:
        path = f"/api/public/orders/{order_id}/status"
        order = self._lookup("cancel", "PUT", path, order_id)
        if order["status"] in self.PRODUCTION_STATUSES:
            message = "Order cannot be cancelled: Order is already in production"
            raise BrokerError(message, status_code=409,
                              interactions=self._interaction("cancel", "PUT", path, status=409, error=message))
        with self._lock:
            order["status"] = "CANCELED"
        return CancelResult(order_id=order_id, status="CANCELED",
                            interactions=self._interaction("cancel", "PUT", path, payload="CANCELED"))

    def get_order_status(self, lookup_id: str) -> OrderStatusResult:
        path = f"/api/public/orders/{lookup_id}"
        order = dict(self._lookup("get_status", "GET", path, lookup_id))
        return OrderStatusResult(
            order_id=order["id"],
            status=order["status"],
            job_number=order["orderNumber"],
            tracking_url=order.get("trackingUrl"),
            interactions=self._interaction("get_status", "GET", path, payload=order),
        )
