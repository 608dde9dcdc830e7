"""
Print Fulfillment Service - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration (fail-fast on bad settings)
2. Builds the order store, broker client and services
3. Registers route blueprints
4. Sets up error handlers

ARCHITECTURE:
    Request thread
    ├── routes (authenticate, sanitize input)
    ├── OrderService / FulfillmentService / StatusReconciler
    │   ├── OrderRepository   (document store, audit rules)
    │   ├── PrintBrokerClient (Mixam HTTP API, or in-process mock)
    │   └── NotificationDispatcher (best-effort events)
    └── FulfillmentError handler -> {"ok": false, "error": ...}

Broker calls are synchronous; there is no background worker.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from core.auth import TokenAuthenticator
from core.exceptions import ConfigurationError, FulfillmentError
from core.mixam_client import MixamClient, MockMixamClient, PrintBrokerClient
from modules.mxjdf_builder import PAYMENT_METHODS
from modules.validation import PrintValidator
from routes import register_blueprints
from services.catalog import ProductCatalog, StorybookAssetStore, load_catalog
from services.fulfillment_service import FulfillmentService, SubmissionSettings
from services.interaction_logger import InteractionLogger
from services.notifications import NotificationDispatcher, log_event_handler
from services.order_service import OrderService
from services.order_store import InMemoryOrderRepository, JsonFileOrderRepository, OrderRepository
from services.reconciler import WEBHOOK_PATH, StatusReconciler


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _billing_address(raw: str) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        address = json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"MIXAM_BILLING_ADDRESS is not valid JSON: {e}",
                                 setting="MIXAM_BILLING_ADDRESS") from e
    if not isinstance(address, dict):
        raise ConfigurationError("MIXAM_BILLING_ADDRESS must be a JSON object", setting="MIXAM_BILLING_ADDRESS")
    return address


def _webhook_url(config) -> Optional[str]:
    """Explicit MIXAM_WEBHOOK_URL, else APP_URL + /webhooks/mixam."""
    if config.get("MIXAM_WEBHOOK_URL"):
        return config["MIXAM_WEBHOOK_URL"]
    if config.get("APP_URL"):
        return config["APP_URL"].rstrip("/") + WEBHOOK_PATH
    return None


def _build_broker(config) -> PrintBrokerClient:
    if config.get("MIXAM_MOCK_MODE"):
        logger.warning("MIXAM_MOCK_MODE enabled: orders are sent to the in-process mock broker")
        return MockMixamClient()
    return MixamClient(
        config["MIXAM_API_BASE_URL"],
        config["MIXAM_USERNAME"],
        config["MIXAM_PASSWORD"],
        timeout=config.get("MIXAM_TIMEOUT_SECONDS", 30.0),
    )


def _build_repository(config) -> OrderRepository:
    strict = bool(config.get("STRICT_VERSIONING"))
    if config.get("ORDER_STORE_PATH"):
        return JsonFileOrderRepository(Path(config["ORDER_STORE_PATH"]), strict_versioning=strict)
    logger.warning("ORDER_STORE_PATH not set: orders are kept in memory and lost on restart")
    return InMemoryOrderRepository(strict_versioning=strict)


def create_app(
    config_object: str = "config.Config",
    overrides: Optional[Dict[str, Any]] = None,
    repository: Optional[OrderRepository] = None,
    broker: Optional[PrintBrokerClient] = None,
    catalog: Optional[ProductCatalog] = None,
    assets: Optional[StorybookAssetStore] = None,
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: bad configuration (missing broker credentials outside mock
    mode, malformed JSON settings, unreadable catalog) stops startup.

    Args:
        config_object: Import path of the config class
        overrides: Settings applied over the config class (tests)
        repository / broker / catalog / assets: Prebuilt collaborators (tests)

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: If settings are missing or malformed
    """
    load_dotenv(override=True)

    app = Flask(__name__)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting print fulfillment service in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CORE INITIALIZATION (FAIL-FAST)
    # =========================================================================

    payment_method = app.config.get("MIXAM_PAYMENT_METHOD", "ACCOUNT")
    if payment_method not in PAYMENT_METHODS:
        raise ConfigurationError(
            f"MIXAM_PAYMENT_METHOD must be one of {', '.join(PAYMENT_METHODS)}",
            setting="MIXAM_PAYMENT_METHOD",
        )

    authenticator = TokenAuthenticator.from_config(app.config.get("AUTH_TOKENS", "{}"))
    repository = repository or _build_repository(app.config)
    broker = broker or _build_broker(app.config)
    if catalog is None or assets is None:
        loaded_catalog, loaded_assets = load_catalog(app.config.get("CATALOG_PATH"))
        catalog = catalog or loaded_catalog
        assets = assets or loaded_assets

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    notifier = NotificationDispatcher()
    notifier.subscribe(log_event_handler)

    interaction_logger = InteractionLogger(repository)
    validator = PrintValidator()
    reconciler = StatusReconciler(
        repository,
        broker,
        interaction_logger,
        notifier,
        webhook_secret=app.config.get("MIXAM_WEBHOOK_SECRET", ""),
    )
    settings = SubmissionSettings(
        payment_method=payment_method,
        status_callback_url=_webhook_url(app.config),
        billing_address=_billing_address(app.config.get("MIXAM_BILLING_ADDRESS", "")),
    )

    # Store in app config for access by routes
    app.config["AUTHENTICATOR"] = authenticator
    app.config["ORDER_REPOSITORY"] = repository
    app.config["BROKER"] = broker
    app.config["CATALOG"] = catalog
    app.config["ASSETS"] = assets
    app.config["NOTIFIER"] = notifier
    app.config["RECONCILER"] = reconciler
    app.config["ORDER_SERVICE"] = OrderService(repository, catalog, assets, notifier, validator)
    app.config["FULFILLMENT_SERVICE"] = FulfillmentService(
        repository,
        broker,
        interaction_logger,
        notifier,
        reconciler,
        validator=validator,
        settings=settings,
    )
    logger.info(f"Services initialized (broker: {type(broker).__name__}, store: {type(repository).__name__})")

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(FulfillmentError)
    def handle_fulfillment_error(e: FulfillmentError):
        if e.http_status >= 500:
            logger.error(f"{type(e).__name__}: {e.message}")
        else:
            logger.info(f"{type(e).__name__} ({e.http_status}): {e.message}")
        return jsonify(e.to_response()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"ok": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_server_error(e: Exception):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"ok": False, "error": "An unexpected error occurred"}), 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
