"""
Configuration for the print fulfillment service.

Values are read from the environment (a ``.env`` file is loaded first).
Broker credentials are required unless MIXAM_MOCK_MODE is enabled, in which
case submissions go to an in-process mock broker and never leave the host.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # JSON bodies only
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    TESTING = False

    # ==========================================================================
    # Mixam broker
    # ==========================================================================
    MIXAM_API_BASE_URL = os.environ.get("MIXAM_API_BASE_URL", "https://mixam.co.uk")
    MIXAM_USERNAME = os.environ.get("MIXAM_USERNAME", "")
    MIXAM_PASSWORD = os.environ.get("MIXAM_PASSWORD", "")
    MIXAM_MOCK_MODE = _env_flag("MIXAM_MOCK_MODE")
    MIXAM_TIMEOUT_SECONDS = float(os.environ.get("MIXAM_TIMEOUT_SECONDS", "30"))

    # TEST_ORDER | ACCOUNT | CARD_ON_FILE
    MIXAM_PAYMENT_METHOD = os.environ.get("MIXAM_PAYMENT_METHOD", "ACCOUNT")

    # Status callbacks: explicit URL wins, else APP_URL + /webhooks/mixam
    APP_URL = os.environ.get("APP_URL", "http://localhost:5000")
    MIXAM_WEBHOOK_URL = os.environ.get("MIXAM_WEBHOOK_URL", "")
    MIXAM_WEBHOOK_SECRET = os.environ.get("MIXAM_WEBHOOK_SECRET", "")

    # JSON object with name/line1/city/postalCode/... used as the billing
    # and invoice address. Empty means "same as delivery address".
    MIXAM_BILLING_ADDRESS = os.environ.get("MIXAM_BILLING_ADDRESS", "")

    # ==========================================================================
    # Storage
    # ==========================================================================
    # Directory holding one JSON document per order. Empty = in-memory store.
    ORDER_STORE_PATH = os.environ.get("ORDER_STORE_PATH", "")
    CATALOG_PATH = os.environ.get("CATALOG_PATH", str(BASE_DIR / "data" / "catalog.json"))
    STRICT_VERSIONING = _env_flag("STRICT_VERSIONING")

    # ==========================================================================
    # Authentication
    # ==========================================================================
    # JSON map of bearer token -> {"uid": ..., "email": ..., "isAdmin": bool}
    AUTH_TOKENS = os.environ.get("AUTH_TOKENS", "{}")


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    MIXAM_MOCK_MODE = True
    MIXAM_WEBHOOK_SECRET = ""
    ORDER_STORE_PATH = ""
    CATALOG_PATH = ""
    AUTH_TOKENS = "{}"
