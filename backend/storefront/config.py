# backend/storefront/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Commerce defaults
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")
    CART_TTL_DAYS = int(os.environ.get("CART_TTL_DAYS", "30"))
    DOWNLOAD_TOKEN_LENGTH = int(os.environ.get("DOWNLOAD_TOKEN_LENGTH", "32"))

    # Blob storage for digital goods; None keeps files in process memory
    OBJECT_STORE_PATH = os.environ.get("OBJECT_STORE_PATH")

    # Offline "custom" gateway (manual / pay-on-delivery)
    ENABLE_MANUAL_GATEWAY = _env_bool("ENABLE_MANUAL_GATEWAY", True)

    # Comma-separated browser origins allowed to call the API
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if origin.strip()
    ]
