# backend/storefront/__init__.py
from __future__ import annotations

import os

from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .gateways import GATEWAY_CUSTOM, GatewayRegistry, ManualGateway
from .storage import LocalObjectStore, MemoryObjectStore


MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def _build_gateways(app: Flask) -> GatewayRegistry:
    registry = GatewayRegistry()
    if app.config.get("ENABLE_MANUAL_GATEWAY", True):
        registry.register(GATEWAY_CUSTOM, ManualGateway())
    return registry


def _build_object_store(app: Flask):
    root = app.config.get("OBJECT_STORE_PATH")
    if root:
        return LocalObjectStore(root)
    app.logger.warning("OBJECT_STORE_PATH not set; digital files are kept in memory")
    return MemoryObjectStore()


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Per-app collaborators; tests may replace either after create_app()
    app.extensions["gateways"] = _build_gateways(app)
    app.extensions["object_store"] = _build_object_store(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stores import stores_bp
    from .routes.products import products_bp
    from .routes.carts import carts_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.downloads import downloads_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(carts_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(downloads_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
