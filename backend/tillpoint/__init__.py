# backend/tillpoint/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import SUBSCRIPTION_GATE_KEY, db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # The busy timeout is a sqlite3 connect() argument; other drivers reject it
    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        options.pop("connect_args", None)
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Subscription gate: replaceable per app (tests install their own)
    if SUBSCRIPTION_GATE_KEY not in app.extensions:
        from .services.tenant_service import StoreSubscriptionGate
        app.extensions[SUBSCRIPTION_GATE_KEY] = app.config.get("SUBSCRIPTION_GATE") or StoreSubscriptionGate(
            grace_days=app.config["TILLPOINT_SUBSCRIPTION_GRACE_DAYS"],
        )

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.inventory import inventory_bp
    from .routes.offline import offline_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(offline_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
