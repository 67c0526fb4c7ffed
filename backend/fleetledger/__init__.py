# backend/fleetledger/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, collection_cache


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("fleetledger").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    collection_cache.clear()

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.fuel import fuel_bp
    from .routes.stock import stock_bp
    from .routes.balances import drivers_bp, snapshots_bp
    from .routes.periods import periods_bp
    from .routes.waybills import waybills_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(fuel_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(drivers_bp)
    app.register_blueprint(snapshots_bp)
    app.register_blueprint(periods_bp)
    app.register_blueprint(waybills_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
