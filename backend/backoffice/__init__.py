# backend/backoffice/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger(__name__).setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.transfers import transfers_bp
    from .routes.returns import returns_bp
    from .routes.return_policies import return_policies_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(return_policies_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
