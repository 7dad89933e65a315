# Overview: Application factory wiring config, extensions, models, logging and CLI.

from __future__ import annotations

import logging
from typing import Any, Mapping

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: Mapping[str, Any] | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before db.init_app reads SQLALCHEMY_DATABASE_URI
    if test_config:
        app.config.update(test_config)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def _configure_logging(app: Flask) -> None:
    logger = logging.getLogger(__name__)
    logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    if not logger.handlers and not app.config.get("TESTING"):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logger.addHandler(handler)
