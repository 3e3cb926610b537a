import logging
import os
from typing import Any

from flask import Flask, jsonify
from sqlalchemy.pool import StaticPool

from .blueprints_registry import register_blueprints
from .config import ENV_DIAGNOSTICS
from .extensions import db, migrate
from .logging_config import configure_logging
from .resilience import register_resilience_handlers

logger = logging.getLogger(__name__)


def create_app(config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    os.makedirs(app.instance_path, exist_ok=True)

    _load_base_config(app, config)
    _apply_sqlalchemy_env_overrides(app)
    _configure_sqlite_engine_options(app)

    db.init_app(app)
    migrate.init_app(app, db)

    register_blueprints(app)
    from . import models  # noqa: F401  # ensure models registered for Alembic

    _add_core_routes(app)
    configure_logging(app)
    register_resilience_handlers(app)

    from .management import register_commands

    register_commands(app)
    _run_optional_create_all(app)

    return app


def _load_base_config(app: Flask, config: dict[str, Any] | None) -> None:
    app.config.from_object("fuelcost.config.Config")
    if config:
        app.config.update(config)
    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS
    for warning in ENV_DIAGNOSTICS.get("warnings", ()):
        logger.warning("Environment configuration warning: %s", warning)

    if config and "DATABASE_URL" in config:
        app.config["SQLALCHEMY_DATABASE_URI"] = config["DATABASE_URL"]


def _apply_sqlalchemy_env_overrides(app: Flask) -> None:
    engine_opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}) or {})
    changed = False

    def _apply_int(env_key: str, option_key: str):
        nonlocal changed
        value = os.environ.get(env_key)
        if value in (None, ""):
            return
        try:
            engine_opts[option_key] = int(value)
            changed = True
        except ValueError:
            logger.warning("Invalid integer for %s: %s", env_key, value)

    def _apply_float(env_key: str, option_key: str):
        nonlocal changed
        value = os.environ.get(env_key)
        if value in (None, ""):
            return
        try:
            engine_opts[option_key] = float(value)
            changed = True
        except ValueError:
            logger.warning("Invalid float for %s: %s", env_key, value)

    _apply_int("SQLALCHEMY_POOL_SIZE", "pool_size")
    _apply_int("SQLALCHEMY_MAX_OVERFLOW", "max_overflow")
    _apply_float("SQLALCHEMY_POOL_TIMEOUT", "pool_timeout")

    if changed:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_opts


def _configure_sqlite_engine_options(app):
    """Configure SQLite engine options for testing/memory databases"""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "") or ""
    if app.config.get("TESTING") or uri.startswith("sqlite"):
        opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
        # SQLite pools reject the sizing arguments used for Postgres
        opts.pop("pool_size", None)
        opts.pop("max_overflow", None)
        opts.pop("pool_timeout", None)
        if uri.startswith("sqlite"):
            # Pooled connections move between request threads
            opts["connect_args"] = {"check_same_thread": False}
        if uri == "sqlite:///:memory:":
            opts["poolclass"] = StaticPool
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


def _run_optional_create_all(app: Flask) -> None:
    def _env_flag(key: str):
        value = os.environ.get(key)
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        return None

    create_all_flag = _env_flag("SQLALCHEMY_CREATE_ALL")
    if create_all_flag is None:
        logger.info("db.create_all() not enabled; Alembic migrations are the source of truth")
        return
    if create_all_flag is False:
        logger.info("db.create_all() disabled via SQLALCHEMY_CREATE_ALL=0")
        return

    logger.info("Local dev: creating tables via db.create_all() (SQLALCHEMY_CREATE_ALL)")
    with app.app_context():
        db.create_all()
        logger.info("Database tables created/verified")


def _add_core_routes(app):
    """Add core application routes"""
    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "environment": app.config.get("ENV_DIAGNOSTICS", {}).get("active")})
