# guildsite/__init__.py
import os
import logging
from flask import Flask

from .models import db, build_schema  # <- single SQLAlchemy() instance
from .config import ConfigurationError, DatabaseConfig
from .database import EXTENSION_KEY
from .dialect import PRODUCTION_MYSQL_HOST, Dialect, resolve_dialect
from .migrator import apply_migrations_safely
from .oplog import log_operation_quietly

from .auth import auth_bp, login_manager
from .php_simulation import php_bp
from .api_admin import admin_api
from .middleware import register_error_handlers, register_request_logging

__all__ = ["create_app", "ConfigurationError"]


def create_app(config=None):
    """Build the Flask app.

    The dialect is resolved once here and stored on ``app.extensions``.
    An explicit ``SQLALCHEMY_DATABASE_URI`` in ``config`` skips the
    environment lookup; otherwise a missing connection setting raises
    ``ConfigurationError`` and the app does not start.
    """
    overrides = dict(config or {})
    app = Flask(__name__)

    db_type = overrides.pop("DB_TYPE", None)
    dialect = Dialect(db_type) if db_type else resolve_dialect()

    db_uri = overrides.get("SQLALCHEMY_DATABASE_URI")
    engine_options = {}
    safe_uri = db_uri
    if not db_uri:
        db_config = DatabaseConfig.from_env(dialect)
        db_uri, safe_uri = db_config.uri, db_config.safe_uri
        engine_options = db_config.engine_options()

    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY") or os.environ.get("SESSION_SECRET", "dev"),
        SQLALCHEMY_DATABASE_URI=db_uri,
        SQLALCHEMY_ENGINE_OPTIONS=engine_options,
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SESSION_COOKIE_SAMESITE="Lax",
        RUN_MIGRATIONS=os.environ.get("RUN_MIGRATIONS", "1") == "1",
        MIGRATIONS_DIR=os.environ.get("MIGRATIONS_DIR"),
        PRODUCTION_HOST=os.environ.get("PRODUCTION_HOST", PRODUCTION_MYSQL_HOST),
        PRODUCTION_OVERRIDE=None,
        BNET_LOGIN_URL=os.environ.get("BNET_LOGIN_URL"),
        REQUEST_LOGGING=True,
    )
    app.config.update(overrides)

    schema = build_schema(dialect)
    app.extensions[EXTENSION_KEY] = {"dialect": dialect, "schema": schema}

    db.init_app(app)
    login_manager.init_app(app)

    # Helpful startup log
    app.logger.setLevel(logging.INFO)
    app.logger.info("Database dialect: %s", dialect.value)
    app.logger.info("DB URI: %s", safe_uri)
    app.logger.info("RUN_MIGRATIONS=%s", app.config["RUN_MIGRATIONS"])

    if app.config["RUN_MIGRATIONS"]:
        with app.app_context():
            apply_migrations_safely(
                db.engine, dialect, app.config["MIGRATIONS_DIR"], record=log_operation_quietly,
            )

    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(php_bp)
    app.register_blueprint(admin_api)

    register_request_logging(app)
    register_error_handlers(app)

    @app.get("/api/health")
    def health():
        return {"ok": True, "dialect": dialect.value}

    return app
