"""
TestHub UAT Review Engine
Flask application factory.

    from testhub import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from testhub.config import config
from testhub.middleware.logging_config import configure_logging
from testhub.middleware.rate_limiter import init_rate_limits
from testhub.middleware.security_headers import init_security_headers
from testhub.middleware.timing import init_request_timing
from testhub.models import db
from testhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
# Limits are attached per blueprint in init_rate_limits
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """Cascading deletes of sessions rely on FK enforcement, which SQLite leaves off."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Build the application for ``config_name``.

    Args:
        config_name: "development", "testing" or "production"; falls back
                     to APP_ENV and then to "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # An instance, so ProductionConfig.__init__ can check the environment
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)

    init_security_headers(app)
    init_request_timing(app)
    app.before_request(_require_json_body)

    _init_schema(app)
    _register_blueprints(app)
    init_rate_limits(app, limiter)
    _register_error_pages(app)

    logger.debug("TestHub UAT app created (config=%s)", config_name)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS") or ""
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _require_json_body():
    """Mutating API calls carrying a body must send JSON."""
    if request.method not in ("POST", "PUT", "PATCH") or not request.path.startswith("/api/"):
        return None
    if request.get_data(cache=True) and not request.is_json:
        abort(415, description="Content-Type must be application/json")
    return None


def _init_schema(app):
    """Create tables directly on SQLite; PostgreSQL goes through ``flask db upgrade``."""
    from testhub.models import uat  # noqa: F401  (registers the tables)

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if not uri.startswith("sqlite"):
        return
    if ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()


def _register_blueprints(app):
    from testhub.blueprints.health_bp import health_bp
    from testhub.blueprints.uat_bp import uat_bp
    from testhub.blueprints.uat_pm_bp import uat_pm_bp
    from testhub.blueprints.uat_review_bp import uat_review_bp

    for bp in (health_bp, uat_bp, uat_pm_bp, uat_review_bp):
        app.register_blueprint(bp)


def _register_error_pages(app):
    """Errors raised outside the blueprints' own handlers, as JSON."""

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_REQUIRED, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_REQUIRED, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_REQUIRED, e.description, status=415)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
