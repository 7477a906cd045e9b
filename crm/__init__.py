"""
CRM Field Automation Backend
Flask application factory.

Usage:
    from crm import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from crm.config import SQLITE_DEV, config
from crm.models import db
from crm.middleware.diagnostics import run_startup_diagnostics
from crm.middleware.jwt_auth import init_jwt_middleware
from crm.middleware.logging_config import configure_logging
from crm.middleware.rate_limiter import init_rate_limits
from crm.middleware.security_headers import init_security_headers
from crm.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

_JSON_METHODS = frozenset({"POST", "PUT", "PATCH"})


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are attached per blueprint in init_rate_limits
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Build the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to APP_ENV, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)
    _init_middleware(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)

    run_startup_diagnostics(app)
    init_rate_limits(app, limiter)
    return app


def _init_extensions(app):
    from crm.services.package_registry import init_registry

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_registry(app)


def _init_middleware(app):
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _require_json_body():
        if request.method in _JSON_METHODS and request.path.startswith("/api/"):
            if request.data and not request.is_json:
                abort(415, description="Content-Type must be application/json")


def _create_tables(app):
    """CREATE IF NOT EXISTS for every model; migrations remain the source of truth."""
    from crm.models import auth, chain_rules, custom_fields, package  # noqa: F401

    if app.config.get("SQLALCHEMY_DATABASE_URI") == SQLITE_DEV:
        os.makedirs(os.path.dirname(SQLITE_DEV.removeprefix("sqlite:///")), exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from crm.blueprints.auth_bp import auth_bp
    from crm.blueprints.chain_rules_bp import chain_rules_bp
    from crm.blueprints.custom_fields_bp import custom_fields_bp
    from crm.blueprints.health_bp import health_bp
    from crm.blueprints.packages_bp import packages_bp
    from crm.blueprints.users_bp import users_bp

    for bp in (auth_bp, users_bp, custom_fields_bp, chain_rules_bp, packages_bp, health_bp):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("create-admin")
    @click.option("--username", default="admin", show_default=True)
    @click.option("--email", required=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin_cmd(username, email, password):
        """Create the admin user, or reset its password if it exists."""
        from crm.services.user_service import MIN_PASSWORD_LENGTH, ensure_admin

        if len(password) < MIN_PASSWORD_LENGTH:
            raise click.BadParameter(
                f"must be at least {MIN_PASSWORD_LENGTH} characters", param_hint="--password"
            )
        user = ensure_admin(username, email, password)
        click.echo(f"Admin user ready: {user.username} (id={user.id})")

    @app.cli.command("rotate-package-keys")
    def rotate_package_keys_cmd():
        """Re-encrypt package credentials under the first ENCRYPTION_KEY."""
        from crm.services.package_registry import rotate_package_credentials

        click.echo(f"Rotated {rotate_package_credentials()} credential value(s)")


def _register_error_handlers(app):
    """JSON bodies for errors raised outside any blueprint's own handlers."""

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500
