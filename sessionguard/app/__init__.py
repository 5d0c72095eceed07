"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - `flask db` style tooling to import the app without side effects

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register CLI commands and start the expiry sweeper

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import logging.config
import traceback

import click
from flask import Flask, jsonify, request
from marshmallow import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from sessionguard.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Proxy headers ──────────────────────────────────────────────────────
    # X-Forwarded-For is honoured only for the configured number of proxy hops.
    if app.config.get("TRUSTED_PROXY_COUNT", 0) > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["TRUSTED_PROXY_COUNT"])

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from sessionguard.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from sessionguard.app.models import refresh_token, user  # noqa: F401

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_commands(app)
    _start_sweeper(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Root logging through stderr at LOG_LEVEL. Services log via
    logging.getLogger(__name__); the app layer via app.logger.
    """
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "default",
            },
        },
        "root": {
            "level": app.config.get("LOG_LEVEL", "INFO"),
            "handlers": ["stderr"],
        },
    })


def _register_blueprints(app: Flask) -> None:
    """Registers all route blueprints under the /api/v1 prefix."""
    from sessionguard.app.routes.auth import auth_bp
    from sessionguard.app.routes.users import users_bp

    app.register_blueprint(auth_bp,  url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1/users")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      OperationalError, InterfaceError, pool TimeoutError
                      → STORAGE_UNAVAILABLE (503, retryable)
      ValidationError → marshmallow schema errors as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      HTTPException   → werkzeug errors (404, 405, ...) in the same envelope
      Exception       → generic INTERNAL_ERROR (500); traceback logged, never returned
    """
    from sessionguard.app.errors import AppError, ErrorCode, StorageError

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(OperationalError)
    @app.errorhandler(InterfaceError)
    @app.errorhandler(PoolTimeoutError)
    def handle_storage_error(error: Exception):
        """Connectivity failures outside the store (e.g. at commit) are retryable 503s."""
        app.logger.error("Database unavailable: %s", type(error).__name__)
        storage_error = StorageError()
        return jsonify(storage_error.to_dict()), storage_error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the FIRST field error only ("one error, not many").
        """
        messages = error.messages  # e.g. {"email": ["Not a valid email address."]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)

                if str(raw_message).startswith("Missing data for required field"):
                    code = ErrorCode.MISSING_FIELD
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        response_body = {
            "error": {
                "code": code,
                "message": raw_message,
            }
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        The full traceback is logged to the application logger. Stack traces
        NEVER leave the server in the response body.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            type(error).__name__,
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500

    @app.after_request
    def log_auth_failures(response):
        if response.status_code in (401, 403):
            app.logger.info("%s %s -> %d", request.method, request.path, response.status_code)
        return response


def _register_commands(app: Flask) -> None:
    """`flask purge-expired-tokens` and `flask create-admin`."""
    from sessionguard.app.errors import AppError
    from sessionguard.app.extensions import db
    from sessionguard.app.models.user import UserRole
    from sessionguard.app.services import auth_service

    @app.cli.command("purge-expired-tokens")
    def purge_expired_tokens_command():
        """Delete refresh tokens past their expiry, once."""
        deleted = auth_service.purge_expired_tokens(db.session)
        db.session.commit()
        click.echo(f"Deleted {deleted} expired refresh tokens.")

    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--username", required=True)
    @click.option("--first-name", default="Admin")
    @click.option("--last-name", default="User")
    @click.password_option()
    def create_admin_command(email, username, first_name, last_name, password):
        """Create an active admin account."""
        try:
            result = auth_service.register_user(
                email=email,
                username=username,
                password=password,
                first_name=first_name,
                last_name=last_name,
                session=db.session,
                role=UserRole.ADMIN,
            )
        except AppError as error:
            db.session.rollback()
            raise click.ClickException(error.message) from error
        db.session.commit()
        click.echo(f"Created admin user {result['user']['id']} ({username}).")


def _start_sweeper(app: Flask) -> None:
    """Starts the background expiry sweeper unless disabled (always off under testing)."""
    from sessionguard.app.services.expiry_sweeper import ExpirySweeper

    sweeper = ExpirySweeper(app, app.config["TOKEN_SWEEP_SCHEDULES"])
    app.extensions["expiry_sweeper"] = sweeper
    if app.config.get("TOKEN_SWEEPER_ENABLED") and not app.config.get("TESTING"):
        sweeper.start()
