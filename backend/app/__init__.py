"""
app/__init__.py — Flask application factory for the ChipLedger settlement engine.

create_app(config_name) builds a configured app. Nothing is initialised at
import time, so the test suite can create isolated apps and `alembic` can
import the models without starting a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  3. Register the route blueprints under /api/v1
  4. Register global error handlers (AppError, ValidationError, HTTP errors,
     anything else → 500)
  5. Serialise Decimal as string in every JSON response

Model imports inside create_app() populate SQLAlchemy's metadata; the names
themselves are unused here.
"""

from __future__ import annotations

import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Amounts leave the API as strings; a Decimal that slips past a serializer
# must not turn into a float.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Flask JSON provider that renders Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Unknown names fall back to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            audit_record,
            entry,
            game_session,
            participant,
            settlement_run,
            transfer,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.debug("ChipLedger app created with %s config", config_name)
    return app


def _register_blueprints(app: Flask) -> None:
    """Registers every route blueprint under /api/v1."""
    from backend.app.routes.audit import audit_bp
    from backend.app.routes.entries import entries_bp
    from backend.app.routes.sessions import sessions_bp
    from backend.app.routes.settlements import settlements_bp

    app.register_blueprint(sessions_bp,    url_prefix="/api/v1/sessions")
    # entries_bp and settlements_bp are registered at /api/v1 because each owns
    # both session-scoped paths (/sessions/<id>/...) and id paths
    # (/entries/<id>, /transfers/<id>/...).
    app.register_blueprint(entries_bp,     url_prefix="/api/v1")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1")
    app.register_blueprint(audit_bp,       url_prefix="/api/v1/audit")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with its HTTP status
      ValidationError → first marshmallow error as MISSING_FIELD /
                        INVALID_FIELD / a registered code (400)
      HTTPException   → unknown route / wrong method in the same envelope
      Exception       → INTERNAL_ERROR (500); traceback goes to app.logger,
                        never into the response
    """
    from backend.app.errors import AppError, ErrorCode

    known_codes = {v for k, v in vars(ErrorCode).items() if not k.startswith("_")}

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        if error.http_status >= 500:
            app.logger.warning("%s on %s %s: %s", error.code, request.method,
                               request.path, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Reports the FIRST schema error only: one error per response.

        A message that is itself a registered code (e.g. INVALID_ENTRY_KIND)
        becomes the response code, with a readable default message.
        """
        messages = error.messages  # e.g. {"kind": ["INVALID_ENTRY_KIND"]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict) and messages:
            field_name, field_errors = next(iter(messages.items()))
            field = field_name if field_name != "_schema" else None
            if isinstance(field_errors, list):
                raw_message = field_errors[0] if field_errors else "Invalid value."
            else:
                raw_message = str(field_errors)
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        code = {
            404: ErrorCode.ROUTE_NOT_FOUND,
            405: ErrorCode.METHOD_NOT_ALLOWED,
        }.get(error.code, ErrorCode.INVALID_FIELD)
        return jsonify({
            "error": {"code": code, "message": error.description},
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers when DEBUG or TESTING is on, so a locally served
    frontend can call the API with an Authorization header.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """Readable default for a ValidationError whose message is a bare code."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_ENTRY_KIND": "kind must be 'debit' (buy-in) or 'credit' (cash-out).",
        "INVALID_PAYMENT_METHOD": "method must be one of cash, paypal, venmo, zelle.",
    }
    return _messages.get(code, "Invalid input.")
