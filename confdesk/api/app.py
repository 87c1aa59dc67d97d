"""Flask application factory for the JSON API."""
import logging
import traceback
from typing import Any, Dict, Optional

from flask import Flask, request, session
from werkzeug.exceptions import HTTPException

from confdesk.api import abstracts, admin, auth, payment, register, reviewer, sponsor
from confdesk.api.mailer import configure_mail
from confdesk.api.responses import fail
from confdesk.config import get_settings
from confdesk.services import error_service
from confdesk.utils.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    PermissionDeniedError,
    PricingNotConfiguredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

BLUEPRINTS = (auth.bp, payment.bp, register.bp, abstracts.bp, reviewer.bp, sponsor.bp, admin.bp)

ERROR_STATUS = (
    (AuthenticationError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidTransitionError, 400),
    (PaymentVerificationError, 400),
    (ValueError, 400),
    (PricingNotConfiguredError, 503),
)


def _register_error_handlers(app: Flask) -> None:
    for exc_class, status in ERROR_STATUS:
        def handler(e, status=status):
            return fail(str(e), status)
        app.register_error_handler(exc_class, handler)

    @app.errorhandler(HTTPException)
    def http_error(e):
        return fail(e.description, e.code)

    @app.errorhandler(Exception)
    def unhandled_error(e):
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        error_service.log_error(
            str(e) or e.__class__.__name__,
            stack=traceback.format_exc(),
            severity="error",
            category="system",
            source="api",
            endpoint=request.path,
            http_method=request.method,
            metadata={"account_id": session.get("account_id")},
        )
        return fail("Internal server error", 500)


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Build the API application.

    Args:
        config: Extra Flask config applied over the environment settings
            (e.g. TESTING, MAIL_SUPPRESS_SEND)
    """
    settings = get_settings()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key
    app.config["JSON_SORT_KEYS"] = False
    if config:
        app.config.update(config)

    configure_mail(app, settings)
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    _register_error_handlers(app)

    @app.route("/api/health")
    def health():
        return {"success": True, "message": "OK"}

    return app
