# --- storefront/errors.py ---
from werkzeug.exceptions import HTTPException

from .extensions import db
from .logger import log
from .utils.api import err


class ApiError(Exception):
    """Failure raised by services and rendered in the standard envelope."""

    def __init__(self, message, status=400, data=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        db.session.rollback()
        return err(e.message, e.status, e.data)

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        db.session.rollback()
        return err(str(e), 422)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return err(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        log.exception("Unhandled error: %s", e)
        return err("Internal server error", 500)
