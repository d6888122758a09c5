"""Error taxonomy shared by the tracking and planning services.

Services raise these; the handlers registered in :func:`register_error_handlers`
turn them into ``{"success": false, "message": ..., "error": ...}`` bodies.
Only 400, 404 and 500 are used as HTTP status codes.
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException


class ShopfloorError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message, "error": self.code}
        body.update(self.details)
        return body


class InvalidInput(ShopfloorError):
    code = "invalid_input"


class NotFound(ShopfloorError):
    status_code = 404
    code = "not_found"


class PreconditionFailed(ShopfloorError):
    code = "precondition_failed"


class InsufficientStock(PreconditionFailed):
    code = "insufficient_stock"


class Conflict(ShopfloorError):
    code = "conflict"


class StoreFailure(ShopfloorError):
    status_code = 500
    code = "store_failure"


class ServiceUnavailable(StoreFailure):
    code = "service_unavailable"


def register_error_handlers(app):
    @app.errorhandler(ShopfloorError)
    def handle_shopfloor_error(exc: ShopfloorError):
        if exc.status_code >= 500:
            app.logger.error("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        status = exc.code or 500
        if status >= 500:
            status = 500
        elif status != 404:
            # 405, 415 and friends are reported as plain bad requests
            status = 400
        return jsonify({"success": False, "message": exc.description, "error": exc.name}), status

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        app.logger.exception("unhandled error: %s", exc)
        return jsonify({"success": False, "message": "Internal server error", "error": "server_error"}), 500
