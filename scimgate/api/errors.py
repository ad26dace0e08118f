"""Application-wide error handlers.

SCIM paths always get an RFC 7644 error body; other paths get plain JSON.
Unhandled exceptions are logged with their traceback and reported as a
generic 500 without internal detail.
"""
from flask import jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.http import HTTP_STATUS_CODES

from scimgate.core.errors import SCIM_ERROR_SCHEMA

SCIM_PREFIX = "/scim/v2"


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """404 / 405 / 413 and friends raised by routing or werkzeug."""
        status = error.code or 500
        detail = error.description or error.name
        if status == 413:
            detail = "Request payload exceeds maximum allowed size"
        return _error_response(status, detail)

    @app.errorhandler(Exception)
    def handle_exception(error: Exception):
        """Handle uncaught exceptions."""
        if isinstance(error, HTTPException):
            return handle_http_exception(error)
        app.logger.error(f"Unhandled exception on {request.method} {request.path}: {error}", exc_info=True)
        return _error_response(500, "Internal server error")


def _error_response(status: int, detail: str):
    if _wants_scim():
        response = jsonify({"schemas": [SCIM_ERROR_SCHEMA], "status": str(status), "detail": detail})
        response.headers["Content-Type"] = "application/scim+json"
        return response, status
    return jsonify({"error": _reason(status), "message": detail}), status


def _reason(status: int) -> str:
    return HTTP_STATUS_CODES.get(status, "Internal Server Error")


def _wants_scim() -> bool:
    """SCIM endpoints always return SCIM errors (RFC 7644)."""
    return request.path.startswith(SCIM_PREFIX)
