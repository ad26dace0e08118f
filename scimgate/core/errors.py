"""SCIM protocol error taxonomy (RFC 7644 Section 3.12).

Every failure the engine reports is a ``ScimError`` subclass. The transport
layer turns any of them into an HTTP response with ``to_dict()``; nothing in
the core knows about HTTP beyond the status code carried here.
"""
from __future__ import annotations
from typing import Optional

SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class ScimError(Exception):
    """SCIM protocol error with HTTP status and optional scimType."""

    status: int = 400
    scim_type: Optional[str] = None

    def __init__(self, detail: str, status: Optional[int] = None, scim_type: Optional[str] = None):
        self.detail = detail
        if status is not None:
            self.status = status
        if scim_type is not None:
            self.scim_type = scim_type
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [SCIM_ERROR_SCHEMA],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict


# ─────────────────────────────────────────────────────────────────────────────
# Client errors (400)
# ─────────────────────────────────────────────────────────────────────────────

class InvalidFilterError(ScimError):
    """Filter expression could not be parsed; ``position`` is a UTF-8 byte offset."""

    scim_type = "invalidFilter"

    def __init__(self, detail: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            detail = f"{detail} (at position {position})"
        super().__init__(detail)


class InvalidPathError(ScimError):
    scim_type = "invalidPath"


class InvalidValueError(ScimError):
    scim_type = "invalidValue"


class InvalidSyntaxError(ScimError):
    scim_type = "invalidSyntax"


class NoTargetError(ScimError):
    scim_type = "noTarget"


class MutabilityError(ScimError):
    scim_type = "mutability"


class TooManyError(ScimError):
    scim_type = "tooMany"


# ─────────────────────────────────────────────────────────────────────────────
# Other statuses
# ─────────────────────────────────────────────────────────────────────────────

class UnauthorizedError(ScimError):
    status = 401
    scim_type = "unauthorized"


class NotFoundError(ScimError):
    status = 404


class ConflictError(ScimError):
    status = 409
    scim_type = "uniqueness"


class PreconditionFailedError(ScimError):
    """If-Match / If-None-Match precondition did not hold."""

    status = 412
    scim_type = "invalidVers"


class InternalError(ScimError):
    """Sanitized server-side failure; the cause is logged, never returned."""

    status = 500

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)


class RequestCancelledError(ScimError):
    status = 503

    def __init__(self, detail: str = "Request was cancelled"):
        super().__init__(detail)
