"""
core/errors.py -- Domain error taxonomy shared by auth/ and api/.

Stores and services raise these; api/main.py owns the single mapping from
error class to HTTP status and the {"success": false, "message": ...} body.
Business code never builds HTTP responses for failures.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class KeystoneError(Exception):
    """Base class. status_code is the HTTP status the API layer responds with."""

    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(KeystoneError):
    status_code = 400
    default_message = "Invalid request."


class UnauthorizedError(KeystoneError):
    status_code = 401
    default_message = "Authentication required."


class InvalidTokenError(UnauthorizedError):
    """Bad signature, expired, wrong token type, or missing claims."""

    default_message = "Invalid or expired token."


class ForbiddenError(KeystoneError):
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFoundError(KeystoneError):
    status_code = 404
    default_message = "Resource not found."


class ConflictError(KeystoneError):
    status_code = 409
    default_message = "Resource already exists."


class InternalError(KeystoneError):
    status_code = 500
