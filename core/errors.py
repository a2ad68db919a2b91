"""
core/errors.py -- Error-kind vocabulary shared by every Marquee layer.

Each exception carries a stable machine-readable ``code`` and the HTTP status
the API layer answers with. Calling code branches on the class (or ``code``),
never on the message text.

Stores and the token layer translate driver-level failures into these kinds
at the boundary where they occur. Only truly unexpected faults surface as
InternalError, whose message never includes the underlying driver error.
"""

from __future__ import annotations


class MarqueeError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status = 500
    message = "An error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str | None:
        return None


class NotFoundError(MarqueeError):
    code = "not_found"
    status = 404
    message = "The requested resource could not be found."


class EditConflictError(MarqueeError):
    """Optimistic-concurrency write lost the race. Re-fetch before retrying."""

    code = "edit_conflict"
    status = 409
    message = "Unable to update the record due to an edit conflict, please try again."


class DuplicateEmailError(MarqueeError):
    code = "duplicate_email"
    status = 422
    message = "A user with this email address already exists."


class InvalidTokenError(MarqueeError):
    code = "invalid_token"
    status = 401
    message = "Invalid or expired token."


class ValidationFailed(MarqueeError):
    """Field-level validation failure. ``errors`` maps field name -> message."""

    code = "validation_failed"
    status = 422
    message = "Request validation failed."

    def __init__(self, errors: dict[str, str], message: str | None = None) -> None:
        super().__init__(message)
        self.errors = dict(errors)

    @property
    def detail(self) -> str:
        return "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())


class UnauthenticatedError(MarqueeError):
    """No valid principal could be resolved from the request."""

    code = "unauthenticated"
    status = 401
    message = "You must be authenticated to access this resource."


class UnauthorizedError(MarqueeError):
    """A valid principal lacks a required capability or account state."""

    code = "unauthorized"
    status = 403
    message = "You are not permitted to access this resource."


class InactiveAccountError(UnauthorizedError):
    code = "inactive_account"
    message = "Your user account must be activated to access this resource."


class NotPermittedError(UnauthorizedError):
    code = "not_permitted"
    message = "Your user account doesn't have the necessary permissions to access this resource."


class StoreTimeoutError(MarqueeError):
    code = "timeout"
    status = 504
    message = "The data store did not respond in time."


class InternalError(MarqueeError):
    code = "internal"
    status = 500
    message = "The server encountered a problem and could not process your request."
