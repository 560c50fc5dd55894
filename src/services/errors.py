"""Domain error taxonomy.

Every error carries the HTTP status the API layer renders it with, so
route handlers never need to translate exceptions themselves.
"""

from __future__ import annotations


class ResolveDeskError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ResolveDeskError):
    """A required field is missing or a value is out of range."""

    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ResolveDeskError):
    status_code = 401
    error_code = "unauthenticated"


class AuthorizationError(ResolveDeskError):
    """The caller's roles do not grant the requested capability."""

    status_code = 403
    error_code = "access_denied"


class NotFoundError(ResolveDeskError):
    status_code = 404
    error_code = "not_found"


class TerminalStateError(ResolveDeskError):
    """Workflow mutation attempted on a RESOLVED or CLOSED complaint."""

    status_code = 409
    error_code = "terminal_state"


class ConflictError(ResolveDeskError):
    """Optimistic-concurrency version mismatch or double escalation."""

    status_code = 409
    error_code = "conflict"


class SweepInProgressError(ResolveDeskError):
    status_code = 409
    error_code = "sweep_in_progress"


class AttachmentTooLargeError(ValidationError):
    status_code = 413
    error_code = "attachment_too_large"


class UnsupportedAttachmentError(ValidationError):
    status_code = 415
    error_code = "unsupported_attachment_type"


class ExternalCollaboratorError(ResolveDeskError):
    """File store, notification transport, or token verifier failed."""

    status_code = 502
    error_code = "external_collaborator_error"


class InvalidTransitionError(ValidationError):
    """The transition is not legal from the complaint's current status."""

    status_code = 409
    error_code = "invalid_transition"
