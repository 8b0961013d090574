"""Error taxonomy shared by every support-desk operation.

Each error carries the HTTP status the request layer maps it to, so callers
outside HTTP get the same classification.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError


class SupportError(Exception):
    http_status = 500
    code = "support_error"
    default_message = "Support operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ValidationError(SupportError):
    http_status = 400
    code = "validation_error"
    default_message = "Invalid request"


class EmptyMessage(ValidationError):
    code = "empty_message"
    default_message = "Message must not be empty"


class AgentNotEligible(ValidationError):
    code = "agent_not_eligible"
    default_message = "Assignee is not a support team member"


class NotFound(SupportError):
    http_status = 404
    code = "not_found"
    default_message = "Ticket not found"


class Forbidden(SupportError):
    http_status = 403
    code = "forbidden"
    default_message = "Access denied"


class Unauthenticated(SupportError):
    http_status = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class InvalidState(SupportError):
    http_status = 400
    code = "invalid_state"
    default_message = "Operation not allowed in the current ticket state"


class AlreadyRated(InvalidState):
    code = "already_rated"
    default_message = "Ticket has already been rated"


class TransientConflict(SupportError):
    """Raised when a serialized update lost its race too many times; safe to retry."""

    http_status = 503
    code = "transient_conflict"
    default_message = "Concurrent update conflict, please retry"


# SQLSTATE serialization_failure and deadlock_detected.
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
_RETRYABLE_MESSAGES = ("deadlock detected", "could not serialize access", "database is locked")


def is_transient_db_error(exc: DBAPIError) -> bool:
    """True when the database aborted the statement only because of a lock race."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in RETRYABLE_SQLSTATES:
        return True
    text = str(orig).lower()
    return any(marker in text for marker in _RETRYABLE_MESSAGES)
