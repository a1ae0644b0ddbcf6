"""
Complaint workflow error taxonomy.

Every failure the workflow can report maps to one stable category. The
category decides the HTTP status; the `code` distinguishes cases that share
a category (e.g. a field lock versus a missing letter, both Forbidden).
"""


class ComplaintError(Exception):
    """Base exception for complaint workflow failures."""

    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: str | None = None, complaint_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.complaint_id = complaint_id

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(ComplaintError):
    """Complaint (or referenced row) does not exist."""

    status_code = 404
    default_code = "not_found"


class UnauthenticatedError(ComplaintError):
    """No verifiable actor."""

    status_code = 401
    default_code = "unauthenticated"


class ForbiddenError(ComplaintError):
    """Actor identified but the access policy denies the operation."""

    status_code = 403
    default_code = "forbidden"


class InvalidStateError(ComplaintError):
    """The operation's state precondition is not met."""

    status_code = 400
    default_code = "invalid_state"


class InvalidInputError(ComplaintError):
    """Malformed payload or out-of-range text."""

    status_code = 400
    default_code = "invalid_input"


class ConcurrentModificationError(ComplaintError):
    """The stored row changed between validation and write."""

    status_code = 409
    default_code = "concurrent_modification"


class StoreUnavailableError(ComplaintError):
    """The backing store could not be read or written."""

    status_code = 503
    default_code = "store_unavailable"

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


# Forbidden sub-codes
FIELD_LOCKED = "field_locked"
NO_LETTER = "no_letter"
NOT_ASSIGNEE = "not_assignee"
NOT_PRINCIPAL = "not_principal"

# InvalidState sub-codes
CLOSED = "closed"
