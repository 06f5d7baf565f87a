"""
core/errors.py -- Application exception taxonomy.

Every failure the business layer can signal is one of these classes. Each
carries the HTTP status it maps to, so api/main.py can turn any AppError into
the uniform {status, error, message, path} body with a single handler.

  NotFound           404  entity absent
  Unauthenticated    401  no / invalid / expired token on a route that needs one
  Unauthorized       403  valid identity, insufficient role or ownership
  Conflict           409  uniqueness violation or illegal state move
  ValidationFailure  400  structurally or semantically invalid input
  Internal           500  unexpected; message is never sent to the client

Layer rule: core/ is the kernel and imports nothing from the other packages.
"""


class AppError(Exception):
    """Base class for all expected application failures."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class NotFound(AppError):
    status_code = 404


class Unauthenticated(AppError):
    status_code = 401

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class Unauthorized(AppError):
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action.") -> None:
        super().__init__(message)


class Conflict(AppError):
    status_code = 409


class ValidationFailure(AppError):
    status_code = 400


class Internal(AppError):
    """Unexpected failure. The handler replaces the message with a generic one."""

    status_code = 500


class AuditWriteError(Internal):
    """The audit trail could not be persisted; the paired mutation is rolled back."""
