"""Exception hierarchy for write-failure capture and dead-letter routing."""

from __future__ import annotations


class DeadLetterError(Exception):
    """Base class for all errors raised by this package."""


class WriteError(DeadLetterError):
    """A batch write against the target store failed.

    Wraps the store's own exception so callers can tell a failed write
    apart from a failure of the dead-letter machinery itself.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @classmethod
    def from_exception(cls, exc: BaseException) -> WriteError:
        """Build a WriteError preserving the driver's error text verbatim."""
        if isinstance(exc, WriteError):
            return exc
        # neo4j.exceptions.Neo4jError carries the server text in .message
        message = getattr(exc, "message", None)
        if not isinstance(message, str) or not message:
            message = str(exc) or type(exc).__name__
        return cls(message, cause=exc)


class SnapshotError(DeadLetterError):
    """Bound parameters could not be deep-copied into a JSON-representable form."""

    def __init__(self, message: str, *, path: str = "$") -> None:
        super().__init__(f"{message} at {path}")
        self.path = path


class PersistError(DeadLetterError):
    """The dead-letter destination could not accept a record."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(message)
        self.location = location


class InvalidRecordError(DeadLetterError):
    """A persisted dead-letter record could not be parsed back."""
