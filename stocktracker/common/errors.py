from __future__ import annotations

from typing import Sequence


class StockTrackerError(Exception):
    """Base class for errors surfaced to callers of the tracker core."""


class AuthenticationRequired(StockTrackerError):
    """
    Raised when a mutating operation is attempted with no established identity.
    No local state is changed when this is raised.
    """

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} requires a signed-in identity")
        self.operation = operation


class ValidationError(StockTrackerError):
    """Malformed snapshot envelope or entry."""

    def __init__(self, message: str, errors: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])


class ParseError(StockTrackerError):
    """Unreadable file bytes."""


class PersistenceError(StockTrackerError):
    """
    The document store rejected a write, delete or batch commit.

    Optimistic local changes applied before the rejected call are not rolled back.
    """

    def __init__(self, operation: str, path: str, cause: BaseException | None = None) -> None:
        detail = f": {type(cause).__name__}: {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed for {path}{detail}")
        self.operation = operation
        self.path = path
        self.cause = cause
