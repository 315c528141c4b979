"""
Result and error types for the practice engine.

Public engine operations return a ``Result`` instead of raising: limit reached,
already completed and not found are expected outcomes the UI has to render.
Exceptions are reserved for the collaborator boundary (storage, providers,
HTTP services), where the engine catches and converts them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Expected failure kinds surfaced to callers."""
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    EMPTY_POOL = "empty_pool"
    LIMIT_REACHED = "limit_reached"
    ALREADY_COMPLETED = "already_completed"
    VALIDATION = "validation"
    REMOTE = "remote"
    INVALID_STATE = "invalid_state"


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNAUTHENTICATED: "Your session has expired. Please sign in again.",
    ErrorKind.UNAUTHORIZED: "You do not have permission to perform this action.",
    ErrorKind.NOT_FOUND: "The requested record was not found.",
    ErrorKind.EMPTY_POOL: "No questions are available for this topic yet.",
    ErrorKind.LIMIT_REACHED: "You have reached today's practice limit.",
    ErrorKind.ALREADY_COMPLETED: "This session is already completed.",
    ErrorKind.VALIDATION: "Please check your input and try again.",
    ErrorKind.REMOTE: "Something went wrong. Please try again later.",
    ErrorKind.INVALID_STATE: "This action is not available right now.",
}


@dataclass(frozen=True)
class PracticeError:
    """A classified, recoverable failure."""
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def user_message(self) -> str:
        """Safe message for display; ``message`` may carry internal detail."""
        if self.kind is ErrorKind.LIMIT_REACHED and "session_limit" in self.details:
            return (
                f"You have used all {self.details['session_limit']} practice sessions "
                "for today. Come back tomorrow!"
            )
        return _USER_MESSAGES[self.kind]


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``PracticeError``."""
    value: T | None = None
    error: PracticeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> Result[T]:
        return cls(error=PracticeError(kind=kind, message=message, details=details))

    def unwrap(self) -> T:
        """Return the value or raise ``PracticeFailure`` carrying the error."""
        if self.error is not None:
            raise PracticeFailure(self.error)
        return self.value  # type: ignore[return-value]


class PracticeFailure(Exception):
    """Raised by ``Result.unwrap`` for callers that prefer exceptions."""

    def __init__(self, error: PracticeError):
        super().__init__(f"{error.kind.value}: {error.message}")
        self.error = error


# ========================================
# Collaborator boundary exceptions
# ========================================

class CollaboratorError(Exception):
    """A storage, provider or remote service call failed."""


class RecordNotFoundError(CollaboratorError):
    """The addressed record does not exist."""


class SessionAlreadyCompletedError(CollaboratorError):
    """Completion was requested for a session that already has ``completed_at``."""


class CycleConflictError(CollaboratorError):
    """Another session advanced the progress cycle after the selection was computed."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Progress cycle moved from {expected} to {actual}")
        self.expected = expected
        self.actual = actual
