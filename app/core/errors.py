"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent across the codebase
    without forcing every error to fill them in.
    """

    code: str
    message: str
    hint: str
    key: str
    note_id: int
    backend: str
    operation: str
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class CacheError(AppError):
    """Base class for key cache failures."""


class CacheBackendError(CacheError):
    """Raised when the cache backend is unreachable, times out or rejects a command."""


class CacheSerializationError(CacheError):
    """Raised when a value cannot be serialized or a cached payload is malformed."""


class RepositoryError(AppError):
    """Raised when the durable note store fails."""


class NoteNotFoundError(RepositoryError):
    """Raised when a note does not exist in the durable store."""

    @classmethod
    def for_id(cls, note_id: int) -> "NoteNotFoundError":
        return cls(
            code="note_not_found",
            message=f"Note {note_id} not found",
            details={"note_id": note_id},
        )
