"""Custom exceptions for rolloutctl."""

from typing import Any


class RolloutError(Exception):
    """Base exception for all rolloutctl errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(RolloutError):
    """Configuration-related errors."""

    pass


class ValidationError(RolloutError):
    """Input validation errors (malformed commands, out-of-range values)."""

    pass


class InvalidTransition(RolloutError):
    """Operation attempted on an entity that is not in the required state."""

    def __init__(
        self,
        message: str,
        entity_id: str | None = None,
        current: str | None = None,
        required: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.entity_id = entity_id
        self.current = current
        self.required = required or []


class NotFound(RolloutError):
    """Unknown entity id."""

    def __init__(
        self,
        message: str,
        entity_id: str | None = None,
        kind: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.entity_id = entity_id
        self.kind = kind


class StateError(RolloutError):
    """Persisted state could not be read or written."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.path = path
