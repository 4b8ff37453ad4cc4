"""Core utilities and shared components for rolloutctl."""

# Note: Import context lazily to avoid circular imports
# Use: from rolloutctl.core.context import RolloutContext, pass_context
from rolloutctl.core.exceptions import (
    RolloutError,
    ConfigError,
    ValidationError,
    InvalidTransition,
    NotFound,
    StateError,
)
from rolloutctl.core.output import OutputFormatter, console

__all__ = [
    "RolloutError",
    "ConfigError",
    "ValidationError",
    "InvalidTransition",
    "NotFound",
    "StateError",
    "OutputFormatter",
    "console",
]
