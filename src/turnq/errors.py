"""Application-level exception types for turnq."""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal["validation", "not_found", "configuration", "execution", "cancelled"]


class TurnqError(Exception):
    """Base exception for turnq."""


class RunValidationError(TurnqError, ValueError):
    """Raised when an admission request is rejected before a run exists."""


class RunNotFoundError(TurnqError, KeyError):
    """Raised when a run id is unknown to the registry."""

    def __str__(self) -> str:
        return f"Run not found: {self.args[0]}" if self.args else "Run not found"


class InvalidTransitionError(TurnqError):
    """Raised when a run is moved along an edge the lifecycle does not allow."""

    def __init__(self, run_id: str, current: str, target: str) -> None:
        super().__init__(f"Invalid run transition {current} -> {target} for run {run_id}")
        self.run_id = run_id
        self.current = current
        self.target = target


class SessionNotFoundError(TurnqError):
    """Raised by executors when the session no longer exists."""


class ConfigurationError(TurnqError):
    """Base exception for provider and credential configuration errors."""


class CredentialNotConfiguredError(ConfigurationError):
    """Raised when a provider requires an API key and none is configured."""


class UnknownProviderError(ConfigurationError):
    """Raised when a session references a provider that is not registered."""


class TurnCancelledError(TurnqError):
    """Raised by executors that stop early because their abort signal fired."""


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised during a turn to the run's error kind."""

    if isinstance(error, TurnCancelledError):
        return "cancelled"
    if isinstance(error, RunValidationError):
        return "validation"
    if isinstance(error, SessionNotFoundError):
        return "not_found"
    if isinstance(error, ConfigurationError):
        return "configuration"
    return "execution"
