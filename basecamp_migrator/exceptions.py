"""Custom exception hierarchy for the Basecamp to Fizzy migration tool."""

from __future__ import annotations

from typing import Any


class MigratorError(Exception):
    """Base exception for all migration-related errors."""


class ConfigError(MigratorError):
    """Raised when configuration or the run configuration is invalid."""


class APIError(MigratorError):
    """Raised when a remote API call fails.

    ``status_code`` is None for transport-level failures (connection reset,
    DNS, timeouts) where no HTTP response was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        """True for 429, 5xx and transport failures."""
        if self.status_code is None:
            return True
        return not (400 <= self.status_code < 500) or self.status_code == 429


class AuthenticationError(MigratorError):
    """Raised when a token is invalid and could not be refreshed."""


class UserMappingError(MigratorError):
    """Raised when the persisted user mapping file cannot be read or written."""


class MigrationAbortedError(MigratorError):
    """Raised when a setup phase fails and the run cannot continue."""


class RunStateNotFoundError(MigratorError):
    """Raised when no persisted run state exists for a run id."""


class RunLockedError(MigratorError):
    """Raised when another process holds the lease on a run id."""
