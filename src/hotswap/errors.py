"""
Error types for hotswap.

This module defines the UpdateError base class and the typed failures raised
while resolving releases, acquiring artifacts and preparing a version switch.
Every error carries a stable ``error_code`` so callers (a web endpoint, the CLI)
can tell "try again later" apart from "this version does not exist".
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for self-update errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "unavailable", "resource_exhausted", "not_found",
            "failed_precondition").
        message: Human-readable error message.
        details: Optional structured details (e.g., URL, tag, path).

    Example:
        >>> raise UpdateError(
        ...     error_code="not_found",
        ...     message="Release v9.9 does not exist",
        ...     details={"tag": "v9.9"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdateError):
    """Error raised when an operation receives an invalid argument."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class RegistryUnavailableError(UpdateError):
    """
    Error raised when the release registry cannot be reached.

    Covers connection failures, timeouts and unexpected HTTP statuses.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RegistryUnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class RateLimitedError(UpdateError):
    """
    Error raised when the registry throttles requests.

    Kept distinct from RegistryUnavailableError so callers can advise the
    user to try again later.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RateLimitedError."""
        super().__init__(
            error_code="resource_exhausted", message=message, details=details
        )


class ReleaseNotFoundError(UpdateError):
    """Error raised when the registry reports no release for a tag."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ReleaseNotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)


class DownloadFailedError(UpdateError):
    """
    Error raised when an artifact transfer does not complete.

    Attributes:
        url: The artifact URL being downloaded.
        status_code: HTTP status of the response, or None when the failure
            happened before a response arrived or while writing to disk.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a DownloadFailedError."""
        merged = {"url": url, "status_code": status_code}
        merged.update(details or {})
        super().__init__(error_code="unavailable", message=message, details=merged)
        self.url = url
        self.status_code = status_code


class RepositoryWriteError(UpdateError):
    """Error raised when the local artifact cache cannot be written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RepositoryWriteError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class BackupFailedError(RepositoryWriteError):
    """Error raised when the running artifact cannot be copied to the backup path."""


class ContextUnavailableError(UpdateError):
    """
    Error raised when the process cannot describe how it was launched.

    Raised instead of guessing when the interpreter path, the running
    artifact, or its position in the invocation cannot be determined.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ContextUnavailableError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class SwitchInProgressError(UpdateError):
    """Error raised when a version switch is requested while another one runs."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a SwitchInProgressError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )
