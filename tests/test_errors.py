"""
Tests for the errors module.

This test module validates:
- UpdateError base class functionality
- Error subclasses and their error codes
- Error serialization (to_dict)
"""

from __future__ import annotations

import pytest

from hotswap.errors import (
    BackupFailedError,
    ContextUnavailableError,
    DownloadFailedError,
    InvalidArgumentError,
    RateLimitedError,
    RegistryUnavailableError,
    ReleaseNotFoundError,
    RepositoryWriteError,
    SwitchInProgressError,
    UpdateError,
)

# =============================================================================
# Tests for UpdateError Base Class
# =============================================================================


class TestUpdateError:
    """Tests for UpdateError base class."""

    def test_init_with_all_args(self) -> None:
        """Test UpdateError initialization with all arguments."""
        error = UpdateError(
            error_code="test_error",
            message="Test error message",
            details={"tag": "v2.0"},
        )

        assert error.error_code == "test_error"
        assert error.message == "Test error message"
        assert error.details == {"tag": "v2.0"}

    def test_init_with_minimal_args(self) -> None:
        """Test UpdateError initialization without details."""
        error = UpdateError(error_code="test_error", message="Test message")
        assert error.details == {}

    def test_str_representation(self) -> None:
        """Test UpdateError string representation."""
        error = UpdateError(error_code="test_error", message="Test error message")
        assert str(error) == "Test error message"

    def test_repr_representation(self) -> None:
        """Test UpdateError repr representation."""
        error = UpdateError(
            error_code="test_error",
            message="Test message",
            details={"tag": "v2.0"},
        )
        repr_str = repr(error)

        assert "UpdateError" in repr_str
        assert "test_error" in repr_str
        assert "v2.0" in repr_str

    def test_to_dict(self) -> None:
        """Test serialization to a dictionary."""
        error = ReleaseNotFoundError("Release v9.9 not found", details={"tag": "v9.9"})

        assert error.to_dict() == {
            "error_code": "not_found",
            "message": "Release v9.9 not found",
            "details": {"tag": "v9.9"},
        }


# =============================================================================
# Tests for Error Subclasses
# =============================================================================


class TestErrorSubclasses:
    """Tests for the typed errors."""

    @pytest.mark.parametrize(
        ("error_cls", "code"),
        [
            (InvalidArgumentError, "invalid_argument"),
            (RegistryUnavailableError, "unavailable"),
            (RateLimitedError, "resource_exhausted"),
            (ReleaseNotFoundError, "not_found"),
            (RepositoryWriteError, "failed_precondition"),
            (BackupFailedError, "failed_precondition"),
            (ContextUnavailableError, "failed_precondition"),
            (SwitchInProgressError, "failed_precondition"),
        ],
    )
    def test_error_codes(self, error_cls: type[UpdateError], code: str) -> None:
        """Test every subclass carries its error code."""
        error = error_cls("boom")
        assert error.error_code == code
        assert isinstance(error, UpdateError)

    def test_rate_limited_is_not_unavailable(self) -> None:
        """Test throttling is distinguishable from an unreachable registry."""
        error = RateLimitedError("slow down")
        assert not isinstance(error, RegistryUnavailableError)

    def test_backup_failed_is_repository_write_error(self) -> None:
        """Test BackupFailedError can be handled as a write error."""
        assert issubclass(BackupFailedError, RepositoryWriteError)

    def test_download_failed_carries_url_and_status(self) -> None:
        """Test DownloadFailedError exposes url and status_code."""
        error = DownloadFailedError(
            "Download failed with HTTP 503",
            url="https://example.com/app.pyz",
            status_code=503,
        )

        assert error.error_code == "unavailable"
        assert error.url == "https://example.com/app.pyz"
        assert error.status_code == 503
        assert error.details["url"] == "https://example.com/app.pyz"
        assert error.details["status_code"] == 503

    def test_download_failed_without_status(self) -> None:
        """Test transport failures have no status code."""
        error = DownloadFailedError(
            "Connection reset",
            url="https://example.com/app.pyz",
            details={"error": "reset"},
        )

        assert error.status_code is None
        assert error.details == {
            "url": "https://example.com/app.pyz",
            "status_code": None,
            "error": "reset",
        }
