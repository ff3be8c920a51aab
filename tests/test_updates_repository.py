"""
Tests for the local artifact repository.

Tests cover:
- Availability checks and their edge cases
- Artifact lookup by tag, including the empty-tag wildcard
- Preparing store destinations
- Listing and removing cached tags
"""

from __future__ import annotations

from pathlib import Path

import pytest

from hotswap.errors import InvalidArgumentError, RepositoryWriteError
from hotswap.updates.repository import LocalArtifactRepository

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    """Cache root directory (not created)."""
    return tmp_path / ".jar"


@pytest.fixture
def repository(cache_root: Path) -> LocalArtifactRepository:
    """Repository over the cache root."""
    return LocalArtifactRepository(cache_root)


def _cache(root: Path, tag: str, name: str = "app.pyz") -> Path:
    directory = root / tag
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"artifact")
    return path


# =============================================================================
# Availability Tests
# =============================================================================


class TestIsAvailable:
    """Tests for is_available."""

    def test_missing_root(self, repository: LocalArtifactRepository) -> None:
        """Test a cache root that does not exist is not an error."""
        assert repository.is_available("v2.0") is False

    def test_missing_tag(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test an unknown tag is not available."""
        _cache(cache_root, "v1.0")
        assert repository.is_available("v2.0") is False

    def test_directory_without_artifact(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test a tag directory without artifact file counts as absent."""
        (cache_root / "v2.0").mkdir(parents=True)
        (cache_root / "v2.0" / "notes.txt").write_text("x")

        assert repository.is_available("v2.0") is False
        assert repository.path_for("v2.0") is None

    def test_partial_download_not_available(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test an unfinished .part file is not an artifact."""
        _cache(cache_root, "v2.0", "app.pyz.part")
        assert repository.is_available("v2.0") is False

    def test_available(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test a directory with an artifact file is available."""
        _cache(cache_root, "v2.0")
        assert repository.is_available("v2.0") is True

    def test_tag_normalized(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test '2.0' finds the 'v2.0' directory."""
        _cache(cache_root, "v2.0")
        assert repository.is_available("2.0") is True

    def test_extension_case_insensitive(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test upper-case extensions are recognized."""
        _cache(cache_root, "v2.0", "APP.PYZ")
        assert repository.is_available("v2.0") is True

    def test_empty_tag_wildcard(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test the empty tag matches the first cached directory."""
        assert repository.is_available("") is False

        _cache(cache_root, "v2.0")
        _cache(cache_root, "v1.0")

        assert repository.is_available("") is True
        assert repository.path_for("") == cache_root / "v1.0" / "app.pyz"


# =============================================================================
# Lookup and Store Tests
# =============================================================================


class TestPathForAndStore:
    """Tests for path_for and store."""

    def test_path_for_returns_first_artifact(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test the first artifact in name order is returned."""
        _cache(cache_root, "v2.0", "b.pyz")
        _cache(cache_root, "v2.0", "a.pyz")

        assert repository.path_for("v2.0") == cache_root / "v2.0" / "a.pyz"

    def test_store_creates_directory(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test store creates the tag directory and parents."""
        destination = repository.store("2.0", "app.pyz")

        assert destination == cache_root / "v2.0" / "app.pyz"
        assert destination.parent.is_dir()
        assert not destination.exists()

    @pytest.mark.parametrize("name", ["", "../evil.pyz", "sub/app.pyz", ".."])
    def test_store_rejects_bad_names(
        self, repository: LocalArtifactRepository, name: str
    ) -> None:
        """Test artifact names must be plain file names."""
        with pytest.raises(InvalidArgumentError):
            repository.store("v2.0", name)

    def test_store_rejects_empty_tag(self, repository: LocalArtifactRepository) -> None:
        """Test storing requires a tag."""
        with pytest.raises(InvalidArgumentError):
            repository.store("", "app.pyz")

    def test_store_directory_creation_failure(self, tmp_path: Path) -> None:
        """Test a cache root blocked by a file raises RepositoryWriteError."""
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        repository = LocalArtifactRepository(blocker / ".jar")

        with pytest.raises(RepositoryWriteError):
            repository.store("v2.0", "app.pyz")


# =============================================================================
# Listing and Removal Tests
# =============================================================================


class TestListAndRemove:
    """Tests for list_cached and remove."""

    def test_list_cached_newest_first(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test only valid entries are listed, newest tag first."""
        _cache(cache_root, "v1.9")
        _cache(cache_root, "v1.10")
        (cache_root / "v3.0").mkdir()

        assert repository.list_cached() == ["v1.10", "v1.9"]

    def test_list_cached_missing_root(self, repository: LocalArtifactRepository) -> None:
        """Test an absent cache lists nothing."""
        assert repository.list_cached() == []

    def test_remove(
        self, repository: LocalArtifactRepository, cache_root: Path
    ) -> None:
        """Test removing a cached tag."""
        _cache(cache_root, "v2.0")

        assert repository.remove("2.0") is True
        assert repository.is_available("v2.0") is False
        assert repository.remove("v2.0") is False
