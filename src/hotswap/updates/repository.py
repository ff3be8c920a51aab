"""
Local artifact repository.

Downloaded artifacts are cached on disk, one directory per version tag:

    <run-dir>/.jar/<tag>/<artifact-name>

A tag directory counts as a cached entry only when it holds at least one
file ending with the artifact extension. Directories without one are
treated as absent, not as errors.
"""

from __future__ import annotations

from pathlib import Path

from hotswap.errors import InvalidArgumentError, RepositoryWriteError
from hotswap.logging import get_logger
from hotswap.updates.operations import ensure_directory, safe_remove_directory
from hotswap.updates.version import normalize_tag, require_tag, tag_sort_key

logger = get_logger(__name__)

DEFAULT_CACHE_DIR_NAME = ".jar"
DEFAULT_ARTIFACT_EXTENSION = ".pyz"


class LocalArtifactRepository:
    """
    On-disk cache of release artifacts keyed by version tag.

    The repository exclusively owns its root directory tree.

    Attributes:
        root: Cache root directory.
        artifact_extension: Extension identifying artifact files.
    """

    def __init__(
        self,
        root: Path | str,
        artifact_extension: str = DEFAULT_ARTIFACT_EXTENSION,
    ) -> None:
        """
        Initialize the repository.

        Args:
            root: Cache root directory. It does not need to exist yet.
            artifact_extension: Extension of artifact files (e.g., ".pyz").
        """
        self.root = Path(root)
        self.artifact_extension = artifact_extension.lower()

    def _is_artifact(self, path: Path) -> bool:
        return path.is_file() and path.name.lower().endswith(self.artifact_extension)

    def _find_tag_dir(self, tag: str) -> Path | None:
        """
        Find the directory for a tag.

        An empty tag matches the first cached directory in name order.
        """
        if not self.root.is_dir():
            return None

        try:
            candidates = sorted(p for p in self.root.iterdir() if p.is_dir())
        except OSError as e:
            logger.warning(
                "Failed to list artifact cache",
                extra={"root": str(self.root), "error": str(e)},
            )
            return None

        for candidate in candidates:
            if not tag or candidate.name == tag:
                return candidate
        return None

    def _first_artifact(self, tag_dir: Path) -> Path | None:
        try:
            artifacts = sorted(p for p in tag_dir.iterdir() if self._is_artifact(p))
        except OSError:
            return None
        return artifacts[0] if artifacts else None

    def is_available(self, tag: str) -> bool:
        """
        Check whether an artifact for a tag is cached.

        Args:
            tag: Version tag, with or without the 'v' prefix. An empty tag
                asks whether anything is cached at all.

        Returns:
            True only if the tag directory holds an artifact file.
        """
        return self.path_for(tag) is not None

    def path_for(self, tag: str) -> Path | None:
        """
        Get the cached artifact for a tag.

        Args:
            tag: Version tag (empty matches the first cached directory).

        Returns:
            Path to the first artifact file in the tag directory, or None.
        """
        tag_dir = self._find_tag_dir(normalize_tag(tag))
        if tag_dir is None:
            return None
        return self._first_artifact(tag_dir)

    def store(self, tag: str, artifact_name: str) -> Path:
        """
        Prepare the destination an artifact for a tag should be written to.

        Args:
            tag: Version tag.
            artifact_name: File name of the artifact.

        Returns:
            Destination path inside the (now existing) tag directory.

        Raises:
            InvalidArgumentError: If the tag is empty or the name is not a
                plain file name.
            RepositoryWriteError: If the directory cannot be created.
        """
        tag = require_tag(tag)
        if (
            not artifact_name
            or Path(artifact_name).name != artifact_name
            or artifact_name in (".", "..")
        ):
            raise InvalidArgumentError(
                f"Invalid artifact name: {artifact_name!r}",
                details={"tag": tag, "artifact_name": artifact_name},
            )

        tag_dir = ensure_directory(self.root / tag)
        if not tag_dir.is_dir():
            raise RepositoryWriteError(
                f"Cache entry is not a directory: {tag_dir}",
                details={"path": str(tag_dir)},
            )
        return tag_dir / artifact_name

    def list_cached(self) -> list[str]:
        """
        List the tags that have a valid cached artifact.

        Returns:
            Tags, newest first.
        """
        if not self.root.is_dir():
            return []

        tags = [
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and self._first_artifact(entry) is not None
        ]
        tags.sort(key=tag_sort_key, reverse=True)
        return tags

    def remove(self, tag: str) -> bool:
        """
        Remove a cached tag directory.

        Args:
            tag: Version tag.

        Returns:
            True if a directory was removed.
        """
        tag = require_tag(tag)
        removed = safe_remove_directory(self.root / tag)
        if removed:
            logger.info("Removed cached artifact", extra={"tag": tag})
        return removed
