"""
Filesystem operations used by the artifact cache and the version switch.

- Safe directory creation and removal
- Backup copy of the running artifact
- Installing a cached artifact into the run directory
- Atomic promotion of a finished download (write to .part, then rename)

A downloaded artifact only becomes visible under its final name once it is
complete, so a cache lookup never sees a truncated file.
"""

from __future__ import annotations

import contextlib
import os
import shutil
from pathlib import Path

from hotswap.errors import BackupFailedError, RepositoryWriteError
from hotswap.logging import get_logger

logger = get_logger(__name__)

PARTIAL_SUFFIX = ".part"


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        RepositoryWriteError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise RepositoryWriteError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def safe_remove_directory(path: Path, *, ignore_errors: bool = True) -> bool:
    """
    Safely remove a directory and its contents.

    Args:
        path: Path to the directory to remove.
        ignore_errors: If True, ignore errors during removal.

    Returns:
        True if directory was removed, False if it didn't exist.

    Raises:
        RepositoryWriteError: If removal fails and ignore_errors is False.
    """
    if not path.exists():
        return False

    try:
        shutil.rmtree(path, ignore_errors=ignore_errors)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except OSError as e:
        if not ignore_errors:
            raise RepositoryWriteError(
                f"Failed to remove directory: {path}",
                details={"path": str(path), "error": str(e)},
            ) from e
        return False


def partial_path(destination: Path) -> Path:
    """Return the temporary path a download is written to before promotion."""
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


def promote_partial(partial: Path, destination: Path) -> Path:
    """
    Atomically move a completed download onto its final path.

    Args:
        partial: The fully written temporary file.
        destination: Final artifact path (overwritten if present).

    Returns:
        The destination path.
    """
    os.replace(partial, destination)
    return destination


def discard_partial(partial: Path) -> None:
    """Remove a partially written download, ignoring a missing file."""
    with contextlib.suppress(FileNotFoundError):
        partial.unlink()


def backup_file(source: Path, backup_path: Path) -> Path:
    """
    Copy the running artifact onto the backup path.

    Any previous backup is overwritten; only the most recent one is kept.

    Args:
        source: The artifact currently running.
        backup_path: Fixed backup location.

    Returns:
        The backup path.

    Raises:
        BackupFailedError: If the copy fails.
    """
    try:
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, backup_path)
    except OSError as e:
        raise BackupFailedError(
            f"Failed to back up {source} to {backup_path}",
            details={
                "source": str(source),
                "backup_path": str(backup_path),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Backup created",
        extra={"source": str(source), "backup_path": str(backup_path)},
    )
    return backup_path


def install_file(source: Path, destination: Path) -> Path:
    """
    Copy an artifact out of the cache onto its launch path.

    The copy goes through a .part file so the destination is either the old
    file or the complete new one.

    Args:
        source: Cached artifact.
        destination: Path the successor is launched from (overwritten if
            present).

    Returns:
        The destination path.

    Raises:
        RepositoryWriteError: If the copy fails.
    """
    partial = partial_path(destination)
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, partial)
        promote_partial(partial, destination)
    except OSError as e:
        discard_partial(partial)
        raise RepositoryWriteError(
            f"Failed to install {source} to {destination}",
            details={
                "source": str(source),
                "destination": str(destination),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Artifact installed",
        extra={"source": str(source), "destination": str(destination)},
    )
    return destination
