"""
Update service: the self-update operations exposed to the host application.

UpdateService wires the registry client, the local artifact cache, the
downloader and the version switch orchestrator together from an AppConfig.

Example:
    >>> config = load_config()
    >>> service = UpdateService.from_config(config, shutdown_host=server.stop)
    >>> releases = await service.list_releases()
    >>> await service.switch_to(releases[0].tag)
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from hotswap import __version__
from hotswap.logging import get_logger
from hotswap.updates.downloader import ArtifactDownloader
from hotswap.updates.launch_context import LaunchContextInspector
from hotswap.updates.registry import ReleaseRegistryClient
from hotswap.updates.relaunch import ExitHooks, ProcessTerminator, get_deferred_remover
from hotswap.updates.repository import LocalArtifactRepository
from hotswap.updates.state_machine import SwitchResult, VersionSwitchOrchestrator
from hotswap.updates.version import ReleaseInfo, normalize_tag

if TYPE_CHECKING:
    from hotswap.config import AppConfig

logger = get_logger(__name__)


def resolve_run_dir(
    config: AppConfig,
    argv: list[str] | None = None,
) -> Path:
    """
    Get the run directory holding the artifact cache and the backup.

    Args:
        config: Application configuration.
        argv: Argument vector (defaults to sys.argv).

    Returns:
        The configured run directory, else the directory of the running
        artifact (the directory above the cache when the artifact runs from
        it), else the current working directory.
    """
    if config.switch.run_dir:
        return Path(config.switch.run_dir)

    argv = argv if argv is not None else sys.argv
    extension = config.repository.artifact_extension
    if argv and argv[0].lower().endswith(extension):
        parent = Path(argv[0]).resolve().parent
        if parent.parent.name == config.repository.cache_dir_name:
            return parent.parent.parent
        return parent
    return Path.cwd()


class UpdateService:
    """
    Facade over release discovery, the artifact cache and version switching.

    Attributes:
        registry: Release registry client.
        repository: Local artifact cache.
        orchestrator: Version switch orchestrator.
    """

    def __init__(
        self,
        *,
        registry: ReleaseRegistryClient,
        repository: LocalArtifactRepository,
        orchestrator: VersionSwitchOrchestrator,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.orchestrator = orchestrator
        self._download_tasks: set[asyncio.Task[str]] = set()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        shutdown_host: Callable[[], Any] | None = None,
        exit_func: Callable[[int], Any] = os._exit,
        inspector: LaunchContextInspector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> UpdateService:
        """
        Create an UpdateService from configuration.

        Args:
            config: Application configuration.
            shutdown_host: Callable (sync or async) stopping the host
                application before the process exits.
            exit_func: Function ending the process.
            inspector: Launch-context inspector (a live one if None).
            transport: Optional httpx transport for registry and downloads.

        Returns:
            Configured UpdateService instance.
        """
        extension = config.repository.artifact_extension
        run_dir = resolve_run_dir(config)

        repository = LocalArtifactRepository(
            run_dir / config.repository.cache_dir_name,
            artifact_extension=extension,
        )
        registry = ReleaseRegistryClient.from_config(
            config.registry,
            artifact_extension=extension,
            local_repository=repository,
            transport=transport,
        )
        downloader = ArtifactDownloader(
            chunk_size=config.download.chunk_size_bytes,
            timeout=config.download.timeout_seconds,
            token=config.registry.token,
            transport=transport,
        )
        inspector = inspector or LaunchContextInspector(extension)
        orchestrator = VersionSwitchOrchestrator(
            registry=registry,
            repository=repository,
            downloader=downloader,
            inspector=inspector,
            remover=get_deferred_remover(
                delay_seconds=config.switch.deletion_delay_seconds
            ),
            current_version=config.switch.current_version or __version__,
            run_dir=config.switch.run_dir,
            backup_name=config.switch.backup_name,
            terminator=ProcessTerminator(
                ExitHooks(),
                shutdown_host=shutdown_host,
                exit_func=exit_func,
            ),
        )

        logger.info(
            "Update service configured",
            extra={
                "repository": config.registry.repository,
                "cache_root": str(repository.root),
                "current_version": orchestrator.current_version,
            },
        )
        return cls(registry=registry, repository=repository, orchestrator=orchestrator)

    async def __aenter__(self) -> UpdateService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel pending downloads and close the registry connection."""
        for task in list(self._download_tasks):
            task.cancel()
        if self._download_tasks:
            await asyncio.gather(*self._download_tasks, return_exceptions=True)
        await self.registry.aclose()

    # =========================================================================
    # Release Discovery
    # =========================================================================

    async def list_releases(self) -> list[ReleaseInfo]:
        """List all releases, newest first, with the cache flag filled in."""
        return await self.registry.list_releases()

    async def get_latest_release(self) -> ReleaseInfo:
        """Get the latest release."""
        return await self.registry.get_latest_release()

    async def get_release_by_tag(self, tag: str) -> ReleaseInfo:
        """Get a release by tag ("2.0" and "v2.0" are equivalent)."""
        return await self.registry.get_release(tag)

    def current_version(self) -> str | None:
        """Version of the running application."""
        return self.orchestrator.current_version

    # =========================================================================
    # Local Cache
    # =========================================================================

    def is_cached_locally(self, tag: str) -> bool:
        """Whether the artifact of a tag is in the local cache."""
        return self.repository.is_available(tag)

    def list_cached(self) -> list[str]:
        """Tags with a cached artifact, newest first."""
        return self.repository.list_cached()

    async def download_to_cache(self, tag: str) -> Path:
        """
        Download the artifact of a release into the cache.

        Nothing is downloaded if the tag is already cached.

        Args:
            tag: Version tag.

        Returns:
            Path of the cached artifact.
        """
        return await self.orchestrator.ensure_artifact(tag)

    async def _download_latest(self) -> str:
        release = await self.registry.get_latest_release()
        await self.orchestrator.ensure_artifact(release.tag, release)
        return release.tag

    def download_latest(self) -> asyncio.Task[str]:
        """
        Start downloading the latest release into the cache.

        Must be called from a running event loop.

        Returns:
            Task resolving to the downloaded tag once the artifact is on disk.
        """
        task = asyncio.ensure_future(self._download_latest())
        self._download_tasks.add(task)
        task.add_done_callback(self._download_tasks.discard)
        logger.info("Started download of the latest release")
        return task

    # =========================================================================
    # Switching
    # =========================================================================

    async def switch_to(self, tag: str) -> SwitchResult:
        """Switch to a release, downloading it first if needed."""
        return await self.orchestrator.switch_to(tag)

    async def switch_to_latest(self) -> SwitchResult:
        """Switch to the latest release."""
        return await self.orchestrator.switch_to_latest()

    async def download_and_switch(self, tag: str) -> SwitchResult:
        """
        Download a release into the cache, then switch to it.

        The download happens before the switch starts, so a failed transfer
        never takes the single-flight guard.
        """
        await self.download_to_cache(tag)
        return await self.switch_to(normalize_tag(tag))

    async def download_and_switch_latest(self) -> SwitchResult:
        """Download the latest release into the cache, then switch to it."""
        tag = await self._download_latest()
        return await self.switch_to(tag)

    def get_status(self) -> dict[str, Any]:
        """
        Get the update status.

        Returns:
            Dictionary with the running version, cached tags and switch state.
        """
        return {
            "current_version": self.current_version(),
            "repository": self.registry.repository,
            "cache_root": str(self.repository.root),
            "cached_tags": self.list_cached(),
            "switch": self.orchestrator.get_status(),
        }
