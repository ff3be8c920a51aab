"""
Version switch state machine.

This module implements the VersionSwitchOrchestrator that replaces the
running application with another release on the same machine.

State machine states:
- idle: No switch in progress
- resolving: Normalizing the target tag or resolving "latest"
- acquiring: Taking the artifact from the cache or downloading it
- backing_up: Copying the running artifact to the backup path and installing
  the new artifact into the run directory
- relaunching: Registering the successor spawn
- terminated: Host shut down, exit hooks run, process exiting
- failed: Switch aborted, the running process is unaffected

Until backing_up starts a failure leaves no side effect and the error is
returned to the caller. From backing_up on the sequence is shielded from
cancellation because stopping halfway would leave the host without a
successor.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from hotswap.errors import (
    ContextUnavailableError,
    InvalidArgumentError,
    ReleaseNotFoundError,
    SwitchInProgressError,
)
from hotswap.logging import get_logger
from hotswap.updates.operations import backup_file, install_file
from hotswap.updates.relaunch import (
    ExitHooks,
    ProcessSpawner,
    ProcessTerminator,
    spawn_process,
)
from hotswap.updates.version import ReleaseInfo, normalize_tag, require_tag

if TYPE_CHECKING:
    from hotswap.updates.downloader import ArtifactDownloader
    from hotswap.updates.launch_context import LaunchContext, LaunchContextInspector
    from hotswap.updates.registry import ReleaseRegistryClient
    from hotswap.updates.relaunch import DeferredRemover
    from hotswap.updates.repository import LocalArtifactRepository

logger = get_logger(__name__)

DEFAULT_BACKUP_NAME = "app-ori-bak.pyz"

DELETE_HOOK_NAME = "deferred-delete"
SPAWN_HOOK_NAME = "spawn-successor"


class SwitchState(str, Enum):
    """
    States for the version switch state machine.

    State transitions:
    - idle → resolving (switch requested)
    - resolving → idle (target is the running version, nothing to do)
    - resolving → acquiring (target resolved)
    - acquiring → backing_up (artifact on disk)
    - backing_up → relaunching (backup taken, artifact installed, deletion scheduled)
    - relaunching → terminated (successor spawn registered)
    - any active state → failed
    - failed → idle, terminated → idle (machine reset)
    """

    IDLE = "idle"
    RESOLVING = "resolving"
    ACQUIRING = "acquiring"
    BACKING_UP = "backing_up"
    RELAUNCHING = "relaunching"
    TERMINATED = "terminated"
    FAILED = "failed"


# Valid state transitions
_VALID_TRANSITIONS: dict[SwitchState, set[SwitchState]] = {
    SwitchState.IDLE: {SwitchState.RESOLVING},
    SwitchState.RESOLVING: {SwitchState.ACQUIRING, SwitchState.IDLE, SwitchState.FAILED},
    SwitchState.ACQUIRING: {SwitchState.BACKING_UP, SwitchState.FAILED},
    SwitchState.BACKING_UP: {SwitchState.RELAUNCHING, SwitchState.FAILED},
    SwitchState.RELAUNCHING: {SwitchState.TERMINATED, SwitchState.FAILED},
    SwitchState.TERMINATED: {SwitchState.IDLE},
    SwitchState.FAILED: {SwitchState.IDLE},
}


class SwitchOperation(BaseModel):
    """
    Transient state of one switch request.

    Created when a switch starts and discarded when it ends. Never persisted.
    """

    target_tag: str | None = Field(
        default=None,
        description="Normalized target tag",
    )
    resolved_release: ReleaseInfo | None = Field(
        default=None,
        description="Release descriptor, when the registry was consulted",
    )
    artifact_path: str | None = Field(
        default=None,
        description="Local artifact to launch",
    )
    backup_path: str | None = Field(
        default=None,
        description="Backup of the replaced artifact",
    )
    launch_command: list[str] = Field(
        default_factory=list,
        description="Command line of the successor process",
    )
    state: str = Field(
        default=SwitchState.IDLE.value,
        description="Last state reached by this operation",
    )
    started_at: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="ISO 8601 timestamp when the switch started",
    )
    error_message: str | None = Field(
        default=None,
        description="Error message if the switch failed",
    )


class SwitchResult(BaseModel):
    """
    Outcome of a switch request.

    A "switched" result is only returned when the exit function does not end
    the process, e.g. in tests or when embedded with a custom terminator.
    """

    status: Literal["no_op", "switched"]
    target_tag: str
    current_version: str | None = None
    artifact_path: str | None = None
    backup_path: str | None = None
    launch_command: list[str] = Field(default_factory=list)


class VersionSwitchOrchestrator:
    """
    Drives a version switch through the state machine.

    Only one switch can be in flight per orchestrator; a concurrent request
    fails immediately with SwitchInProgressError.

    Example:
        >>> orchestrator = VersionSwitchOrchestrator(
        ...     registry=registry,
        ...     repository=repository,
        ...     downloader=downloader,
        ...     inspector=inspector,
        ...     remover=get_deferred_remover(),
        ...     current_version="v1.9",
        ... )
        >>> await orchestrator.switch_to("2.0")
    """

    def __init__(
        self,
        *,
        registry: ReleaseRegistryClient,
        repository: LocalArtifactRepository,
        downloader: ArtifactDownloader,
        inspector: LaunchContextInspector,
        remover: DeferredRemover,
        current_version: str | None = None,
        run_dir: Path | str | None = None,
        backup_name: str = DEFAULT_BACKUP_NAME,
        terminator: ProcessTerminator | None = None,
        spawner: ProcessSpawner = spawn_process,
        context_provider: Callable[[], LaunchContext] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Release registry client.
            repository: Local artifact cache.
            downloader: Artifact downloader.
            inspector: Launch-context inspector building relaunch commands.
            remover: Deferred remover for the replaced artifact.
            current_version: Version of the running application.
            run_dir: Directory of the backup and of the installed successor
                (defaults to the directory of the running artifact).
            backup_name: File name of the backup.
            terminator: Terminator ending the process (a default one calling
                os._exit is created if None).
            spawner: Callable starting the successor process.
            context_provider: Callable returning the launch context
                (defaults to inspector.current_context).
        """
        self._registry = registry
        self._repository = repository
        self._downloader = downloader
        self._inspector = inspector
        self._remover = remover
        self._current_version = normalize_tag(current_version) if current_version else None
        self._run_dir = Path(run_dir) if run_dir is not None else None
        self._backup_name = backup_name
        self._terminator = terminator or ProcessTerminator(ExitHooks())
        self._spawner = spawner
        self._context_provider = context_provider or inspector.current_context

        self._state = SwitchState.IDLE
        self._operation: SwitchOperation | None = None
        self._lock = asyncio.Lock()
        self._progress_callbacks: list[Callable[[SwitchOperation], None]] = []

    @property
    def state(self) -> SwitchState:
        """Get the current state."""
        return self._state

    @property
    def current_version(self) -> str | None:
        """Version of the running application."""
        return self._current_version

    @property
    def operation(self) -> SwitchOperation | None:
        """The running or most recent switch operation."""
        return self._operation

    @property
    def hooks(self) -> ExitHooks:
        """Exit hooks run by the terminator."""
        return self._terminator.hooks

    @property
    def is_switching(self) -> bool:
        """Whether a switch is in flight."""
        return self._lock.locked()

    def add_progress_callback(self, callback: Callable[[SwitchOperation], None]) -> None:
        """Add a callback to be notified of state changes."""
        self._progress_callbacks.append(callback)

    def _notify_progress(self) -> None:
        """Notify all registered callbacks of state change."""
        if self._operation is None:
            return
        for callback in self._progress_callbacks:
            try:
                callback(self._operation)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _check_transition(self, new_state: SwitchState) -> None:
        current = self._state
        if new_state not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidArgumentError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS.get(current, set())
                    ),
                },
            )

    def _transition_to(
        self,
        new_state: SwitchState,
        *,
        error_message: str | None = None,
    ) -> None:
        """
        Transition to a new state.

        Args:
            new_state: The state to transition to.
            error_message: Optional error message for failed state.

        Raises:
            InvalidArgumentError: If the transition is not valid.
        """
        self._check_transition(new_state)
        current = self._state
        target_tag = self._operation.target_tag if self._operation else None

        logger.info(
            f"State transition: {current.value} -> {new_state.value}",
            extra={
                "old_state": current.value,
                "new_state": new_state.value,
                "target_tag": target_tag,
            },
        )

        self._state = new_state
        if self._operation is not None:
            self._operation.state = new_state.value
            if error_message is not None:
                self._operation.error_message = error_message

        self._notify_progress()

    def _reset(self) -> None:
        """Return to idle once a switch ended, keeping the operation for status."""
        if self._state != SwitchState.IDLE:
            self._check_transition(SwitchState.IDLE)
            self._state = SwitchState.IDLE

    def _fail(self, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        self._transition_to(SwitchState.FAILED, error_message=message)
        logger.error(
            "Version switch failed",
            extra={
                "target_tag": self._operation.target_tag if self._operation else None,
                "error": message,
                "error_type": error.__class__.__name__,
            },
        )

    # =========================================================================
    # Artifact Acquisition
    # =========================================================================

    async def ensure_artifact(
        self,
        tag: str,
        release: ReleaseInfo | None = None,
    ) -> Path:
        """
        Get the local artifact for a tag, downloading it if not cached.

        The registry is not contacted when the tag is already cached.

        Args:
            tag: Version tag.
            release: Release descriptor, if already resolved.

        Returns:
            Path of the local artifact.

        Raises:
            InvalidArgumentError: If the tag is empty.
            ReleaseNotFoundError: If the release does not exist or has no
                artifact.
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the request.
            RepositoryWriteError: If the cache directory cannot be created.
            DownloadFailedError: If the transfer fails.
        """
        tag = require_tag(tag)
        cached = self._repository.path_for(tag)
        if cached is not None:
            logger.info(
                "Using cached artifact",
                extra={"tag": tag, "path": str(cached)},
            )
            return cached

        if release is None or release.tag != tag:
            release = await self._registry.get_release(tag)
        if self._operation is not None and self._operation.target_tag == tag:
            self._operation.resolved_release = release

        url, name = release.download_url, release.artifact_name
        if not url or not name:
            raise ReleaseNotFoundError(
                f"Release {tag} has no downloadable artifact",
                details={"tag": tag},
            )
        destination = self._repository.store(tag, name)
        return await self._downloader.download(url, destination)

    # =========================================================================
    # Switching
    # =========================================================================

    async def switch_to(self, tag: str) -> SwitchResult:
        """
        Switch the running application to a release.

        Args:
            tag: Target version tag ("2.0" and "v2.0" are equivalent).

        Returns:
            SwitchResult with status "no_op" when the tag is the running
            version. On success the process exits, so "switched" is only
            returned with a non-exiting terminator.

        Raises:
            SwitchInProgressError: If another switch is in flight.
            InvalidArgumentError: If the tag is empty.
            ContextUnavailableError: If the launch context cannot be read.
            ReleaseNotFoundError: If the release does not exist.
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the request.
            DownloadFailedError: If the artifact transfer fails.
            RepositoryWriteError: If the cache or the backup cannot be written.
        """
        return await self._switch(tag)

    async def switch_to_latest(self) -> SwitchResult:
        """
        Switch the running application to the latest release.

        Returns:
            SwitchResult, see switch_to().
        """
        return await self._switch(None)

    async def _switch(self, tag: str | None) -> SwitchResult:
        if self._lock.locked():
            raise SwitchInProgressError(
                "A version switch is already in progress",
                details={
                    "state": self._state.value,
                    "target_tag": self._operation.target_tag if self._operation else None,
                },
            )

        async with self._lock:
            operation = SwitchOperation()
            self._operation = operation
            try:
                return await self._run(operation, tag)
            finally:
                self._reset()

    async def _run(self, operation: SwitchOperation, tag: str | None) -> SwitchResult:
        try:
            self._transition_to(SwitchState.RESOLVING)
            if tag is None:
                release = await self._registry.get_latest_release()
                operation.resolved_release = release
                target = release.tag
            else:
                target = require_tag(tag)
            operation.target_tag = target

            if self._current_version is not None and target == self._current_version:
                logger.info(
                    "Target is the running version, nothing to switch",
                    extra={"target_tag": target},
                )
                self._transition_to(SwitchState.IDLE)
                return SwitchResult(
                    status="no_op",
                    target_tag=target,
                    current_version=self._current_version,
                )

            context = self._context_provider()
            current_artifact = context.artifact_path
            if current_artifact is None:
                raise ContextUnavailableError(
                    "Process was not started from an artifact",
                    details={"invocation": context.invocation},
                )
            # Fails early if the relaunch command cannot be built
            self._inspector.invoked_artifact(context, current_artifact)

            self._transition_to(SwitchState.ACQUIRING)
            artifact = await self.ensure_artifact(target, operation.resolved_release)
            operation.artifact_path = str(artifact)
        except (Exception, asyncio.CancelledError) as e:
            self._fail(e)
            raise

        commit = asyncio.ensure_future(
            self._commit(operation, target, context, current_artifact, artifact)
        )
        try:
            return await asyncio.shield(commit)
        except asyncio.CancelledError:
            if commit.done():
                raise
            logger.warning(
                "Cancellation requested during commit, finishing the switch",
                extra={"target_tag": target},
            )
            await asyncio.wait({commit})
            raise

    def _launch_path(
        self, run_dir: Path, current_artifact: Path, artifact: Path, tag: str
    ) -> Path:
        """Path in the run directory the successor is launched from."""
        if artifact.name not in (current_artifact.name, self._backup_name):
            return run_dir / artifact.name
        return run_dir / f"{artifact.stem}-{tag}{artifact.suffix}"

    def _in_cache(self, path: Path) -> bool:
        return path.resolve().is_relative_to(self._repository.root.resolve())

    async def _commit(
        self,
        operation: SwitchOperation,
        target: str,
        context: LaunchContext,
        current_artifact: Path,
        artifact: Path,
    ) -> SwitchResult:
        """Back up, install the artifact, register the exit hooks and terminate."""
        run_dir = self._run_dir or current_artifact.parent
        if self._in_cache(run_dir):
            run_dir = self._repository.root.parent
        backup_path = run_dir / self._backup_name
        launch_path = self._launch_path(run_dir, current_artifact, artifact, target)
        installed = False

        try:
            self._transition_to(SwitchState.BACKING_UP)
            backup_file(current_artifact, backup_path)
            operation.backup_path = str(backup_path)

            install_file(artifact, launch_path)
            installed = True
            operation.artifact_path = str(launch_path)

            if current_artifact.resolve() == launch_path.resolve():
                logger.info(
                    "Successor replaces the running artifact in place",
                    extra={"path": str(launch_path)},
                )
            elif self._in_cache(current_artifact):
                logger.warning(
                    "Running artifact is inside the cache, not scheduling deletion",
                    extra={"path": str(current_artifact)},
                )
            else:
                self.hooks.register(
                    DELETE_HOOK_NAME,
                    functools.partial(self._remover.schedule, current_artifact),
                )

            self._transition_to(SwitchState.RELAUNCHING)
            command = self._inspector.build_relaunch_command(
                context, current_artifact, launch_path
            )
            env = self._inspector.build_relaunch_environment(
                context, current_artifact, launch_path
            )
            operation.launch_command = command
            self.hooks.register(
                SPAWN_HOOK_NAME,
                functools.partial(
                    self._spawner, command, cwd=context.working_dir, env=env
                ),
            )
        except Exception as e:
            self.hooks.clear()
            if installed and launch_path.resolve() != current_artifact.resolve():
                with contextlib.suppress(OSError):
                    launch_path.unlink()
            self._fail(e)
            raise

        result = SwitchResult(
            status="switched",
            target_tag=target,
            current_version=self._current_version,
            artifact_path=operation.artifact_path,
            backup_path=operation.backup_path,
            launch_command=command,
        )

        self._transition_to(SwitchState.TERMINATED)
        logger.info(
            "Switching version",
            extra={
                "from_version": self._current_version,
                "to_version": target,
                "command": command,
            },
        )
        await self._terminator.terminate(0)
        return result

    def get_status(self) -> dict[str, Any]:
        """
        Get the current switch status.

        Returns:
            Dictionary with status information.
        """
        operation = self._operation
        return {
            "state": self._state.value,
            "in_progress": self.is_switching,
            "current_version": self._current_version,
            "target_tag": operation.target_tag if operation else None,
            "last_state": operation.state if operation else None,
            "started_at": operation.started_at if operation else None,
            "error_message": operation.error_message if operation else None,
            "launch_command": operation.launch_command if operation else [],
            "exit_hooks": self.hooks.names,
        }
