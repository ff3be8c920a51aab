"""
Process replacement primitives for the version switch.

This module provides:
- Deferred removal of the replaced artifact (platform-specific commands)
- Spawning the successor process with inherited standard streams
- An ordered list of exit hooks run by the terminator itself
- ProcessTerminator, which shuts the host down and exits the process

Exit hooks are not registered with atexit: the terminator runs them
explicitly, in registration order, right before the final exit.
"""

from __future__ import annotations

import inspect
import os
import shlex
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from hotswap.logging import flush_handlers, get_logger
from hotswap.updates.launch_context import PlatformType, detect_platform

logger = get_logger(__name__)

DEFAULT_DELETION_DELAY_SECONDS = 10

ProcessSpawner = Callable[..., Any]


def spawn_process(
    command: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    detach: bool = False,
) -> subprocess.Popen[bytes]:
    """
    Start a child process that inherits the standard streams.

    Args:
        command: Argument list, program first.
        cwd: Working directory of the child.
        env: Environment of the child (defaults to the current one).
        detach: Start the child in its own session/process group so that it
            outlives the parent's terminal.

    Returns:
        The started process.
    """
    kwargs: dict[str, Any] = {
        "cwd": str(cwd) if cwd is not None else None,
        "env": dict(env) if env is not None else None,
        "close_fds": True,
    }
    if detach:
        if sys.platform.startswith("win"):
            kwargs["creationflags"] = getattr(
                subprocess, "DETACHED_PROCESS", 0
            ) | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

    proc = subprocess.Popen(list(command), **kwargs)
    logger.info(
        "Spawned process",
        extra={"pid": proc.pid, "command": list(command), "cwd": kwargs["cwd"]},
    )
    return proc


# =============================================================================
# Deferred Removers
# =============================================================================


class DeferredRemover(ABC):
    """
    Deletes a file some time after the current process has exited.

    The running artifact may be locked while the process is alive (Windows),
    so the deletion is handed to a separate OS command that waits first.

    Attributes:
        delay_seconds: Grace period before the file is deleted.
    """

    def __init__(
        self,
        delay_seconds: int = DEFAULT_DELETION_DELAY_SECONDS,
        spawner: ProcessSpawner = spawn_process,
    ) -> None:
        self.delay_seconds = delay_seconds
        self._spawner = spawner

    @abstractmethod
    def build_command(self, path: Path) -> list[str] | None:
        """
        Build the OS command that deletes a path after the delay.

        Args:
            path: File to delete.

        Returns:
            Argument list, or None when the platform is not supported.
        """

    def schedule(self, path: Path) -> Any:
        """
        Start the deferred deletion of a path.

        Args:
            path: File to delete.

        Returns:
            Whatever the spawner returned, or None if nothing was started.
        """
        command = self.build_command(path)
        if command is None:
            logger.warning(
                "Deferred deletion not supported on this platform",
                extra={"path": str(path)},
            )
            return None

        logger.info(
            "Scheduling deferred deletion",
            extra={"path": str(path), "delay_seconds": self.delay_seconds},
        )
        return self._spawner(command, detach=True)


class PosixDeferredRemover(DeferredRemover):
    """Linux and macOS: ``sh -c "sleep N && rm -f PATH"``."""

    def build_command(self, path: Path) -> list[str]:
        script = f"sleep {self.delay_seconds} && rm -f {shlex.quote(str(path))}"
        return ["sh", "-c", script]


class WindowsDeferredRemover(DeferredRemover):
    """Windows: ``cmd /c "ping localhost -n N > nul && del PATH"``."""

    def build_command(self, path: Path) -> list[str]:
        script = f'ping localhost -n {self.delay_seconds} > nul && del "{path}"'
        return ["cmd", "/c", script]


class NullDeferredRemover(DeferredRemover):
    """Platforms without a known deletion command: the file is left in place."""

    def build_command(self, path: Path) -> None:
        return None


def get_deferred_remover(
    platform_type: PlatformType | None = None,
    *,
    delay_seconds: int = DEFAULT_DELETION_DELAY_SECONDS,
    spawner: ProcessSpawner = spawn_process,
) -> DeferredRemover:
    """
    Get the deferred remover for a platform.

    Args:
        platform_type: Target platform. Detected from the host if None.
        delay_seconds: Grace period before deletion.
        spawner: Callable used to start the deletion command.

    Returns:
        A DeferredRemover implementation.
    """
    platform_type = platform_type or detect_platform()
    remover_cls: type[DeferredRemover]
    if platform_type == PlatformType.WINDOWS:
        remover_cls = WindowsDeferredRemover
    elif platform_type in (PlatformType.LINUX, PlatformType.MACOS):
        remover_cls = PosixDeferredRemover
    else:
        remover_cls = NullDeferredRemover
    return remover_cls(delay_seconds=delay_seconds, spawner=spawner)


# =============================================================================
# Exit Hooks and Termination
# =============================================================================


class ExitHooks:
    """
    Ordered actions to run while the process terminates.

    Hooks run exactly in registration order. A failing hook is logged and
    does not prevent the following hooks from running.
    """

    def __init__(self) -> None:
        self._hooks: list[tuple[str, Callable[[], Any]]] = []

    def __len__(self) -> int:
        return len(self._hooks)

    @property
    def names(self) -> list[str]:
        """Names of the registered hooks, in execution order."""
        return [name for name, _ in self._hooks]

    def register(self, name: str, action: Callable[[], Any]) -> None:
        """
        Append a hook.

        Args:
            name: Name used in log records.
            action: Callable without arguments.
        """
        self._hooks.append((name, action))
        logger.info(
            "Exit hook registered",
            extra={"hook": name, "position": len(self._hooks)},
        )

    def clear(self) -> None:
        """Drop every registered hook."""
        self._hooks.clear()

    def run(self) -> list[str]:
        """
        Run every hook in registration order.

        Returns:
            Names of the hooks that failed.
        """
        failed: list[str] = []
        for name, action in self._hooks:
            try:
                action()
                logger.info("Exit hook completed", extra={"hook": name})
            except Exception:
                logger.exception("Exit hook failed", extra={"hook": name})
                failed.append(name)
        return failed


class ProcessTerminator:
    """
    Terminates the current process after an orderly host shutdown.

    Termination steps:
    1. Ask the host application to shut down
    2. Run the exit hooks in registration order, then drop them
    3. Flush log handlers
    4. Exit with the requested code

    Example:
        >>> terminator = ProcessTerminator(hooks, shutdown_host=server.stop)
        >>> await terminator.terminate(0)
    """

    def __init__(
        self,
        hooks: ExitHooks,
        *,
        shutdown_host: Callable[[], Any] | None = None,
        exit_func: Callable[[int], Any] = os._exit,
    ) -> None:
        """
        Initialize the terminator.

        Args:
            hooks: Exit hooks to run before exiting.
            shutdown_host: Optional callable (sync or async) that stops the
                host application.
            exit_func: Function ending the process (os._exit by default).
        """
        self.hooks = hooks
        self._shutdown_host = shutdown_host
        self._exit_func = exit_func

    async def _stop_host(self) -> None:
        if self._shutdown_host is None:
            return
        try:
            result = self._shutdown_host()
            if inspect.isawaitable(result):
                await result
            logger.info("Host application stopped")
        except Exception:
            logger.exception("Host application shutdown failed")

    async def terminate(self, exit_code: int = 0) -> None:
        """
        Shut down and exit the process.

        Args:
            exit_code: Process exit code.
        """
        logger.info(
            "Terminating process",
            extra={"exit_code": exit_code, "hooks": self.hooks.names},
        )
        await self._stop_host()
        failed = self.hooks.run()
        self.hooks.clear()
        if failed:
            logger.error("Exit hooks failed", extra={"failed_hooks": failed})
        flush_handlers()
        self._exit_func(exit_code)
