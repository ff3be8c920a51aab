"""
Launch-context inspection.

A LaunchContext is a read-only snapshot of how the running process was
started: interpreter, interpreter options, PYTHONPATH and application
arguments. The version switch uses it to start a successor process with an
equivalent command line that points at a different artifact.

Example for a process started as ``python3 -X dev ./app.pyz --port 8090``:

    executable_path  /usr/bin/python3
    runtime_args     ("-X", "dev")
    program_args     ("--port", "8090")
    invocation       "./app.pyz --port 8090"
"""

from __future__ import annotations

import os
import platform
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import psutil

from hotswap.errors import ContextUnavailableError
from hotswap.logging import get_logger

logger = get_logger(__name__)

MODULE_PATH_VAR = "PYTHONPATH"


class PlatformType(str, Enum):
    """Operating system families with different process-replacement rules."""

    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"
    OTHER = "other"


def detect_platform(system: str | None = None) -> PlatformType:
    """
    Detect the platform family.

    Args:
        system: Value of platform.system(). Read from the host if None.

    Returns:
        The PlatformType of the host.
    """
    name = (system if system is not None else platform.system()).lower()
    if name.startswith("win"):
        return PlatformType.WINDOWS
    if name == "linux":
        return PlatformType.LINUX
    if name == "darwin":
        return PlatformType.MACOS
    return PlatformType.OTHER


@dataclass(frozen=True)
class LaunchContext:
    """
    How the current process was launched.

    Attributes:
        executable_path: Path of the Python interpreter.
        runtime_args: Interpreter options, in their original order.
        module_path: PYTHONPATH the process was started with (may be empty).
        program_args: Arguments passed to the application, in order.
        invocation: Raw program invocation, with the artifact path as typed.
        artifact_path: Resolved path of the running artifact, or None when
            the process was not started from an artifact.
        working_dir: Working directory of the process.
    """

    executable_path: str
    runtime_args: tuple[str, ...] = ()
    module_path: str = ""
    program_args: tuple[str, ...] = ()
    invocation: str = ""
    artifact_path: Path | None = None
    working_dir: Path = field(default_factory=Path.cwd)


class LaunchContextInspector:
    """
    Reads the launch context of the live process and rebuilds launch commands.

    All process-level sources can be injected so that contexts can be
    inspected deterministically in tests.
    """

    def __init__(
        self,
        artifact_extension: str = ".pyz",
        *,
        argv: Sequence[str] | None = None,
        environ: Mapping[str, str] | None = None,
        executable: str | None = None,
        process: psutil.Process | None = None,
    ) -> None:
        """
        Initialize the inspector.

        Args:
            artifact_extension: Extension identifying artifact files.
            argv: Application argument vector (defaults to sys.argv).
            environ: Environment (defaults to os.environ).
            executable: Interpreter path (defaults to sys.executable).
            process: psutil handle of the process (defaults to the current one).
        """
        self.artifact_extension = artifact_extension.lower()
        self._argv = argv
        self._environ = environ
        self._executable = executable
        self._process = process

    def _get_process(self) -> psutil.Process:
        return self._process if self._process is not None else psutil.Process()

    def _resolve_executable(self) -> str:
        executable = self._executable if self._executable is not None else sys.executable
        if executable:
            return executable

        try:
            executable = self._get_process().exe()
        except psutil.Error as e:
            raise ContextUnavailableError(
                "Cannot determine the interpreter executable",
                details={"error": str(e)},
            ) from e

        if not executable:
            raise ContextUnavailableError("Cannot determine the interpreter executable")
        return executable

    def _resolve_runtime_args(self, argv: Sequence[str]) -> tuple[str, ...]:
        """Interpreter options: the full command line minus interpreter and argv."""
        try:
            cmdline = self._get_process().cmdline()
        except psutil.Error as e:
            raise ContextUnavailableError(
                "Cannot read the process command line",
                details={"error": str(e)},
            ) from e

        if len(cmdline) <= len(argv):
            return ()
        return tuple(cmdline[1 : len(cmdline) - len(argv)])

    def _resolve_working_dir(self) -> Path:
        try:
            return Path(self._get_process().cwd())
        except psutil.Error:
            return Path.cwd()

    def current_context(self) -> LaunchContext:
        """
        Capture the launch context of the running process.

        Returns:
            LaunchContext snapshot.

        Raises:
            ContextUnavailableError: If the interpreter path or the process
                command line cannot be determined.
        """
        argv = list(self._argv if self._argv is not None else sys.argv)
        environ = self._environ if self._environ is not None else os.environ

        executable = self._resolve_executable()
        runtime_args = self._resolve_runtime_args(argv)
        working_dir = self._resolve_working_dir()

        artifact_path: Path | None = None
        if argv and argv[0].lower().endswith(self.artifact_extension):
            candidate = Path(argv[0])
            if not candidate.is_absolute():
                candidate = working_dir / candidate
            artifact_path = candidate.resolve()

        context = LaunchContext(
            executable_path=executable,
            runtime_args=runtime_args,
            module_path=environ.get(MODULE_PATH_VAR, ""),
            program_args=tuple(argv[1:]),
            invocation=" ".join(argv),
            artifact_path=artifact_path,
            working_dir=working_dir,
        )
        logger.debug(
            "Captured launch context",
            extra={
                "executable": executable,
                "artifact_path": str(artifact_path) if artifact_path else None,
                "runtime_args": list(runtime_args),
            },
        )
        return context

    @staticmethod
    def invoked_artifact(context: LaunchContext, current_artifact: Path | str) -> str:
        """
        Get the artifact path exactly as it was typed on the command line.

        The invocation may have used a relative path, so the resolved path
        cannot be searched for. Instead the raw invocation is searched for
        the artifact's file name and everything up to and including it is
        returned.

        Args:
            context: Launch context of the running process.
            current_artifact: Path of the running artifact.

        Returns:
            The invoked artifact prefix (e.g., "./app.pyz").

        Raises:
            ContextUnavailableError: If the file name is not in the invocation.
        """
        name = Path(current_artifact).name
        index = context.invocation.find(name) if name else -1
        if index < 0:
            raise ContextUnavailableError(
                "Running artifact not found in the program invocation",
                details={"artifact": name, "invocation": context.invocation},
            )
        return context.invocation[: index + len(name)]

    def build_launch_command(self, context: LaunchContext) -> list[str]:
        """
        Rebuild the command that launched the current process.

        Args:
            context: Launch context of the running process.

        Returns:
            Argument list, interpreter first.

        Raises:
            ContextUnavailableError: If the process was not started from an
                artifact.
        """
        if context.artifact_path is None:
            raise ContextUnavailableError(
                "Process was not started from an artifact",
                details={"invocation": context.invocation},
            )
        invoked = self.invoked_artifact(context, context.artifact_path)
        return [
            context.executable_path,
            *context.runtime_args,
            invoked,
            *context.program_args,
        ]

    def build_relaunch_command(
        self,
        context: LaunchContext,
        current_artifact: Path | str,
        new_artifact: Path | str,
    ) -> list[str]:
        """
        Build the command that starts a successor running another artifact.

        Interpreter options and application arguments are replayed verbatim;
        only the artifact is replaced.

        Args:
            context: Launch context of the running process.
            current_artifact: Path of the running artifact.
            new_artifact: Path of the artifact to run.

        Returns:
            Argument list, interpreter first.

        Raises:
            ContextUnavailableError: If the running artifact is not in the
                program invocation.
        """
        self.invoked_artifact(context, current_artifact)
        return [
            context.executable_path,
            *context.runtime_args,
            str(new_artifact),
            *context.program_args,
        ]

    def build_relaunch_environment(
        self,
        context: LaunchContext,
        current_artifact: Path | str,
        new_artifact: Path | str,
        environ: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """
        Build the environment of the successor process.

        Every occurrence of the invoked artifact inside PYTHONPATH is
        replaced by the new artifact path.

        Args:
            context: Launch context of the running process.
            current_artifact: Path of the running artifact.
            new_artifact: Path of the artifact to run.
            environ: Base environment (defaults to the inspector's one).

        Returns:
            Environment mapping for the child process.

        Raises:
            ContextUnavailableError: If the running artifact is not in the
                program invocation.
        """
        base = environ if environ is not None else self._environ
        env = dict(base if base is not None else os.environ)

        invoked = self.invoked_artifact(context, current_artifact)
        if context.module_path:
            env[MODULE_PATH_VAR] = context.module_path.replace(
                invoked, str(new_artifact)
            )
        return env
