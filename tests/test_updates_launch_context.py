"""
Tests for launch-context inspection.

Tests cover:
- Capturing the context from (faked) process sources
- Interpreter options split from application arguments
- Relaunch command and environment building
- Platform detection
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import psutil
import pytest

from hotswap.errors import ContextUnavailableError
from hotswap.updates.launch_context import (
    LaunchContext,
    LaunchContextInspector,
    PlatformType,
    detect_platform,
)

# =============================================================================
# Fixtures
# =============================================================================


def _process(cmdline: list[str], cwd: Path, exe: str = "/usr/bin/python3") -> MagicMock:
    process = MagicMock(spec=psutil.Process)
    process.cmdline.return_value = cmdline
    process.cwd.return_value = str(cwd)
    process.exe.return_value = exe
    return process


@pytest.fixture
def inspector(run_dir: Path) -> LaunchContextInspector:
    """Inspector for `python3 -X dev ./app.pyz --port 8090` started in run_dir."""
    argv = ["./app.pyz", "--port", "8090"]
    return LaunchContextInspector(
        argv=argv,
        environ={"PYTHONPATH": "./app.pyz:/opt/lib", "HOME": "/root"},
        executable="/usr/bin/python3",
        process=_process(["/usr/bin/python3", "-X", "dev", *argv], run_dir),
    )


# =============================================================================
# Context Capture Tests
# =============================================================================


class TestCurrentContext:
    """Tests for current_context."""

    def test_capture(self, inspector: LaunchContextInspector, run_dir: Path) -> None:
        """Test every field of the context is captured."""
        context = inspector.current_context()

        assert context.executable_path == "/usr/bin/python3"
        assert context.runtime_args == ("-X", "dev")
        assert context.module_path == "./app.pyz:/opt/lib"
        assert context.program_args == ("--port", "8090")
        assert context.invocation == "./app.pyz --port 8090"
        assert context.artifact_path == (run_dir / "app.pyz").resolve()
        assert context.working_dir == run_dir

    def test_no_runtime_args(self, run_dir: Path) -> None:
        """Test a plain invocation has no interpreter options."""
        argv = ["app.pyz"]
        inspector = LaunchContextInspector(
            argv=argv,
            environ={},
            executable="/usr/bin/python3",
            process=_process(["/usr/bin/python3", "app.pyz"], run_dir),
        )

        context = inspector.current_context()

        assert context.runtime_args == ()
        assert context.program_args == ()
        assert context.module_path == ""

    def test_not_started_from_artifact(self, run_dir: Path) -> None:
        """Test a script invocation has no artifact path."""
        argv = ["manage.py", "serve"]
        inspector = LaunchContextInspector(
            argv=argv,
            environ={},
            executable="/usr/bin/python3",
            process=_process(["/usr/bin/python3", *argv], run_dir),
        )

        assert inspector.current_context().artifact_path is None

    def test_executable_falls_back_to_psutil(self, run_dir: Path) -> None:
        """Test psutil is asked when sys.executable is empty."""
        inspector = LaunchContextInspector(
            argv=["app.pyz"],
            environ={},
            executable="",
            process=_process(["/opt/py/bin/python", "app.pyz"], run_dir, exe="/opt/py/bin/python"),
        )

        assert inspector.current_context().executable_path == "/opt/py/bin/python"

    def test_executable_unavailable(self, run_dir: Path) -> None:
        """Test ContextUnavailableError when no executable can be found."""
        process = _process(["python", "app.pyz"], run_dir)
        process.exe.side_effect = psutil.AccessDenied(pid=1)
        inspector = LaunchContextInspector(
            argv=["app.pyz"], environ={}, executable="", process=process
        )

        with pytest.raises(ContextUnavailableError):
            inspector.current_context()

    def test_cmdline_unavailable(self, run_dir: Path) -> None:
        """Test ContextUnavailableError when the command line cannot be read."""
        process = _process([], run_dir)
        process.cmdline.side_effect = psutil.NoSuchProcess(pid=1)
        inspector = LaunchContextInspector(
            argv=["app.pyz"], environ={}, executable="/usr/bin/python3", process=process
        )

        with pytest.raises(ContextUnavailableError):
            inspector.current_context()

    def test_live_process(self) -> None:
        """Test the live interpreter can be inspected."""
        context = LaunchContextInspector().current_context()

        assert context.executable_path
        assert context.working_dir.is_dir()


# =============================================================================
# Command Building Tests
# =============================================================================


class TestCommandBuilding:
    """Tests for launch and relaunch commands."""

    def test_build_launch_command(
        self, inspector: LaunchContextInspector, launch_context: LaunchContext
    ) -> None:
        """Test the original command is rebuilt with the artifact as typed."""
        assert inspector.build_launch_command(launch_context) == [
            "/usr/bin/python3",
            "-X",
            "dev",
            "./app.pyz",
            "--port",
            "8090",
        ]

    def test_relaunch_replaces_only_the_artifact(
        self, inspector: LaunchContextInspector, launch_context: LaunchContext
    ) -> None:
        """Test a relative invocation path is swapped for the new absolute path."""
        new_artifact = "/srv/.jar/v2.0/app.pyz"

        original = inspector.build_launch_command(launch_context)
        command = inspector.build_relaunch_command(
            launch_context, launch_context.artifact_path, new_artifact
        )

        assert command == [new_artifact if arg == "./app.pyz" else arg for arg in original]
        assert command.index(new_artifact) == 3

    def test_relaunch_artifact_missing_from_invocation(
        self, inspector: LaunchContextInspector, launch_context: LaunchContext
    ) -> None:
        """Test an artifact that is not in the invocation is refused."""
        with pytest.raises(ContextUnavailableError):
            inspector.build_relaunch_command(launch_context, "/srv/other.pyz", "/new.pyz")

    def test_launch_command_requires_artifact(
        self, inspector: LaunchContextInspector
    ) -> None:
        """Test a context without artifact cannot be rebuilt."""
        context = LaunchContext(executable_path="/usr/bin/python3", invocation="x.py")

        with pytest.raises(ContextUnavailableError):
            inspector.build_launch_command(context)

    def test_invoked_artifact_prefix(self) -> None:
        """Test the invoked prefix runs up to and including the file name."""
        context = LaunchContext(
            executable_path="/usr/bin/python3",
            invocation="../dist/app.pyz --debug",
            artifact_path=Path("/opt/dist/app.pyz"),
        )

        assert LaunchContextInspector.invoked_artifact(context, "/opt/dist/app.pyz") == (
            "../dist/app.pyz"
        )

    def test_relaunch_environment(
        self, inspector: LaunchContextInspector, launch_context: LaunchContext
    ) -> None:
        """Test the invoked artifact is replaced inside PYTHONPATH."""
        env = inspector.build_relaunch_environment(
            launch_context,
            launch_context.artifact_path,
            "/srv/.jar/v2.0/app.pyz",
        )

        assert env["PYTHONPATH"] == "/srv/.jar/v2.0/app.pyz:/opt/lib"
        assert env["HOME"] == "/root"

    def test_relaunch_environment_without_module_path(
        self, inspector: LaunchContextInspector, launch_context: LaunchContext
    ) -> None:
        """Test an empty module path leaves the environment untouched."""
        context = LaunchContext(
            executable_path=launch_context.executable_path,
            invocation=launch_context.invocation,
            artifact_path=launch_context.artifact_path,
        )

        env = inspector.build_relaunch_environment(
            context, context.artifact_path, "/new/app.pyz", environ={"A": "1"}
        )

        assert env == {"A": "1"}


# =============================================================================
# Platform Detection Tests
# =============================================================================


class TestDetectPlatform:
    """Tests for detect_platform."""

    @pytest.mark.parametrize(
        ("system", "expected"),
        [
            ("Windows", PlatformType.WINDOWS),
            ("Linux", PlatformType.LINUX),
            ("Darwin", PlatformType.MACOS),
            ("FreeBSD", PlatformType.OTHER),
            ("", PlatformType.OTHER),
        ],
    )
    def test_detect(self, system: str, expected: PlatformType) -> None:
        """Test platform names map to platform types."""
        assert detect_platform(system) == expected

    def test_detect_host(self) -> None:
        """Test the host platform is detected."""
        assert isinstance(detect_platform(), PlatformType)
