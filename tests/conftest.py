"""
Pytest configuration and shared fixtures for the hotswap tests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from hotswap.updates.launch_context import LaunchContext

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Remove handlers installed by setup_logging during a test."""
    yield
    logging.getLogger("hotswap").handlers.clear()


@pytest.fixture
def release_payload() -> Callable[..., dict[str, Any]]:
    """Factory for GitHub release payloads."""

    def _make(
        tag: str = "v2.0",
        *,
        published_at: str | None = "2024-05-01T12:00:00Z",
        asset_name: str | None = "app.pyz",
        draft: bool = False,
        prerelease: bool = False,
    ) -> dict[str, Any]:
        assets = []
        if asset_name is not None:
            assets.append(
                {
                    "name": asset_name,
                    "browser_download_url": f"https://example.com/{tag}/{asset_name}",
                }
            )
        return {
            "tag_name": tag,
            "name": f"Release {tag}",
            "body": "Bug fixes",
            "html_url": f"https://github.com/acme/blog/releases/tag/{tag}",
            "published_at": published_at,
            "draft": draft,
            "prerelease": prerelease,
            "assets": assets,
        }

    return _make


@pytest.fixture
def run_dir(tmp_path: Path) -> Path:
    """Run directory holding a running artifact named app.pyz."""
    directory = tmp_path / "srv"
    directory.mkdir()
    (directory / "app.pyz").write_bytes(b"running v1.9")
    return directory


@pytest.fixture
def launch_context(run_dir: Path) -> LaunchContext:
    """Context of a process started as `python3 -X dev ./app.pyz --port 8090`."""
    return LaunchContext(
        executable_path="/usr/bin/python3",
        runtime_args=("-X", "dev"),
        module_path="./app.pyz:/opt/lib",
        program_args=("--port", "8090"),
        invocation="./app.pyz --port 8090",
        artifact_path=run_dir / "app.pyz",
        working_dir=run_dir,
    )
