"""
Tests for the streaming artifact downloader.

Tests cover:
- Successful streaming to disk (with redirects)
- Progress reporting
- HTTP, transport and I/O failures
- No partial artifact left behind
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from hotswap.errors import DownloadFailedError
from hotswap.updates.downloader import ArtifactDownloader

URL = "https://github.com/acme/blog/releases/download/v2.0/app.pyz"
CDN_URL = "https://objects.example.com/app.pyz"
PAYLOAD = b"PK\x03\x04" + b"x" * 10_000


def _transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def _serve(request: httpx.Request) -> httpx.Response:
    if str(request.url) == URL:
        return httpx.Response(302, headers={"Location": CDN_URL})
    if str(request.url) == CDN_URL:
        return httpx.Response(200, content=PAYLOAD)
    return httpx.Response(404)


class TestDownload:
    """Tests for ArtifactDownloader.download."""

    @pytest.mark.asyncio
    async def test_download_follows_redirect(self, tmp_path: Path) -> None:
        """Test the artifact is written after following the CDN redirect."""
        destination = tmp_path / "v2.0" / "app.pyz"
        downloader = ArtifactDownloader(chunk_size=1024, transport=_transport(_serve))

        result = await downloader.download(URL, destination)

        assert result == destination
        assert destination.read_bytes() == PAYLOAD
        assert not (tmp_path / "v2.0" / "app.pyz.part").exists()

    @pytest.mark.asyncio
    async def test_chunks_written_in_worker_thread(self, tmp_path: Path) -> None:
        """Test file writes are handed to a thread instead of blocking the event loop."""
        destination = tmp_path / "app.pyz"
        downloader = ArtifactDownloader(chunk_size=1024, transport=_transport(_serve))

        with patch(
            "hotswap.updates.downloader.asyncio.to_thread", wraps=asyncio.to_thread
        ) as to_thread:
            await downloader.download(URL, destination)

        written = b"".join(call.args[1] for call in to_thread.call_args_list)
        assert written == PAYLOAD
        assert all(call.args[0].__name__ == "write" for call in to_thread.call_args_list)
        assert destination.read_bytes() == PAYLOAD

    @pytest.mark.asyncio
    async def test_download_overwrites_existing(self, tmp_path: Path) -> None:
        """Test an existing file is replaced."""
        destination = tmp_path / "app.pyz"
        destination.write_bytes(b"stale")
        downloader = ArtifactDownloader(transport=_transport(_serve))

        await downloader.download(URL, destination)

        assert destination.read_bytes() == PAYLOAD

    @pytest.mark.asyncio
    async def test_progress_callback(self, tmp_path: Path) -> None:
        """Test progress is reported up to the full size."""
        updates: list[tuple[int, int | None]] = []
        downloader = ArtifactDownloader(
            chunk_size=1024,
            transport=_transport(_serve),
            progress_callback=lambda done, total: updates.append((done, total)),
        )

        await downloader.download(URL, tmp_path / "app.pyz")

        assert updates
        assert updates[-1] == (len(PAYLOAD), len(PAYLOAD))
        assert [done for done, _ in updates] == sorted(done for done, _ in updates)

    @pytest.mark.asyncio
    async def test_failing_progress_callback_ignored(self, tmp_path: Path) -> None:
        """Test a broken callback does not break the download."""

        def broken(done: int, total: int | None) -> None:
            raise RuntimeError("ui gone")

        downloader = ArtifactDownloader(
            transport=_transport(_serve), progress_callback=broken
        )

        await downloader.download(URL, tmp_path / "app.pyz")

        assert (tmp_path / "app.pyz").read_bytes() == PAYLOAD

    @pytest.mark.asyncio
    async def test_http_error(self, tmp_path: Path) -> None:
        """Test a non-success status raises DownloadFailedError with the status."""
        destination = tmp_path / "app.pyz"
        downloader = ArtifactDownloader(
            transport=_transport(lambda request: httpx.Response(503))
        )

        with pytest.raises(DownloadFailedError) as exc_info:
            await downloader.download(URL, destination)

        assert exc_info.value.url == URL
        assert exc_info.value.status_code == 503
        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_transport_error(self, tmp_path: Path) -> None:
        """Test transport failures raise DownloadFailedError without status."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        downloader = ArtifactDownloader(transport=_transport(refuse))

        with pytest.raises(DownloadFailedError) as exc_info:
            await downloader.download(URL, tmp_path / "app.pyz")

        assert exc_info.value.status_code is None
        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_write_error_leaves_no_partial(self, tmp_path: Path) -> None:
        """Test an I/O error while promoting removes the partial file."""
        destination = tmp_path / "app.pyz"
        # A directory in place of the artifact makes the final rename fail
        destination.mkdir()
        downloader = ArtifactDownloader(transport=_transport(_serve))

        with pytest.raises(DownloadFailedError) as exc_info:
            await downloader.download(URL, destination)

        assert exc_info.value.status_code is None
        assert exc_info.value.details["destination"] == str(destination)
        assert not (tmp_path / "app.pyz.part").exists()

    @pytest.mark.asyncio
    async def test_cancel_removes_partial(self, tmp_path: Path) -> None:
        """Test cancelling mid-transfer leaves neither artifact nor partial file."""
        stalled = asyncio.Event()

        async def body() -> AsyncIterator[bytes]:
            yield b"x" * 2048
            await asyncio.Event().wait()

        downloader = ArtifactDownloader(
            chunk_size=1024,
            transport=_transport(lambda request: httpx.Response(200, content=body())),
            progress_callback=lambda done, total: stalled.set(),
        )
        destination = tmp_path / "app.pyz"
        task = asyncio.create_task(downloader.download(URL, destination))
        await stalled.wait()

        assert (tmp_path / "app.pyz.part").exists()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not destination.exists()
        assert not (tmp_path / "app.pyz.part").exists()
