"""
Streaming artifact downloader.

Artifacts can be tens of megabytes, so the response body is written to disk
chunk by chunk and never held in memory. The transfer goes to a ``.part``
file that is renamed onto the destination only after the last chunk has been
written.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx

from hotswap import __version__
from hotswap.errors import DownloadFailedError
from hotswap.logging import get_logger
from hotswap.updates.operations import discard_partial, partial_path, promote_partial

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Called with (bytes_written, total_bytes or None)
ProgressCallback = Callable[[int, int | None], None]


class ArtifactDownloader:
    """
    Downloads release artifacts to local paths.

    Example:
        >>> downloader = ArtifactDownloader()
        >>> await downloader.download(release.download_url, dest)
    """

    def __init__(
        self,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 300.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """
        Initialize the downloader.

        Args:
            chunk_size: Number of bytes written per chunk.
            timeout: Timeout in seconds for the transfer.
            token: Optional bearer token (private release assets).
            transport: Optional httpx transport (used by tests).
            progress_callback: Optional callback receiving progress updates.
        """
        self.chunk_size = chunk_size
        self.timeout = timeout
        self._token = token
        self._transport = transport
        self._progress_callback = progress_callback

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/octet-stream",
            "User-Agent": f"hotswap/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _report(self, written: int, total: int | None) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(written, total)
        except Exception:
            logger.exception("Download progress callback failed")

    async def download(self, url: str, destination: Path) -> Path:
        """
        Stream an artifact to a destination path.

        An existing file at the destination is replaced only when the new
        transfer completes.

        Args:
            url: Artifact URL.
            destination: Final path of the artifact.

        Returns:
            The destination path.

        Raises:
            DownloadFailedError: On a non-success HTTP status, a transport
                error, or an I/O error while writing.
        """
        partial = partial_path(destination)
        logger.info(
            "Downloading artifact",
            extra={"url": url, "destination": str(destination)},
        )

        try:
            written = await self._stream_to(url, partial)
            promote_partial(partial, destination)
        except DownloadFailedError:
            discard_partial(partial)
            raise
        except httpx.HTTPError as e:
            discard_partial(partial)
            raise DownloadFailedError(
                f"Download failed: {e}",
                url=url,
                details={"error": str(e)},
            ) from e
        except OSError as e:
            discard_partial(partial)
            raise DownloadFailedError(
                f"Failed to write artifact: {e}",
                url=url,
                details={"destination": str(destination), "error": str(e)},
            ) from e
        except asyncio.CancelledError:
            discard_partial(partial)
            logger.info("Download cancelled", extra={"url": url})
            raise

        logger.info(
            "Artifact downloaded",
            extra={"url": url, "destination": str(destination), "bytes": written},
        )
        return destination

    async def _stream_to(self, url: str, partial: Path) -> int:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise DownloadFailedError(
                        f"Download failed with HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                    )

                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                written = 0
                partial.parent.mkdir(parents=True, exist_ok=True)
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await asyncio.to_thread(f.write, chunk)
                        written += len(chunk)
                        self._report(written, total)
                return written
