"""
Release registry client backed by the GitHub Releases REST API.

This module provides:
- Listing all published releases (newest first)
- Looking up the latest release and a release by tag
- Mapping registry throttling to a distinct RateLimitedError

The HTTP connection is created lazily by connect_if_needed() and reused
across calls. A failed connection attempt is never cached: the next call
tries again.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from hotswap import __version__
from hotswap.errors import (
    InvalidArgumentError,
    RateLimitedError,
    RegistryUnavailableError,
    ReleaseNotFoundError,
)
from hotswap.logging import get_logger
from hotswap.updates.version import ReleaseInfo, require_tag, tag_sort_key

if TYPE_CHECKING:
    from hotswap.config import RegistryConfig
    from hotswap.updates.repository import LocalArtifactRepository

logger = get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_ARTIFACT_EXTENSION = ".pyz"
PAGE_SIZE = 100


def _release_sort_key(release: ReleaseInfo) -> tuple[float, tuple[tuple[int, ...], str]]:
    published = release.published_at.timestamp() if release.published_at else 0.0
    return published, tag_sort_key(release.tag)


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and response.headers.get("X-RateLimit-Remaining") == "0"
    )


class ReleaseRegistryClient:
    """
    Client for the releases of one upstream repository.

    Attributes:
        repository: Upstream project identity as "owner/name".
        api_url: Base URL of the REST API.

    Example:
        >>> async with ReleaseRegistryClient("acme/blog") as registry:
        ...     latest = await registry.get_latest_release()
        ...     print(latest.tag)
    """

    def __init__(
        self,
        repository: str,
        *,
        api_url: str = DEFAULT_API_URL,
        token: str | None = None,
        artifact_extension: str = DEFAULT_ARTIFACT_EXTENSION,
        local_repository: LocalArtifactRepository | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the registry client.

        No network traffic happens until the first operation.

        Args:
            repository: Upstream repository as "owner/name".
            api_url: Base URL of the GitHub REST API.
            token: Optional API token sent as a bearer token.
            artifact_extension: Extension identifying the release artifact.
            local_repository: Cache used to fill ReleaseInfo.is_cached_locally.
            connect_timeout: Connection timeout in seconds.
            read_timeout: Read timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self._token = token
        self._artifact_extension = artifact_extension
        self._local_repository = local_repository
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: RegistryConfig,
        *,
        artifact_extension: str = DEFAULT_ARTIFACT_EXTENSION,
        local_repository: LocalArtifactRepository | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ReleaseRegistryClient:
        """
        Create a registry client from configuration.

        Args:
            config: RegistryConfig with API settings.
            artifact_extension: Extension identifying the release artifact.
            local_repository: Cache used to fill the cache flag.
            transport: Optional httpx transport.

        Returns:
            Configured ReleaseRegistryClient instance.
        """
        return cls(
            config.repository,
            api_url=config.api_url,
            token=config.token,
            artifact_extension=artifact_extension,
            local_repository=local_repository,
            connect_timeout=config.connect_timeout_seconds,
            read_timeout=config.read_timeout_seconds,
            transport=transport,
        )

    @property
    def is_connected(self) -> bool:
        """Whether a verified connection is cached."""
        return self._client is not None

    async def __aenter__(self) -> ReleaseRegistryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the cached connection, if any."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": f"hotswap/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect_if_needed(self) -> httpx.AsyncClient:
        """
        Return the cached connection, establishing it first if needed.

        Establishing a connection probes the repository endpoint so that a
        wrong repository name or an unreachable registry is detected up
        front.

        Returns:
            A verified httpx.AsyncClient.

        Raises:
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the probe.
            ReleaseNotFoundError: If the repository does not exist.
        """
        async with self._lock:
            if self._client is not None:
                return self._client

            client = httpx.AsyncClient(
                base_url=self.api_url,
                headers=self._build_headers(),
                timeout=self._timeout,
                transport=self._transport,
            )
            try:
                await self._request(client, f"/repos/{self.repository}")
            except BaseException:
                await client.aclose()
                logger.warning(
                    "Registry connection failed",
                    extra={"repository": self.repository, "api_url": self.api_url},
                )
                raise

            self._client = client
            logger.info(
                "Connected to release registry",
                extra={"repository": self.repository, "api_url": self.api_url},
            )
            return client

    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        tag: str | None = None,
    ) -> httpx.Response:
        """
        Perform a GET and map failures to typed errors.

        Raises:
            RegistryUnavailableError: On transport errors or unexpected statuses.
            RateLimitedError: If the registry throttles the request.
            ReleaseNotFoundError: On HTTP 404.
        """
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(
                f"Release registry unreachable: {e}",
                details={"url": url, "error": str(e)},
            ) from e

        if response.is_success:
            return response

        if _is_rate_limited(response):
            raise RateLimitedError(
                "Release registry rate limit exceeded, try again later",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "reset_at": response.headers.get("X-RateLimit-Reset"),
                },
            )

        if response.status_code == 404:
            what = f"Release {tag}" if tag else f"Repository {self.repository}"
            raise ReleaseNotFoundError(
                f"{what} not found",
                details={"url": url, "tag": tag, "repository": self.repository},
            )

        raise RegistryUnavailableError(
            f"Release registry returned HTTP {response.status_code}",
            details={"url": url, "status_code": response.status_code},
        )

    def _parse_release(self, payload: Any) -> ReleaseInfo:
        if not isinstance(payload, dict):
            raise RegistryUnavailableError(
                "Unexpected release payload from registry",
                details={"payload_type": type(payload).__name__},
            )
        try:
            release = ReleaseInfo.from_github(payload, self._artifact_extension)
        except (ValidationError, InvalidArgumentError) as e:
            raise RegistryUnavailableError(
                "Malformed release payload from registry",
                details={"tag_name": payload.get("tag_name"), "error": str(e)},
            ) from e
        if self._local_repository is not None:
            release = release.with_cache_state(
                self._local_repository.is_available(release.tag)
            )
        return release

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RegistryUnavailableError(
                "Invalid JSON from release registry",
                details={"url": str(response.request.url), "error": str(e)},
            ) from e

    # =========================================================================
    # Operations
    # =========================================================================

    async def list_releases(self) -> list[ReleaseInfo]:
        """
        List every published release, newest first.

        Drafts are skipped. Pagination is followed until the last page.

        Returns:
            List of ReleaseInfo with the cache flag filled in.

        Raises:
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the request.
        """
        client = await self.connect_if_needed()

        releases: list[ReleaseInfo] = []
        url: str | None = f"/repos/{self.repository}/releases"
        params: dict[str, Any] | None = {"per_page": PAGE_SIZE}

        while url is not None:
            response = await self._request(client, url, params=params)
            payload = self._json(response)
            if not isinstance(payload, list):
                raise RegistryUnavailableError(
                    "Unexpected release list payload from registry",
                    details={"url": url},
                )
            for item in payload:
                if isinstance(item, dict) and item.get("draft"):
                    continue
                releases.append(self._parse_release(item))

            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        releases.sort(key=_release_sort_key, reverse=True)
        logger.debug(
            "Listed releases",
            extra={"repository": self.repository, "count": len(releases)},
        )
        return releases

    async def get_latest_release(self) -> ReleaseInfo:
        """
        Get the latest published release.

        Returns:
            ReleaseInfo of the latest release.

        Raises:
            ReleaseNotFoundError: If the repository has no published release.
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the request.
        """
        client = await self.connect_if_needed()
        response = await self._request(
            client, f"/repos/{self.repository}/releases/latest", tag="latest"
        )
        return self._parse_release(self._json(response))

    async def get_release(self, tag: str) -> ReleaseInfo:
        """
        Get a release by tag.

        The tag is normalized first, so "2.0" and "v2.0" are the same lookup.

        Args:
            tag: Version tag.

        Returns:
            ReleaseInfo of the release.

        Raises:
            InvalidArgumentError: If the tag is empty.
            ReleaseNotFoundError: If no release has this tag.
            RegistryUnavailableError: If the registry cannot be reached.
            RateLimitedError: If the registry throttles the request.
        """
        tag = require_tag(tag)
        client = await self.connect_if_needed()
        response = await self._request(
            client, f"/repos/{self.repository}/releases/tags/{tag}", tag=tag
        )
        return self._parse_release(self._json(response))
