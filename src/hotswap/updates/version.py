"""
Release tags and release descriptors.

This module implements:
- Tag normalization (every tag is compared and stored with a leading 'v')
- Numeric tag ordering (v1.10 sorts after v1.9)
- The ReleaseInfo model mapped from GitHub release payloads
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hotswap.errors import InvalidArgumentError

TAG_PREFIX = "v"

_NUMERIC_PART = re.compile(r"\d+")


def normalize_tag(tag: str) -> str:
    """
    Normalize a version tag to its canonical 'v'-prefixed form.

    The empty string is returned unchanged; the local repository treats it
    as a wildcard.

    Args:
        tag: Tag as typed by a user or returned by the registry
            (e.g., "2.0", "v2.0", " v2.0 ").

    Returns:
        Canonical tag (e.g., "v2.0").
    """
    tag = tag.strip()
    if not tag or tag.startswith(TAG_PREFIX):
        return tag
    return f"{TAG_PREFIX}{tag}"


def require_tag(tag: str | None) -> str:
    """
    Normalize a tag and reject empty input.

    Args:
        tag: Tag to normalize.

    Returns:
        Canonical non-empty tag.

    Raises:
        InvalidArgumentError: If the tag is empty.
    """
    normalized = normalize_tag(tag or "")
    if not normalized:
        raise InvalidArgumentError(
            "Version tag cannot be empty",
            details={"tag": tag},
        )
    return normalized


def tag_sort_key(tag: str) -> tuple[tuple[int, ...], str]:
    """
    Create a sort key ordering tags by their numeric components.

    Args:
        tag: Version tag (e.g., "v1.10.2-beta").

    Returns:
        Tuple of the numeric parts followed by the raw tag as tie breaker.
    """
    numbers = tuple(int(n) for n in _NUMERIC_PART.findall(tag))
    return numbers, tag


# =============================================================================
# Release Info Model
# =============================================================================


class ReleaseInfo(BaseModel):
    """
    A published release of the application.

    Attributes:
        tag: Canonical version tag (always 'v'-prefixed).
        published_at: When the release was published.
        download_url: URL of the release artifact, if the release has one.
        artifact_name: File name the artifact is stored under locally.
        is_cached_locally: Whether the artifact is already in the local cache.
            Derived locally, not part of the registry response.
        name: Release title.
        body: Release notes.
        html_url: Web page of the release.
        prerelease: Whether the release is flagged as a pre-release.
    """

    model_config = ConfigDict(frozen=True)

    tag: str = Field(
        ...,
        description="Canonical version tag",
    )
    published_at: datetime | None = Field(
        default=None,
        description="Publication timestamp",
    )
    download_url: str | None = Field(
        default=None,
        description="Artifact download URL",
    )
    artifact_name: str | None = Field(
        default=None,
        description="Artifact file name",
    )
    is_cached_locally: bool = Field(
        default=False,
        description="Whether the artifact is in the local cache",
    )
    name: str | None = Field(
        default=None,
        description="Release title",
    )
    body: str | None = Field(
        default=None,
        description="Release notes",
    )
    html_url: str | None = Field(
        default=None,
        description="Release web page",
    )
    prerelease: bool = Field(
        default=False,
        description="Pre-release flag",
    )

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        """Normalize the tag and reject empty tags."""
        return require_tag(v)

    @property
    def has_artifact(self) -> bool:
        """Whether the release carries a downloadable artifact."""
        return bool(self.download_url and self.artifact_name)

    def with_cache_state(self, is_cached_locally: bool) -> ReleaseInfo:
        """Return a copy with the derived cache flag set."""
        return self.model_copy(update={"is_cached_locally": is_cached_locally})

    @classmethod
    def from_github(
        cls,
        payload: dict[str, Any],
        artifact_extension: str,
    ) -> ReleaseInfo:
        """
        Map a GitHub release payload to a ReleaseInfo.

        The first asset whose name ends with the artifact extension is used
        as the release artifact.

        Args:
            payload: Release object from the GitHub REST API.
            artifact_extension: Extension identifying artifacts (e.g., ".pyz").

        Returns:
            ReleaseInfo for the payload.

        Raises:
            InvalidArgumentError: If the payload has no tag name.
        """
        download_url = None
        artifact_name = None
        assets = payload.get("assets")
        for asset in assets if isinstance(assets, list) else []:
            if not isinstance(asset, dict):
                continue
            asset_name = asset.get("name") or ""
            if not isinstance(asset_name, str):
                continue
            if asset_name.lower().endswith(artifact_extension.lower()):
                download_url = asset.get("browser_download_url")
                artifact_name = asset_name
                break

        return cls(
            tag=payload.get("tag_name") or "",
            published_at=payload.get("published_at"),
            download_url=download_url,
            artifact_name=artifact_name,
            name=payload.get("name"),
            body=payload.get("body"),
            html_url=payload.get("html_url"),
            prerelease=bool(payload.get("prerelease", False)),
        )
