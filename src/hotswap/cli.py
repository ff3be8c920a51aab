"""
Command-line interface for inspecting releases and filling the artifact cache.

Switching versions is not offered here: the CLI process is not the host
application that would be replaced. Hosts call UpdateService.switch_to().

Usage:
    hotswap [--config PATH] [--log-level LEVEL] [--json] COMMAND

Commands:
    current           Show the running version
    releases          List published releases
    latest            Show the latest release
    show TAG          Show one release
    cached [TAG]      List cached tags, or check one tag
    download TAG      Download a release into the cache
    download-latest   Download the latest release into the cache
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import yaml
from pydantic import ValidationError

from hotswap import __version__
from hotswap.config import AppConfig, load_config
from hotswap.errors import UpdateError
from hotswap.logging import get_logger, setup_logging
from hotswap.updates.service import UpdateService
from hotswap.updates.version import ReleaseInfo

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hotswap",
        description="Release discovery and artifact cache for self-updating applications",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--repository",
        type=str,
        help="Upstream repository as owner/name",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("current", help="Show the running version")
    subparsers.add_parser("releases", help="List published releases")
    subparsers.add_parser("latest", help="Show the latest release")

    show = subparsers.add_parser("show", help="Show one release")
    show.add_argument("tag", help="Version tag, e.g. v2.0 or 2.0")

    cached = subparsers.add_parser("cached", help="List cached tags or check one")
    cached.add_argument("tag", nargs="?", help="Version tag to check")

    download = subparsers.add_parser("download", help="Download a release into the cache")
    download.add_argument("tag", help="Version tag")

    subparsers.add_parser(
        "download-latest", help="Download the latest release into the cache"
    )
    return parser


def _release_line(release: ReleaseInfo) -> str:
    published = release.published_at.date().isoformat() if release.published_at else "-"
    flags = []
    if release.is_cached_locally:
        flags.append("cached")
    if release.prerelease:
        flags.append("prerelease")
    if not release.has_artifact:
        flags.append("no artifact")
    suffix = f"  [{', '.join(flags)}]" if flags else ""
    return f"{release.tag:<16}{published}{suffix}"


def _emit(data: Any, text: str, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


async def run_command(
    args: argparse.Namespace,
    service: UpdateService,
) -> int:
    """
    Run one CLI command against an UpdateService.

    Args:
        args: Parsed arguments.
        service: Configured update service.

    Returns:
        Process exit code.
    """
    as_json = args.json

    if args.command == "current":
        version = service.current_version()
        _emit({"current_version": version}, str(version), as_json)

    elif args.command == "releases":
        releases = await service.list_releases()
        _emit(
            [r.model_dump(mode="json") for r in releases],
            "\n".join(_release_line(r) for r in releases) or "No releases",
            as_json,
        )

    elif args.command in ("latest", "show"):
        if args.command == "latest":
            release = await service.get_latest_release()
        else:
            release = await service.get_release_by_tag(args.tag)
        _emit(release.model_dump(mode="json"), _release_line(release), as_json)

    elif args.command == "cached":
        if args.tag:
            path = service.repository.path_for(args.tag)
            data = {"tag": args.tag, "cached": path is not None, "path": path}
            _emit(data, str(path) if path else "not cached", as_json)
        else:
            tags = service.list_cached()
            _emit(tags, "\n".join(tags) or "Cache is empty", as_json)

    elif args.command == "download":
        path = await service.download_to_cache(args.tag)
        _emit({"tag": args.tag, "path": str(path)}, str(path), as_json)

    elif args.command == "download-latest":
        tag = await service.download_latest()
        path = service.repository.path_for(tag)
        _emit({"tag": tag, "path": str(path)}, f"{tag} {path}", as_json)

    return 0


async def _main_async(args: argparse.Namespace, config: AppConfig) -> int:
    async with UpdateService.from_config(config) as service:
        return await run_command(args, service)


def _print_error(error: dict[str, Any]) -> None:
    print(json.dumps(error, indent=2, default=str), file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    """
    Entry point of the hotswap command.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).

    Returns:
        Process exit code: 0 on success, 1 on error.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv)

    try:
        config = load_config(cli_args=argv)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        _print_error({"error_code": "invalid_argument", "message": str(e), "details": {}})
        return 1

    setup_logging(config.logging, stream=sys.stderr)

    try:
        return asyncio.run(_main_async(args, config))
    except UpdateError as e:
        logger.debug(
            "Command failed",
            extra={"command": args.command, "error_code": e.error_code},
        )
        _print_error(e.to_dict())
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
