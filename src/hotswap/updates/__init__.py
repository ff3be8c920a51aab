"""
Self-update mechanism for hotswap.

This package implements the live version switch:
- Release tags and the ReleaseInfo model
- GitHub Releases registry client
- Local artifact cache keyed by tag
- Streaming artifact downloader
- Launch-context inspection and relaunch command building
- Deferred removal, successor spawning and ordered exit hooks
- State machine orchestrating the switch
- UpdateService facade for host applications
"""

from hotswap.updates.downloader import ArtifactDownloader
from hotswap.updates.launch_context import (
    LaunchContext,
    LaunchContextInspector,
    PlatformType,
    detect_platform,
)
from hotswap.updates.operations import (
    backup_file,
    ensure_directory,
    safe_remove_directory,
)
from hotswap.updates.registry import ReleaseRegistryClient
from hotswap.updates.relaunch import (
    DeferredRemover,
    ExitHooks,
    NullDeferredRemover,
    PosixDeferredRemover,
    ProcessTerminator,
    WindowsDeferredRemover,
    get_deferred_remover,
    spawn_process,
)
from hotswap.updates.repository import LocalArtifactRepository
from hotswap.updates.service import UpdateService
from hotswap.updates.state_machine import (
    SwitchOperation,
    SwitchResult,
    SwitchState,
    VersionSwitchOrchestrator,
)
from hotswap.updates.version import (
    ReleaseInfo,
    normalize_tag,
    require_tag,
    tag_sort_key,
)

__all__ = [
    # Releases
    "ReleaseInfo",
    "normalize_tag",
    "require_tag",
    "tag_sort_key",
    "ReleaseRegistryClient",
    # Local cache
    "LocalArtifactRepository",
    "ArtifactDownloader",
    "backup_file",
    "ensure_directory",
    "safe_remove_directory",
    # Launch context
    "LaunchContext",
    "LaunchContextInspector",
    "PlatformType",
    "detect_platform",
    # Relaunch
    "DeferredRemover",
    "PosixDeferredRemover",
    "WindowsDeferredRemover",
    "NullDeferredRemover",
    "get_deferred_remover",
    "spawn_process",
    "ExitHooks",
    "ProcessTerminator",
    # State machine
    "VersionSwitchOrchestrator",
    "SwitchState",
    "SwitchOperation",
    "SwitchResult",
    # Service
    "UpdateService",
]
