"""
hotswap - self-update orchestrator for packaged Python applications.

This package discovers releases of a running application on GitHub Releases,
caches release artifacts locally by version tag, and switches the running
process to another version by backing up the current artifact, relaunching
an equivalent command line against the new one, and exiting.
"""

__version__ = "0.1.0"
