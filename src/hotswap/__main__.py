"""Allow running hotswap with ``python -m hotswap``."""

import sys

from hotswap.cli import main

sys.exit(main())
