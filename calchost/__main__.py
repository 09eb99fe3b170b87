"""Allow running the host with ``python -m calchost``."""

import sys

from .cli import main

sys.exit(main())
