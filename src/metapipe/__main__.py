"""Package entry point for ``python -m metapipe``."""

import sys
from metapipe.cli import main

if __name__ == "__main__":
    sys.exit(main())
