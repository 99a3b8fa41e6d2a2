"""Entry point for ``python -m oct_convert``."""

import sys

from oct_convert.cli import main

if __name__ == "__main__":
    sys.exit(main())
