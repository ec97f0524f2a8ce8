"""Entry point: python -m diskchatter"""

import sys

from diskchatter.cli import main

if __name__ == "__main__":
    sys.exit(main())
