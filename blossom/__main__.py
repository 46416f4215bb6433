# blossom/__main__.py
import sys

from blossom.modules.cli import main

if __name__ == "__main__":
    sys.exit(main())
