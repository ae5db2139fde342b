"""
Allow running socctl as a module: python -m socint.cli
"""

import sys
from .socctl import main

if __name__ == "__main__":
    sys.exit(main())
