"""
IndexProof CLI entry point.

Usage:
    python -m indexproof.cli verify <dir>
    python -m indexproof.cli verify-sums <dir>
"""

import sys
from .main import main

if __name__ == "__main__":
    sys.exit(main())
