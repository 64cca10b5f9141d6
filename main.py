"""
mcpbridge - Model Context Protocol client

Main entry point when running from a source checkout.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from mcpbridge.cli import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
