"""
Open WebUI + LiteLLM Bootstrap
==============================

Runs the chatstack installer straight from a checkout, without
``pip install``.

Usage:
    python3 scripts/install.py                  # Uses chatstack_config.yaml
    python3 scripts/install.py --yes            # No confirmation prompt
    CHATSTACK_NETWORK_MODE=host python3 scripts/install.py
"""

import os
import sys

# ---------------------------------------------------------------------------
# Add project root to path so the chatstack package is importable when running
# this script directly (e.g. ``python3 scripts/install.py``).
# ---------------------------------------------------------------------------
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from chatstack.cli import main

if __name__ == "__main__":
    sys.exit(main(["install", *sys.argv[1:]]))
