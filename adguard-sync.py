#!/usr/bin/env python3

"""Compatibility wrapper.

The project is packaged under `src/adguard_sync`. This wrapper allows running
`./adguard-sync.py` straight from a fresh checkout without installing it.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from adguard_sync.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
