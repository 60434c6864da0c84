"""Test package bootstrap for the local src layout."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SERVER_SRC = ROOT / "src"

text = str(SERVER_SRC)
if SERVER_SRC.exists() and text not in sys.path:
    sys.path.insert(0, text)
