# settings.py
from __future__ import annotations
import os

WORK_DIR = os.environ.get("SHIPMATRIX_WORK_DIR", ".shipmatrix/work")
STATE_DIR = os.environ.get("SHIPMATRIX_STATE_DIR", ".shipmatrix/state")
BUILD_COMMAND = os.environ.get("SHIPMATRIX_BUILD_COMMAND", "nix build -L .#{binary}-{spec} -o {out}")
BUILD_TIMEOUT = float(os.environ.get("SHIPMATRIX_BUILD_TIMEOUT", "3600"))
VALIDATE_TIMEOUT = float(os.environ.get("SHIPMATRIX_VALIDATE_TIMEOUT", "60"))
GRACE_PERIOD = float(os.environ.get("SHIPMATRIX_GRACE_PERIOD", "10"))


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)
