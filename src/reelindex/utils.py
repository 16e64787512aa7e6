"""Shared utility functions for reelindex.

This module provides common utilities used across multiple modules:
- subprocess_flags(): Windows-specific flags to hide console windows
- utc_now() / utc_iso() / parse_iso(): UTC timestamps stored as ISO text
- write_json(): pretty JSON sidecar files
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


def subprocess_flags() -> Dict[str, Any]:
    """Return subprocess flags to hide console window on Windows.

    Usage:
        result = subprocess.run(cmd, **subprocess_flags())
    """
    if sys.platform == "win32":
        # CREATE_NO_WINDOW = 0x08000000
        return {"creationflags": 0x08000000}
    return {}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_iso(value: datetime | None = None) -> str:
    """Return a UTC timestamp in ISO 8601 format.

    Microseconds are always included so stored timestamps compare correctly
    as plain strings (the queue relies on this for lease expiry checks).

    Returns:
        ISO formatted timestamp string like '2024-01-15T10:30:00.000000+00:00'
    """
    value = value or utc_now()
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def write_json(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
