"""Subprocess wrapper for the external executables the pipeline shells out to."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import ToolError
from .utils import subprocess_flags as _subprocess_flags

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    returncode: int
    stdout: str
    stderr: str


class ExternalToolRunner:
    """Run a command with a timeout; non-zero exit or a timeout raises ToolError."""

    def __init__(self, *, timeout_s: float = 600.0, stderr_max_chars: int = 2000):
        self.timeout_s = float(timeout_s)
        self.stderr_max_chars = int(stderr_max_chars)

    def require(self, cmd: str) -> str:
        path = shutil.which(cmd)
        if not path:
            raise ToolError(
                f"Required executable '{cmd}' not found in PATH. "
                "Install ffmpeg/ffprobe and ensure they are available on PATH."
            )
        return path

    def run(self, args: Sequence[str], *, timeout_s: Optional[float] = None) -> ToolResult:
        cmd: List[str] = [str(a) for a in args]
        if not cmd:
            raise ValueError("empty command")
        self.require(cmd[0])

        timeout = self.timeout_s if timeout_s is None else float(timeout_s)
        log.debug("Running %s (timeout=%.0fs)", " ".join(cmd), timeout)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                **_subprocess_flags(),
            )
        except subprocess.TimeoutExpired as e:
            raise ToolError(f"{cmd[0]} timed out after {timeout:.0f}s") from e
        except OSError as e:
            raise ToolError(f"{cmd[0]} could not be started: {e}") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-self.stderr_max_chars:]
            raise ToolError(
                f"{cmd[0]} failed (exit={proc.returncode}). {stderr}",
                returncode=proc.returncode,
                stderr=stderr,
            )
        return ToolResult(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
