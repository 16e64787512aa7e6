"""Logging setup for reelindex processes.

Call `setup_logging()` once per process (CLI command, worker). Modules log
through `logging.getLogger(__name__)`; everything lands under the "reelindex"
logger, which writes to stderr and optionally to a file. Several workers can
share one log file; the default format carries the pid to tell them apart.

Environment:
    RI_LOG_MODULE_LEVELS="queue=DEBUG,reelindex.worker=DEBUG"
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER = "reelindex"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (pid=%(process)d): %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP clients used by the providers log every request at INFO/DEBUG
_NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "google_genai")

_ASSIGN_RE = re.compile(r"^\s*([\w.]+)\s*[=:]\s*([A-Za-z]+)\s*$")

_CONFIGURED = False


def _parse_module_levels(spec: str) -> Dict[str, int]:
    """Map "name=LEVEL" pairs (comma or semicolon separated) to logger levels.

    Bare names are taken relative to the package. Entries that do not parse
    or name an unknown level are skipped.
    """
    levels: Dict[str, int] = {}
    for part in re.split(r"[;,]", spec or ""):
        m = _ASSIGN_RE.match(part)
        if not m:
            continue
        name, level_name = m.group(1), m.group(2).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            continue
        if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
            name = f"{ROOT_LOGGER}.{name}"
        levels[name] = level
    return levels


def _handler(handler: logging.Handler, fmt: str) -> logging.Handler:
    # Handlers stay at DEBUG; per-module overrides decide what gets through
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure the reelindex logger hierarchy. Later calls are no-ops.

    Args:
        level: Level for the package logger (default: INFO)
        log_file: Optional file to append to, next to the stderr output
        format_string: Override for DEFAULT_FORMAT
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    fmt = format_string or DEFAULT_FORMAT
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(_handler(logging.StreamHandler(sys.stderr), fmt))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_handler(logging.FileHandler(log_file, encoding="utf-8"), fmt))
    logger.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    for name, module_level in _parse_module_levels(os.getenv("RI_LOG_MODULE_LEVELS", "")).items():
        logging.getLogger(name).setLevel(module_level)

    _CONFIGURED = True
