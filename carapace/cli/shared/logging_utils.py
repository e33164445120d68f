"""Loguru helpers for consistent stderr and file logging in CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

STDERR_FORMAT = "<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | <level>{message}</level>"

_SINK_IDS: dict[str, int] = {}


def configure_logging(level: str = "INFO", *, log_file: str | Path | None = None) -> Path | None:
    """Replace loguru's default sink with a compact stderr sink, plus an optional rotating file."""
    logger.remove()
    _SINK_IDS.clear()
    logger.add(sys.stderr, level=level.upper(), format=STDERR_FORMAT)
    logger.enable("carapace")
    if log_file:
        return ensure_rotating_log_file(log_file, level=level)
    return None


def ensure_rotating_log_file(path: str | Path, level: str = "INFO") -> Path:
    """Ensure a rotating log sink at ``path``; repeated calls reuse the sink."""
    log_path = Path(path).expanduser()
    key = str(log_path)
    if key in _SINK_IDS:
        return log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        key,
        level=level.upper(),
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    _SINK_IDS[key] = sink_id
    return log_path
