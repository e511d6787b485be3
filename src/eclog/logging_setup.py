"""Logging configuration for eclog.

The log facade writes into stdlib loggers named after each tag, so handlers
go on the root logger:
- ~/.config/eclog/eclog.log (persistent, for debugging, 5 MB cap, 2 backups)
- stderr (only warnings and above unless --debug)
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from eclog.log import TRACE

LOG_DIR = Path.home() / ".config" / "eclog"
LOG_FILE = LOG_DIR / "eclog.log"

_LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_LOG_BACKUP_COUNT = 2


def setup_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    log_file = log_file or LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(TRACE if debug else logging.DEBUG)

    # File handler: everything that passes the facade, for post-mortem debugging.
    fh = RotatingFileHandler(
        str(log_file),
        maxBytes=_LOG_MAX_BYTES,
        backupCount=_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    fh.setLevel(TRACE)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(fh)

    # Stderr handler: only warnings unless debug mode
    sh = logging.StreamHandler()
    sh.setLevel(TRACE if debug else logging.WARNING)
    sh.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(sh)
