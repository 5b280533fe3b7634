"""Logging helpers."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def setup_logging(log_dir: str = "logs", level: int | str = logging.INFO) -> tuple[logging.Logger, str]:
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "meeting_recorder.log")

    root = logging.getLogger("meeting_recorder")
    root.setLevel(level)

    if not root.handlers:
        fmt = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3)
        handler.setFormatter(fmt)
        root.addHandler(handler)

        stream = logging.StreamHandler()
        stream.setLevel(logging.WARNING)
        stream.setFormatter(fmt)
        root.addHandler(stream)

    return root, log_path


class SessionLog:
    """Timestamped audit trail stored next to a recording."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path

    def append(self, message: str) -> None:
        logger.info(message)
        if not self.path:
            return
        stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        try:
            with open(self.path, "a", encoding="utf-8") as handle:
                handle.write(f"[{stamp}] {message}\n")
        except OSError as exc:
            logger.debug("Session log write failed (%s): %s", self.path, exc)
