"""Recording bundles on disk and the retention cap."""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import List

from .models import Bundle

logger = logging.getLogger(__name__)

AUDIO_EXTENSION = ".mp3"


def load_bundle(directory: Path) -> Bundle:
    directory = Path(directory)
    base = directory.name
    audio = directory / f"{base}{AUDIO_EXTENSION}"
    try:
        stat = audio.stat()
    except OSError:
        stat = directory.stat()
    return Bundle(
        base_name=base,
        directory=directory,
        audio_path=audio,
        transcript_path=directory / f"{base}.txt",
        log_path=directory / f"{base}.log",
        mtime=stat.st_mtime,
        size_bytes=stat.st_size if audio.exists() else 0,
    )


def list_bundles(root: Path) -> List[Bundle]:
    """All bundles under ``root``, most recently modified first."""
    root = Path(root)
    if not root.is_dir():
        return []
    bundles = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        try:
            bundles.append(load_bundle(entry))
        except OSError as exc:
            logger.debug("Skipping unreadable bundle %s: %s", entry, exc)
    bundles.sort(key=lambda b: b.mtime, reverse=True)
    return bundles


def parse_max_kept(value) -> int:
    """Return the retention cap, or 0 (unlimited) for anything unusable."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(number)


def delete_bundle(bundle: Bundle) -> None:
    """Remove every file of a bundle; a locked file does not stop the others."""
    try:
        names = os.listdir(bundle.directory)
    except OSError:
        names = []
    targets = {bundle.directory / name for name in names} | set(bundle.artifacts)
    for path in targets:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug("Could not delete %s: %s", path, exc)
    try:
        bundle.directory.rmdir()
    except OSError as exc:
        logger.debug("Could not remove %s: %s", bundle.directory, exc)


def enforce_retention(root: Path, max_kept) -> List[Bundle]:
    """Delete bundles beyond the ``max_kept`` most recent ones."""
    limit = parse_max_kept(max_kept)
    if limit == 0:
        return []
    bundles = list_bundles(root)
    if len(bundles) <= limit:
        return []
    doomed = bundles[limit:]
    for bundle in doomed:
        delete_bundle(bundle)
        logger.info("Retention removed %s", bundle.base_name)
    return doomed
