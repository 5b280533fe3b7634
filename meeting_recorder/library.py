"""Browse and reprocess past recordings."""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional

from .backends import get_backend
from .config import Settings
from .errors import TranscriptionError
from .logging_utils import SessionLog
from .models import Bundle
from .notes import NoteStore, note_path
from .prompts import get_preset
from .retention import delete_bundle, list_bundles
from .summarizer import SummarizationDispatcher, SummaryResult
from .transcriber import WhisperTranscriber

logger = logging.getLogger(__name__)

SORT_MODES = ('date-desc', 'date-asc', 'size-desc', 'size-asc', 'name-asc', 'name-desc')

_NOTE_CREATED = re.compile(r'Note created:\s*(.+)$', re.IGNORECASE | re.MULTILINE)


def list_recordings(
    root: Path,
    sort: str = 'date-desc',
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> List[Bundle]:
    """Recordings under ``root``, optionally filtered by day (inclusive) and sorted."""
    bundles = list_bundles(root)
    if from_date or to_date:
        def _in_range(bundle: Bundle) -> bool:
            day = datetime.fromtimestamp(bundle.mtime).date()
            if from_date and day < from_date:
                return False
            if to_date and day > to_date:
                return False
            return True
        bundles = [b for b in bundles if _in_range(b)]

    if sort not in SORT_MODES:
        raise ValueError(f"Unknown sort mode: {sort}")
    field, direction = sort.split('-')
    key = {
        'date': lambda b: b.mtime,
        'size': lambda b: b.size_bytes,
        'name': lambda b: b.base_name.lower(),
    }[field]
    return sorted(bundles, key=key, reverse=(direction == 'desc'))


def delete_recordings(root: Path, base_names: Iterable[str]) -> List[str]:
    """Delete the named recordings; returns the names actually found."""
    wanted = set(base_names)
    deleted = []
    for bundle in list_bundles(root):
        if bundle.base_name in wanted:
            delete_bundle(bundle)
            deleted.append(bundle.base_name)
    missing = wanted.difference(deleted)
    if missing:
        logger.warning("Recordings not found: %s", ', '.join(sorted(missing)))
    return deleted


def find_recording(root: Path, base_name: str) -> Optional[Bundle]:
    for bundle in list_bundles(root):
        if bundle.base_name == base_name:
            return bundle
    return None


def find_note_from_log(log_path: Path) -> Optional[str]:
    """Path of the last note recorded in a session log."""
    try:
        text = Path(log_path).read_text(encoding='utf-8')
    except OSError:
        return None
    matches = _NOTE_CREATED.findall(text)
    return matches[-1].strip() if matches else None


async def regenerate_transcript(bundle: Bundle, settings: Settings, transcriber=None) -> str:
    """Run whisper-cli over the full recording and overwrite the transcript."""
    if not bundle.audio_path.exists():
        raise TranscriptionError(f"Audio not found: {bundle.audio_path}")
    transcriber = transcriber or WhisperTranscriber(settings.whisper)
    log = SessionLog(bundle.log_path)
    log.append(f"Regenerating transcript: {bundle.audio_path}")
    text = await transcriber.transcribe_file(bundle.audio_path, bundle.transcript_path)
    log.append(f"Transcript regenerated ({len(text)} chars)")
    return text


async def regenerate_summary(
    bundle: Bundle,
    settings: Settings,
    note_store: NoteStore,
    preset_key: Optional[str] = None,
    backend_factory=get_backend,
) -> Optional[str]:
    """Summarize an existing transcript into a new '(regenerated)' note.

    Returns the note path, or None when the summary was skipped.
    """
    try:
        transcript = bundle.transcript_path.read_text(encoding='utf-8')
    except FileNotFoundError:
        raise TranscriptionError(f"Transcript not found: {bundle.transcript_path}") from None

    preset = get_preset(preset_key or settings.summary.last_preset)
    log = SessionLog(bundle.log_path)
    dispatcher = SummarizationDispatcher(settings, backend_factory, log)
    result: SummaryResult = await dispatcher.run(transcript, preset.key)
    if result.skipped:
        log.append(f"Summary regeneration skipped: {result.skipped_reason}")
        return None

    path = note_path(settings.storage.output_folder, preset.label, suffix=' (regenerated)')
    created = await note_store.create(path, result.markdown)
    log.append(f"Note created: {created}")
    return created
