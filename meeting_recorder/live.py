"""Progressive transcription of rolling capture segments.

ffmpeg's segment muxer writes ``seg_000.mp3``, ``seg_001.mp3``, ... into the
bundle directory. A segment is only complete once the next one appears, so
the appearance of index N schedules index N-1 after a short debounce. A
single worker drains the resulting queue, which keeps transcript chunks in
ascending segment order.

Directory changes arrive from a watchdog observer thread and are handed to
the event loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import TranscriptionError
from .logging_utils import SessionLog
from .models import SEGMENT_PATTERN, Segment, segment_filename
from .notes import NoteStore

logger = logging.getLogger(__name__)

SegmentTranscriber = Callable[[Path], Awaitable[str]]


def list_segments(directory: Path) -> List[Segment]:
    """Segment files in ``directory`` sorted by ascending index."""
    try:
        names = os.listdir(directory)
    except OSError:
        return []
    segments = [Segment.from_path(Path(directory) / name) for name in names if SEGMENT_PATTERN.match(name)]
    return sorted((s for s in segments if s is not None), key=lambda s: s.index)


class SegmentEventHandler(FileSystemEventHandler):
    """Forwards segment file events from the observer thread to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[str], None]):
        self.loop = loop
        self.callback = callback

    def _forward(self, path) -> None:
        name = os.path.basename(os.fsdecode(path))
        if not SEGMENT_PATTERN.match(name):
            return
        try:
            self.loop.call_soon_threadsafe(self.callback, name)
        except RuntimeError:
            # loop already closed
            logger.debug("Dropped event for %s", name)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.dest_path)


class LiveTranscriptionWatcher:
    def __init__(
        self,
        bundle_dir: Path,
        transcript_path: Path,
        transcribe: SegmentTranscriber,
        note_store: Optional[NoteStore] = None,
        note_path: Optional[str] = None,
        session_log: Optional[SessionLog] = None,
        debounce_seconds: float = 1.5,
    ):
        self.bundle_dir = Path(bundle_dir)
        self.transcript_path = Path(transcript_path)
        self.transcribe = transcribe
        self.note_store = note_store
        self.note_path = note_path
        self.log = session_log or SessionLog()
        self.debounce_seconds = debounce_seconds

        self.processed: Set[Path] = set()
        self.chunks_appended = 0
        self._timers: Dict[Path, asyncio.TimerHandle] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._observer: Optional[Observer] = None
        self._closing = False
        self._note_created = False

    def start(self, watch: bool = True) -> None:
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain())
        if watch:
            handler = SegmentEventHandler(asyncio.get_running_loop(), self.on_fs_event)
            self._observer = Observer()
            self._observer.schedule(handler, str(self.bundle_dir), recursive=False)
            self._observer.start()
        self.log.append(f"Live transcription watching {self.bundle_dir}")

    def on_fs_event(self, filename: str) -> None:
        """Handle a change notification for ``filename`` in the bundle directory."""
        if self._closing:
            return
        segment = Segment.from_path(self.bundle_dir / filename)
        if segment is None or segment.index == 0:
            return
        previous = self.bundle_dir / segment_filename(segment.index - 1)
        if previous in self.processed or previous in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[previous] = loop.call_later(self.debounce_seconds, self._enqueue, previous)

    def _enqueue(self, path: Path) -> None:
        self._timers.pop(path, None)
        if path in self.processed:
            return
        # Mark before transcription starts so repeated events cannot schedule it again
        self.processed.add(path)
        self._queue.put_nowait(path)

    async def _stop_observer(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        await asyncio.to_thread(self._observer.join)
        self._observer = None

    async def _drain(self) -> None:
        while True:
            path = await self._queue.get()
            try:
                if path is None:
                    return
                await self.process_segment(path)
            except Exception:
                # A lost segment must not stop the rest of the live transcript
                logger.exception("Live segment %s failed", path)
            finally:
                self._queue.task_done()

    async def process_segment(self, path: Path) -> None:
        if not path.exists():
            self.log.append(f"Segment vanished before transcription: {path.name}")
            return
        try:
            text = await self.transcribe(path)
        except (TranscriptionError, OSError) as exc:
            self.log.append(f"Segment {path.name} skipped: {exc}")
            return

        text = (text or "").strip()
        if text:
            await self._append(text)
            self.log.append(f"Segment {path.name} transcribed ({len(text)} chars)")
        else:
            self.log.append(f"Segment {path.name} produced no text")

        try:
            path.unlink()
        except OSError as exc:
            logger.debug("Could not delete segment %s: %s", path, exc)

    async def _append(self, text: str) -> None:
        with open(self.transcript_path, "a", encoding="utf-8") as handle:
            if self.chunks_appended:
                handle.write("\n")
            handle.write(text + "\n")
        self.chunks_appended += 1

        if self.note_store is None or not self.note_path:
            return
        try:
            if not self._note_created:
                self.note_path = await self.note_store.create(self.note_path, f"# Live transcript\n\n{text}\n")
                self._note_created = True
            else:
                current = await self.note_store.read(self.note_path)
                await self.note_store.modify(self.note_path, f"{current.rstrip()}\n\n{text}\n")
        except OSError as exc:
            self.log.append(f"Live note update failed: {exc}")

    async def finalize(self) -> None:
        """Flush everything left once capture has stopped."""
        self._closing = True
        await self._stop_observer()

        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        if self._queue is not None:
            await self._queue.join()

        remaining = [s for s in list_segments(self.bundle_dir) if s.path not in self.processed]
        if remaining:
            self.log.append(f"Finalizing {len(remaining)} remaining segment(s)")
        for segment in remaining:
            self.processed.add(segment.path)
            await self.process_segment(segment.path)

        if self._worker is not None:
            self._queue.put_nowait(None)
            await self._worker
            self._worker = None
        self.log.append(f"Live transcription finished ({self.chunks_appended} chunk(s))")

    async def abort(self) -> None:
        """Stop watching without transcribing what is left."""
        self._closing = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        await self._stop_observer()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
