"""Recording session orchestration.

RecorderService drives one session at a time through the phases
idle -> recording -> transcribing -> summarizing -> done, or error.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .backends import get_backend
from .config import Settings, SettingsStore
from .devices import DeviceResolver, scan_devices
from .errors import ConfigurationError
from .live import LiveTranscriptionWatcher
from .logging_utils import SessionLog
from .models import STARTABLE_PHASES, Phase, Session
from .notes import NoteStore, note_path
from .prompts import get_preset
from .recorder import CaptureQuality, CaptureSession, build_args
from .retention import enforce_retention
from .summarizer import SummarizationDispatcher, compact_length
from .transcriber import WhisperTranscriber

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.5


def new_session(recordings_root: Path, when: Optional[datetime] = None, preset_key: Optional[str] = None) -> Session:
    """Allocate the bundle directory and artifact paths for a new recording."""
    when = when or datetime.now()
    stamp = when.strftime("recording_%Y-%m-%d_%H-%M-%S")
    base = stamp
    counter = 2
    while (Path(recordings_root) / base).exists():
        base = f"{stamp}_{counter}"
        counter += 1
    bundle_dir = Path(recordings_root) / base
    bundle_dir.mkdir(parents=True)
    return Session(
        bundle_dir=bundle_dir,
        base_name=base,
        audio_path=bundle_dir / f"{base}.mp3",
        transcript_path=bundle_dir / f"{base}.txt",
        log_path=bundle_dir / f"{base}.log",
        started_at=when,
        preset_key=preset_key,
    )


class RecorderService:
    def __init__(
        self,
        settings_store: SettingsStore,
        note_store: Optional[NoteStore] = None,
        scanner=scan_devices,
        capture_factory=CaptureSession,
        transcriber_factory=WhisperTranscriber,
        backend_factory=get_backend,
        platform: Optional[str] = None,
    ):
        self.settings_store = settings_store
        self.note_store = note_store
        self.scanner = scanner
        self.capture_factory = capture_factory
        self.transcriber_factory = transcriber_factory
        self.backend_factory = backend_factory
        self.platform = platform

        self.phase = Phase.IDLE
        self.session: Optional[Session] = None
        self.note_created: Optional[str] = None

        self.on_phase_change: Optional[Callable[[Phase], None]] = None
        self.on_elapsed: Optional[Callable[[int], None]] = None
        self.on_info: Optional[Callable[[str], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

        self._settings: Optional[Settings] = None
        self._log = SessionLog()
        self._capture: Optional[CaptureSession] = None
        self._watcher: Optional[LiveTranscriptionWatcher] = None
        self._transcriber: Optional[WhisperTranscriber] = None
        self._ticker: Optional[asyncio.Task] = None
        self._cleanup: Optional[asyncio.Task] = None
        # claimed synchronously so overlapping calls cannot interleave across awaits
        self._starting = False
        self._stopping = False

    # events

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        logger.info("Phase: %s", phase.value)
        if self.on_phase_change:
            self.on_phase_change(phase)

    def _info(self, message: str) -> None:
        if self.on_info:
            self.on_info(message)

    def _fail(self, message: str) -> None:
        self._log.append(f"Error: {message}")
        logger.error(message)
        if self.on_error:
            self.on_error(message)
        self._set_phase(Phase.ERROR)

    # start

    def check_ready(self, settings: Settings) -> None:
        """Raise ConfigurationError when a session cannot be started."""
        if not (settings.ffmpeg.path or "").strip():
            raise ConfigurationError("FFmpeg path not configured")
        if settings.live.enabled:
            self.transcriber_factory(settings.whisper).check()

    async def start(self, preset_key: Optional[str] = None) -> None:
        if self.phase not in STARTABLE_PHASES or self._starting:
            return
        self._starting = True
        try:
            await self._start(preset_key)
        finally:
            self._starting = False

    async def _start(self, preset_key: Optional[str]) -> None:
        await self._collect_cleanup()
        settings = self.settings_store.snapshot()
        try:
            self.check_ready(settings)
        except ConfigurationError as e:
            logger.warning("Cannot start: %s", e)
            if self.on_error:
                self.on_error(str(e))
            return

        self._reset()
        self._settings = settings
        if preset_key:
            try:
                self.settings_store.update({"summary.last_preset": preset_key})
            except OSError as e:
                logger.warning("Could not remember preset: %s", e)
        else:
            preset_key = settings.summary.last_preset

        try:
            await self._begin(settings, preset_key)
        except Exception as e:
            logger.exception("Recording could not start")
            await self._teardown()
            self._fail(str(e) or type(e).__name__)

    async def _collect_cleanup(self) -> None:
        if self._cleanup is None:
            return
        task, self._cleanup = self._cleanup, None
        try:
            await task
        except Exception:
            logger.exception("Live watcher cleanup failed")

    def _reset(self) -> None:
        self.session = None
        self.note_created = None
        self._capture = None
        self._watcher = None
        self._transcriber = None
        self._log = SessionLog()

    async def _begin(self, settings: Settings, preset_key: Optional[str]) -> None:
        session = new_session(settings.recordings_root, preset_key=get_preset(preset_key).key)
        self.session = session
        self._log = SessionLog(session.log_path)
        self._log.append("Session started")

        resolver = DeviceResolver(self.settings_store, self.scanner, self._log, self.platform)
        inputs = await resolver.resolve(settings.ffmpeg)

        quality = CaptureQuality.from_settings(settings.recording)
        live = settings.live.enabled
        segment_pattern = session.bundle_dir / "seg_%03d.mp3" if live else None
        args = build_args(inputs, quality, session.audio_path, segment_pattern, settings.live.segment_seconds)

        self._capture = self.capture_factory(settings.ffmpeg.path, session_log=self._log, on_crash=self._on_crash)
        await self._capture.begin(args)
        self._set_phase(Phase.RECORDING)
        self._ticker = asyncio.create_task(self._tick())

        if live:
            self._transcriber = self.transcriber_factory(settings.whisper)
            live_note = None
            if self.note_store is not None:
                label = get_preset(session.preset_key).label
                live_note = note_path(settings.storage.output_folder, f"Live {label}", session.started_at)
            self._watcher = LiveTranscriptionWatcher(
                session.bundle_dir,
                session.transcript_path,
                self._transcriber.transcribe_segment,
                note_store=self.note_store,
                note_path=live_note,
                session_log=self._log,
                debounce_seconds=settings.live.debounce_seconds,
            )
            self._watcher.start()

    async def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            await asyncio.sleep(TICK_INTERVAL)
            seconds = int(loop.time() - started)
            if self.session is not None:
                self.session.elapsed_seconds = seconds
            if self.on_elapsed:
                self.on_elapsed(seconds)

    async def _stop_ticker(self) -> None:
        if self._ticker is None:
            return
        self._ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._ticker
        self._ticker = None

    def _on_crash(self, code: int, tail: str) -> None:
        if self.phase != Phase.RECORDING:
            return
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._watcher is not None:
            self._cleanup = asyncio.create_task(self._watcher.abort())
        self._fail(f"FFmpeg exited with code {code}.\n{tail}")

    async def _teardown(self) -> None:
        await self._stop_ticker()
        if self._watcher is not None:
            await self._watcher.abort()
        if self._capture is not None and self._capture.running:
            await self._capture.request_stop()

    # stop

    async def stop(self) -> None:
        if self.phase != Phase.RECORDING or self._stopping:
            return
        self._stopping = True
        try:
            await self._finish()
        except Exception as e:
            logger.exception("Session failed after recording")
            await self._teardown()
            self._fail(str(e) or type(e).__name__)
        finally:
            self._stopping = False

    async def _finish(self) -> None:
        session, settings = self.session, self._settings
        await self._stop_ticker()
        await self._capture.request_stop()

        try:
            size = session.audio_path.stat().st_size
            self._log.append(f"Recording finished. File: {session.audio_path} ({size} bytes)")
        except OSError:
            self._log.append(f"Recording finished. File: {session.audio_path}")

        self._set_phase(Phase.TRANSCRIBING)
        self._info("Transcribing...")
        if self._watcher is not None:
            await self._watcher.finalize()
            try:
                transcript = session.transcript_path.read_text(encoding="utf-8").strip()
            except FileNotFoundError:
                transcript = ""
        else:
            transcriber = self.transcriber_factory(settings.whisper)
            self._log.append(f"Transcription: {session.audio_path}")
            transcript = await transcriber.transcribe_file(session.audio_path, session.transcript_path)
            self._log.append(f"Transcription saved: {session.transcript_path} ({len(transcript)} chars)")

        removed = enforce_retention(settings.recordings_root, settings.storage.max_recordings_kept)
        if removed:
            self._log.append(f"Retention removed {len(removed)} old recording(s)")

        length = compact_length(transcript)
        if length < settings.summary.min_compact_chars:
            self._log.append(f"Transcription too short ({length} chars). Skipping summarization.")
            self._info("Transcription too short - summary skipped")
            self._set_phase(Phase.DONE)
            return

        self._set_phase(Phase.SUMMARIZING)
        self._info("Summarizing...")
        dispatcher = SummarizationDispatcher(settings, self.backend_factory, self._log)
        result = await dispatcher.run(transcript, session.preset_key)
        if result.skipped:
            self._info("Summary skipped")
            self._set_phase(Phase.DONE)
            return

        await self._create_note(result.markdown)
        self._set_phase(Phase.DONE)

    async def _create_note(self, markdown: str) -> None:
        if self.note_store is None:
            self._log.append("No note store configured, summary not saved")
            return
        label = get_preset(self.session.preset_key).label
        path = note_path(self._settings.storage.output_folder, label)
        self.note_created = await self.note_store.create(path, markdown)
        self._log.append(f"Note created: {self.note_created}")
        self._info("Note created!")
