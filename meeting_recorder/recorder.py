"""Audio capture through an external ffmpeg process"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .config import RecordingSettings
from .errors import CaptureError
from .logging_utils import SessionLog
from .models import ResolvedInputs

logger = logging.getLogger(__name__)

# Bounded waits for each shutdown step, in seconds
QUIT_TIMEOUT = 1.5
INTERRUPT_TIMEOUT = 1.2
TERMINATE_TIMEOUT = 1.0
KILL_TIMEOUT = 0.8

STDERR_TAIL_LINES = 8

# Exit by one of these signals is never treated as a crash
STOP_SIGNALS = tuple(
    -int(sig) for sig in (
        getattr(signal, 'SIGINT', None),
        getattr(signal, 'SIGTERM', None),
        getattr(signal, 'SIGKILL', None),
    ) if sig is not None
)

CrashCallback = Callable[[int, str], None]


@dataclass
class CaptureQuality:
    sample_rate_hz: int
    channels: int
    bitrate_kbps: int

    @classmethod
    def from_settings(cls, recording: RecordingSettings) -> 'CaptureQuality':
        def _int(value, fallback):
            try:
                return int(value)
            except (TypeError, ValueError):
                return fallback

        return cls(
            sample_rate_hz=max(8000, _int(recording.sample_rate_hz, 48000)),
            channels=max(1, min(2, _int(recording.channels, 1))),
            bitrate_kbps=max(64, _int(recording.bitrate_kbps, 192)),
        )


def build_args(
    inputs: ResolvedInputs,
    quality: CaptureQuality,
    audio_path: Path,
    segment_pattern: Optional[Path] = None,
    segment_seconds: int = 20,
) -> List[str]:
    """Build the ffmpeg argument list for one capture session."""
    specs = inputs.specs
    if not specs:
        raise CaptureError("No FFmpeg input device configured. Set at least the microphone.")

    args = ['-hide_banner', '-y']
    for spec in specs:
        # avfoundation rejects per-input -ar/-ac, so the format is forced on the output
        args += ['-f', inputs.input_format, '-thread_queue_size', '1024', '-i', spec.address]

    if len(specs) == 2:
        args += ['-filter_complex', '[0:a][1:a]amix=inputs=2:duration=longest[aout]', '-map', '[aout]']
    elif segment_pattern is not None:
        # tee needs an explicit stream mapping
        args += ['-map', '0:a']

    args += [
        '-vn',
        '-ar', str(quality.sample_rate_hz),
        '-ac', str(quality.channels),
        '-acodec', 'libmp3lame',
        '-b:a', f'{quality.bitrate_kbps}k',
    ]

    if segment_pattern is None:
        args.append(str(audio_path))
    else:
        segment_sink = (
            f'[f=segment:segment_time={int(segment_seconds)}:reset_timestamps=1]'
            f'{_tee_escape(str(segment_pattern))}'
        )
        args += ['-f', 'tee', f'{segment_sink}|{_tee_escape(str(audio_path))}']
    return args


def _tee_escape(path: str) -> str:
    # tee treats these as separators inside its output list
    for ch in ('\\', '|', '[', ']'):
        path = path.replace(ch, '\\' + ch)
    return path


class CaptureSession:
    """Owns one ffmpeg capture process from spawn to exit."""

    def __init__(
        self,
        ffmpeg_path: str,
        session_log: Optional[SessionLog] = None,
        on_crash: Optional[CrashCallback] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.log = session_log or SessionLog()
        self.on_crash = on_crash
        self.state = 'idle'  # idle -> running -> stopping -> stopped
        self.returncode: Optional[int] = None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stderr_tail: deque = deque(maxlen=200)
        self._stop_requested = False
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def stderr_tail(self, lines: int = STDERR_TAIL_LINES) -> str:
        return '\n'.join(list(self._stderr_tail)[-lines:])

    async def begin(self, args: List[str]) -> asyncio.subprocess.Process:
        if not self.ffmpeg_path:
            raise CaptureError("FFmpeg path not configured")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureError(f"Cannot start FFmpeg: {e}") from e

        self.state = 'running'
        self.log.append(f"FFmpeg started: {self.ffmpeg_path} {' '.join(args)}")
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())
        return self._proc

    async def _read_stderr(self) -> None:
        stream = self._proc.stderr if self._proc else None
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            self._stderr_tail.append(line.decode('utf-8', errors='replace').rstrip())

    async def _watch_exit(self) -> None:
        code = await self._proc.wait()
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=1.0)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()
        self.returncode = code
        self.state = 'stopped'

        if self._stop_requested or code in STOP_SIGNALS:
            self.log.append(f"FFmpeg terminated on request (code={code}).")
        elif code != 0:
            tail = self.stderr_tail()
            self.log.append(f"FFmpeg error ({code}):\n{tail}")
            if self.on_crash is not None:
                self.on_crash(code, tail)
        else:
            self.log.append("FFmpeg exited normally.")

    async def _wait_exit(self, timeout: float) -> bool:
        if self._exit_task is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self._exit_task), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def request_stop(self) -> None:
        """Stop ffmpeg, escalating until the process has exited."""
        if self._proc is None:
            return
        self._stop_requested = True
        if self._exit_task is not None and self._exit_task.done():
            return
        self.state = 'stopping'
        proc = self._proc

        # 1. graceful quit lets ffmpeg flush and finalize the file
        try:
            if proc.stdin is not None:
                proc.stdin.write(b'q\n')
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, OSError) as e:
            logger.debug("Quit command not delivered: %s", e)
        if await self._wait_exit(QUIT_TIMEOUT):
            return

        # 2. interrupt
        if sys.platform != 'win32':
            self._signal(proc, signal.SIGINT)
            if await self._wait_exit(INTERRUPT_TIMEOUT):
                return

        # 3. terminate
        self._signal(proc, signal.SIGTERM)
        if await self._wait_exit(TERMINATE_TIMEOUT):
            return

        # 4. force kill
        self.log.append("FFmpeg did not stop, forcing kill")
        if sys.platform == 'win32':
            try:
                killer = await asyncio.create_subprocess_exec(
                    'taskkill', '/pid', str(proc.pid), '/t', '/f',
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await killer.wait()
            except OSError as e:
                logger.warning("taskkill failed: %s", e)
        else:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await self._wait_exit(KILL_TIMEOUT)

    def _signal(self, proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass
