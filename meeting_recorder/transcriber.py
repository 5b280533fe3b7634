"""whisper.cpp transcription through the whisper-cli executable"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from .config import WhisperSettings
from .errors import ConfigurationError, TranscriptionError

logger = logging.getLogger(__name__)

ProcessRunner = Callable[[str, List[str], Optional[Path]], Awaitable[Tuple[int, str, str]]]


async def run_process(program: str, args: List[str], cwd: Optional[Path] = None) -> Tuple[int, str, str]:
    """Run a program to completion and return (returncode, stdout, stderr)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            program,
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TranscriptionError(f"Cannot start {program}: {e}") from e
    stdout_raw, stderr_raw = await proc.communicate()
    return (
        proc.returncode,
        stdout_raw.decode('utf-8', errors='replace'),
        stderr_raw.decode('utf-8', errors='replace'),
    )


def build_whisper_args(
    settings: WhisperSettings,
    audio_path: Path,
    output_prefix: Path,
    stable_decoding: bool = True,
) -> List[str]:
    args = ['-m', settings.model_path, '-f', str(audio_path)]
    language = (settings.language or 'auto').strip()
    if language and language != 'auto':
        args += ['-l', language]
    if stable_decoding:
        # Short segments make whisper prone to hallucinated repetition loops
        args += [
            '-mc', str(settings.max_context),
            '-et', str(settings.entropy_threshold),
            '-lpt', str(settings.logprob_threshold),
            '-wt', str(settings.word_threshold),
            '-nt',
            '-bo', '1',
            '-bs', '1',
        ]
    # Write text straight to <prefix>.txt instead of buffering stdout
    args += ['-np', '-otxt', '-of', str(output_prefix)]
    return args


class WhisperTranscriber:
    def __init__(self, settings: WhisperSettings, runner: ProcessRunner = run_process):
        self.settings = settings
        self.runner = runner

    def check(self) -> None:
        if not self.settings.cli_path:
            raise ConfigurationError("whisper-cli path not configured")
        if not self.settings.model_path:
            raise ConfigurationError("Whisper model path not configured")

    async def _run(self, audio_path: Path, stable_decoding: bool) -> str:
        self.check()
        audio_path = Path(audio_path)
        output_prefix = audio_path.with_suffix('')
        output_txt = output_prefix.with_suffix('.txt')
        args = build_whisper_args(self.settings, audio_path, output_prefix, stable_decoding)
        logger.debug("Transcription: %s %s", self.settings.cli_path, ' '.join(args))

        code, _stdout, stderr = await self.runner(self.settings.cli_path, args, audio_path.parent)
        if code != 0:
            tail = '\n'.join(stderr.strip().splitlines()[-8:])
            raise TranscriptionError(f"whisper-cli exited with code {code}: {tail}")
        try:
            text = output_txt.read_text(encoding='utf-8').strip()
        except OSError as e:
            raise TranscriptionError(f"whisper-cli produced no output file {output_txt}: {e}") from e
        return text

    async def transcribe_segment(self, segment_path: Path) -> str:
        """Transcribe one live segment and remove its text output."""
        segment_path = Path(segment_path)
        try:
            return await self._run(segment_path, stable_decoding=True)
        finally:
            segment_path.with_suffix('.txt').unlink(missing_ok=True)

    async def transcribe_file(self, audio_path: Path, transcript_path: Path) -> str:
        """Transcribe a complete recording into ``transcript_path``."""
        audio_path = Path(audio_path)
        transcript_path = Path(transcript_path)
        text = await self._run(audio_path, stable_decoding=False)
        if not text:
            raise TranscriptionError("Empty transcription")
        generated = audio_path.with_suffix('.txt')
        if generated != transcript_path:
            generated.unlink(missing_ok=True)
        transcript_path.write_text(text, encoding='utf-8')
        return text
