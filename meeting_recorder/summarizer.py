"""Turn a finished transcript into a polished Markdown note body."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .backends import SummaryBackend, get_backend
from .config import Settings
from .language import effective_language
from .logging_utils import SessionLog
from .markdown import polish_summary
from .prompts import get_preset

logger = logging.getLogger(__name__)

BackendFactory = Callable[..., SummaryBackend]

SKIP_TOO_SHORT = 'transcript too short'
SKIP_EMPTY_SUMMARY = 'empty summary'


def compact_length(text: str) -> int:
    """Length of the transcript with all whitespace removed."""
    return len(re.sub(r'\s+', '', text or ''))


@dataclass
class SummaryResult:
    markdown: str = ''
    skipped_reason: Optional[str] = None
    language: str = ''
    provider: str = ''
    preset: str = ''

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class SummarizationDispatcher:
    def __init__(
        self,
        settings: Settings,
        backend_factory: BackendFactory = get_backend,
        session_log: Optional[SessionLog] = None,
    ):
        self.settings = settings
        self.backend_factory = backend_factory
        self.log = session_log or SessionLog()

    async def run(self, transcript: str, preset_key: Optional[str] = None) -> SummaryResult:
        """Summarize ``transcript``; SummarizationError propagates to the caller."""
        summary = self.settings.summary
        preset = get_preset(preset_key)
        result = SummaryResult(preset=preset.key, provider=self.settings.llm.provider)

        length = compact_length(transcript)
        if length < summary.min_compact_chars:
            self.log.append(f"Transcript too short ({length} chars), skipping summary")
            result.skipped_reason = SKIP_TOO_SHORT
            return result

        language = effective_language(self.settings.whisper.language, transcript)
        result.language = language
        backend = self.backend_factory(
            self.settings.llm,
            min_chars=summary.min_transcript_chars,
            min_letters=summary.min_transcript_letters,
        )
        self.log.append(f"Summarizing with {backend.name}/{backend.model} (preset={preset.key}, language={language})")

        raw = await backend.summarize(preset.prompt, transcript, language)
        result.markdown = polish_summary(raw)
        if not result.markdown:
            self.log.append("Summary empty after clean-up, no note will be created")
            result.skipped_reason = SKIP_EMPTY_SUMMARY
        else:
            self.log.append(f"Summary ready ({len(result.markdown)} chars)")
        return result
