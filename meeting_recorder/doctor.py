"""Dependency checks and auto-detection of the external tools"""
from __future__ import annotations

import logging
import os
import re
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import LLMSettings, Settings

logger = logging.getLogger(__name__)

WINDOWS_FFMPEG_PATHS = [
    'C:/ffmpeg/bin/ffmpeg.exe',
    'C:/Program Files/ffmpeg/bin/ffmpeg.exe',
    'C:/Program Files (x86)/ffmpeg/bin/ffmpeg.exe',
    'C:/ProgramData/chocolatey/bin/ffmpeg.exe',
    'C:/ProgramData/chocolatey/lib/ffmpeg/tools/ffmpeg.exe',
]
UNIX_FFMPEG_PATHS = ['/opt/homebrew/bin/ffmpeg', '/usr/local/bin/ffmpeg', '/usr/bin/ffmpeg']

WHISPER_BUILD_PATHS = [
    ('build', 'bin', 'whisper-cli'),
    ('build', 'bin', 'whisper-cli.exe'),
    ('build', 'bin', 'Release', 'whisper-cli'),
    ('build', 'bin', 'Release', 'whisper-cli.exe'),
    ('main',),
    ('main.exe',),
]
WHISPER_WALK_DEPTH = 3
_WHISPER_NAME = re.compile(r'whisper-cli(\.exe)?$', re.IGNORECASE)


@dataclass
class DependencyState:
    has_api_key: bool = False
    ffmpeg_ok: bool = False
    whisper_ok: bool = False
    model_ok: bool = False
    missing_messages: List[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.missing_messages


def provider_api_key(llm: LLMSettings) -> Optional[str]:
    """API key of the configured provider; None when the provider needs none."""
    provider = (llm.provider or '').strip().lower()
    if provider == 'ollama':
        return None
    return getattr(llm, f'{provider}_api_key', '') or ''


def _is_executable(path: str, platform: Optional[str] = None) -> bool:
    # X_OK is unreliable for .exe files on Windows
    mode = os.F_OK if (platform or sys.platform) == 'win32' else os.X_OK
    return os.path.isfile(path) and os.access(path, mode)


def check_dependencies(settings: Settings, platform: Optional[str] = None) -> DependencyState:
    """Verify credentials, executables and the whisper model without running anything."""
    state = DependencyState()

    key = provider_api_key(settings.llm)
    state.has_api_key = key is None or bool(key.strip())
    if not state.has_api_key:
        state.missing_messages.append("Missing API Key")

    ffmpeg = (settings.ffmpeg.path or '').strip()
    if ffmpeg:
        state.ffmpeg_ok = _is_executable(ffmpeg, platform)
        if not state.ffmpeg_ok:
            state.missing_messages.append("FFmpeg not found or not executable")
    else:
        state.missing_messages.append("FFmpeg path not set")

    whisper = (settings.whisper.cli_path or '').strip()
    if whisper:
        state.whisper_ok = _is_executable(whisper, platform)
        if not state.whisper_ok:
            state.missing_messages.append("whisper-cli not found or not executable")
    else:
        state.missing_messages.append("whisper-cli path not set")

    model = (settings.whisper.model_path or '').strip()
    if model:
        state.model_ok = os.path.isfile(model) and os.access(model, os.R_OK)
        if not state.model_ok:
            state.missing_messages.append("Whisper model not readable/found")
    else:
        state.missing_messages.append("Whisper model path not set")

    return state


def autodetect_ffmpeg(platform: Optional[str] = None) -> Optional[str]:
    """Locate ffmpeg on PATH, then in the usual install locations."""
    found = shutil.which('ffmpeg')
    if found:
        return found
    candidates = WINDOWS_FFMPEG_PATHS if (platform or sys.platform) == 'win32' else UNIX_FFMPEG_PATHS
    for candidate in candidates:
        if os.path.exists(candidate):
            return candidate
    return None


def _walk_find(root: Path, depth: int) -> Optional[Path]:
    if depth < 0:
        return None
    try:
        entries = sorted(root.iterdir())
    except OSError:
        return None
    for entry in entries:
        try:
            if entry.is_file() and _WHISPER_NAME.search(entry.name):
                return entry
            if entry.is_dir():
                found = _walk_find(entry, depth - 1)
                if found:
                    return found
        except OSError as e:
            logger.debug("Skipping %s: %s", entry, e)
    return None


def autodetect_whisper(repo_path: Optional[str]) -> Optional[str]:
    """Find the whisper-cli binary inside a whisper.cpp checkout."""
    if not repo_path:
        return None
    root = Path(repo_path).expanduser()
    if not root.is_dir():
        return None
    for parts in WHISPER_BUILD_PATHS:
        candidate = root.joinpath(*parts)
        if candidate.is_file():
            return str(candidate)
    found = _walk_find(root, WHISPER_WALK_DEPTH)
    return str(found) if found else None
