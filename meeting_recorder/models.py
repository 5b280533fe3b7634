"""Data models shared across the recorder."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class Phase(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    ERROR = "error"
    DONE = "done"


# Phases from which a new session may be started.
STARTABLE_PHASES = (Phase.IDLE, Phase.ERROR, Phase.DONE)


@dataclass
class Session:
    bundle_dir: Path
    base_name: str
    audio_path: Path
    transcript_path: Path
    log_path: Path
    started_at: datetime
    preset_key: Optional[str] = None
    elapsed_seconds: int = 0


@dataclass(frozen=True)
class ListedDevice:
    """One entry from an ffmpeg device listing."""

    backend: str
    kind: str  # audio | video | unknown
    address: str  # value passed to ffmpeg -i
    label: str


@dataclass(frozen=True)
class DeviceSpec:
    address: str
    label: str = ""


@dataclass(frozen=True)
class ResolvedInputs:
    input_format: str
    mic: Optional[DeviceSpec] = None
    system: Optional[DeviceSpec] = None

    @property
    def specs(self) -> list[DeviceSpec]:
        return [spec for spec in (self.mic, self.system) if spec and spec.address]


SEGMENT_PREFIX = "seg_"
SEGMENT_EXTENSION = ".mp3"
SEGMENT_PATTERN = re.compile(r"^seg_(\d{3,})\.mp3$")


def segment_filename(index: int) -> str:
    return f"{SEGMENT_PREFIX}{index:03d}{SEGMENT_EXTENSION}"


@dataclass
class Segment:
    index: int
    path: Path
    processed: bool = False

    @classmethod
    def from_path(cls, path: Path) -> Optional["Segment"]:
        match = SEGMENT_PATTERN.match(path.name)
        if not match:
            return None
        return cls(index=int(match.group(1)), path=path)


@dataclass
class Bundle:
    """A completed recording on disk: audio, transcript and log."""

    base_name: str
    directory: Path
    audio_path: Path
    transcript_path: Path
    log_path: Path
    mtime: float
    size_bytes: int = 0

    @property
    def artifacts(self) -> list[Path]:
        return [self.audio_path, self.transcript_path, self.log_path]

    @property
    def has_transcript(self) -> bool:
        return self.transcript_path.exists()
