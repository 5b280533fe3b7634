"""Configuration management with YAML settings and environment variables"""
from __future__ import annotations

import copy
import os
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

DEFAULT_CONFIG_PATH = 'config.yaml'

# API keys are read from the environment first, YAML second
ENV_API_KEYS = {
    'openai_api_key': 'OPENAI_API_KEY',
    'openrouter_api_key': 'OPENROUTER_API_KEY',
    'anthropic_api_key': 'ANTHROPIC_API_KEY',
    'gemini_api_key': 'GEMINI_API_KEY',
}


@dataclass
class FfmpegSettings:
    path: str = ''
    input_format: str = 'auto'  # auto | avfoundation | dshow | pulse | alsa
    mic_device: str = ''
    mic_label: str = ''
    system_device: str = ''
    system_label: str = ''


@dataclass
class WhisperSettings:
    cli_path: str = ''
    repo_path: str = ''
    model_path: str = ''
    language: str = 'auto'
    max_context: int = 0
    entropy_threshold: float = 2.8
    logprob_threshold: float = -1.0
    word_threshold: float = 0.01


@dataclass
class RecordingSettings:
    sample_rate_hz: int = 44100
    channels: int = 2
    bitrate_kbps: int = 160


@dataclass
class LiveSettings:
    enabled: bool = True
    segment_seconds: int = 20
    debounce_seconds: float = 1.5


@dataclass
class LLMSettings:
    provider: str = 'gemini'
    gemini_api_key: str = ''
    gemini_model: str = 'gemini-2.5-pro'
    openai_api_key: str = ''
    openai_model: str = 'gpt-4o-mini'
    openai_endpoint: str = ''
    openrouter_api_key: str = ''
    openrouter_model: str = 'anthropic/claude-3.5-haiku'
    anthropic_api_key: str = ''
    anthropic_model: str = 'claude-3-5-sonnet-latest'
    ollama_endpoint: str = 'http://localhost:11434'
    ollama_model: str = 'qwen3:8b'
    temperature: float = 0.0
    max_tokens: int = 2000
    timeout_seconds: float = 120.0


@dataclass
class SummarySettings:
    last_preset: Optional[str] = None
    min_compact_chars: int = 150
    min_transcript_chars: int = 40
    min_transcript_letters: int = 30


@dataclass
class StorageSettings:
    vault_dir: str = '.'
    recordings_dir: str = 'recordings'
    output_folder: str = ''
    max_recordings_kept: Any = 5  # 0 = unlimited; validated by retention


@dataclass
class LoggingSettings:
    dir: str = 'logs'
    level: str = 'INFO'


@dataclass
class Settings:
    ffmpeg: FfmpegSettings = field(default_factory=FfmpegSettings)
    whisper: WhisperSettings = field(default_factory=WhisperSettings)
    recording: RecordingSettings = field(default_factory=RecordingSettings)
    live: LiveSettings = field(default_factory=LiveSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    summary: SummarySettings = field(default_factory=SummarySettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: dict) -> 'Settings':
        sections = {}
        for section in fields(cls):
            section_cls = section.default_factory
            raw = data.get(section.name) or {}
            known = {f.name for f in fields(section_cls)}
            sections[section.name] = section_cls(**{k: v for k, v in raw.items() if k in known})
        return cls(**sections)

    def to_dict(self) -> dict:
        return {
            section.name: {
                f.name: getattr(getattr(self, section.name), f.name)
                for f in fields(getattr(self, section.name))
            }
            for section in fields(self)
        }

    @property
    def recordings_root(self) -> Path:
        return Path(self.storage.recordings_dir).expanduser()

    @property
    def vault_root(self) -> Path:
        return Path(self.storage.vault_dir).expanduser()


def _deep_merge(base: dict, overlay: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (overlay or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsStore:
    """Owns the YAML settings file.

    Readers take a snapshot; every write goes through ``update`` which merges
    the partial change in memory and replaces the file atomically.
    """

    def __init__(self, config_path=DEFAULT_CONFIG_PATH, data: Optional[dict] = None):
        self.path = Path(config_path) if config_path else None
        defaults = Settings().to_dict()
        if data is not None:
            self._data = _deep_merge(defaults, data)
        else:
            self._data = _deep_merge(defaults, self._read_file())

    def _read_file(self) -> dict:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read config {self.path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config {self.path} must contain a mapping")
        return loaded

    def get(self, path, default=None):
        """Get nested config: store.get('recording.sample_rate_hz')"""
        keys = path.split('.')
        value = self._data
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
        return value if value is not None else default

    def snapshot(self) -> Settings:
        settings = Settings.from_dict(copy.deepcopy(self._data))
        for attr, env_name in ENV_API_KEYS.items():
            env_value = os.getenv(env_name)
            if env_value:
                setattr(settings.llm, attr, env_value)
        return settings

    def update(self, partial: dict) -> None:
        """Merge dotted-key updates, e.g. {'ffmpeg.mic_device': ':1'}, and persist."""
        for dotted, value in partial.items():
            target = self._data
            *parents, leaf = dotted.split('.')
            for key in parents:
                target = target.setdefault(key, {})
            target[leaf] = value
        self._persist()

    def _persist(self) -> None:
        if self.path is None:
            return
        directory = self.path.parent if str(self.path.parent) else Path('.')
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix='.config-', suffix='.yaml', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self._data, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
