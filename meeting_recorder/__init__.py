"""Meeting Recorder - Record, transcribe and summarize meetings into Markdown notes"""

__version__ = "1.0.0"

from .config import Settings, SettingsStore
from .recorder import CaptureSession
from .transcriber import WhisperTranscriber
from .summarizer import SummarizationDispatcher
from .service import RecorderService

__all__ = [
    'CaptureSession',
    'RecorderService',
    'Settings',
    'SettingsStore',
    'SummarizationDispatcher',
    'WhisperTranscriber',
]
