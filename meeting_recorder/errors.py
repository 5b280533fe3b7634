"""Exception types raised by Meeting Recorder."""


class RecorderError(Exception):
    """Base class for all recorder errors."""

    pass


class ConfigurationError(RecorderError):
    """Missing executable, model, credentials or an unreadable config file."""

    pass


class DeviceScanError(RecorderError):
    """Raised when ffmpeg cannot enumerate capture devices."""

    pass


class CaptureError(RecorderError):
    """Raised when the ffmpeg capture process cannot be started or crashes."""

    pass


class TranscriptionError(RecorderError):
    """Raised when whisper-cli fails or produces no text."""

    pass


class SummarizationError(RecorderError):
    """Raised when a summarization backend fails (network, auth, HTTP status)."""

    pass
