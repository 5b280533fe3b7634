"""Capture device enumeration and address resolution."""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from typing import Awaitable, Callable, List, Optional

from .config import FfmpegSettings, SettingsStore
from .errors import DeviceScanError
from .logging_utils import SessionLog
from .models import DeviceSpec, ListedDevice, ResolvedInputs

logger = logging.getLogger(__name__)

Scanner = Callable[[str, str], Awaitable[List[ListedDevice]]]

# Backends whose device indices may change between runs.
VOLATILE_BACKENDS = ("avfoundation",)

DSHOW_DEFAULT_MIC = "audio=Microphone (default)"
AVFOUNDATION_DEFAULT_MIC = ":0"

_LABEL_PREFIX = re.compile(r"^\d+:\s*")
_DSHOW_PREFIX = re.compile(r"^(audio=|video=|@device_)", re.IGNORECASE)


def platform_input_format(configured: str, platform: Optional[str] = None) -> str:
    if configured and configured != "auto":
        return configured
    platform = platform or sys.platform
    if platform == "darwin":
        return "avfoundation"
    if platform == "win32":
        return "dshow"
    return "pulse"


def _list_args(backend: str) -> List[str]:
    if backend == "dshow":
        return ["-hide_banner", "-list_devices", "true", "-f", "dshow", "-i", "dummy"]
    if backend == "avfoundation":
        return ["-hide_banner", "-f", "avfoundation", "-list_devices", "true", "-i", ""]
    return ["-hide_banner", "-sources", backend]


async def scan_devices(ffmpeg_path: str, backend: str) -> List[ListedDevice]:
    """Ask ffmpeg for the devices of ``backend``. The listing is printed on stderr."""
    if not ffmpeg_path:
        raise DeviceScanError("FFmpeg path not configured")
    try:
        proc = await asyncio.create_subprocess_exec(
            ffmpeg_path,
            *_list_args(backend),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise DeviceScanError(f"Cannot run {ffmpeg_path}: {exc}") from exc

    stdout_raw, stderr_raw = await proc.communicate()
    output = stdout_raw.decode("utf-8", errors="replace") + stderr_raw.decode("utf-8", errors="replace")
    return parse_device_list(output, backend)


def parse_device_list(output: str, backend: str) -> List[ListedDevice]:
    devices: List[ListedDevice] = []
    lines = output.splitlines()

    if backend == "dshow":
        section = "unknown"
        seen = set()
        for raw in lines:
            line = raw.strip()
            if re.search(r"DirectShow audio devices", line, re.IGNORECASE):
                section = "audio"
                continue
            if re.search(r"DirectShow video devices", line, re.IGNORECASE):
                section = "video"
                continue
            if re.search(r'Alternative name\s+"', line):
                continue
            match = re.search(r'"(.+?)"', line)
            if not match:
                continue
            label = match.group(1)
            if label.lower().startswith("@device_"):
                continue
            # Newer ffmpeg builds tag each entry instead of printing section headers
            kind = section
            if line.endswith("(audio)"):
                kind = "audio"
            elif line.endswith("(video)"):
                kind = "video"
            key = (kind, label)
            if key in seen:
                continue
            seen.add(key)
            address = f"audio={label}" if kind == "audio" else label
            devices.append(ListedDevice(backend, kind, address, label))
        return devices

    if backend == "avfoundation":
        section = "unknown"
        for line in lines:
            if re.search(r"AVFoundation video devices", line, re.IGNORECASE):
                section = "video"
                continue
            if re.search(r"AVFoundation audio devices", line, re.IGNORECASE):
                section = "audio"
                continue
            match = re.search(r"\[(\d+)\]\s+(.+)$", line)
            if match:
                idx, label = match.group(1), match.group(2).strip()
                address = f":{idx}" if section == "audio" else f"{idx}:"
                devices.append(ListedDevice(backend, section, address, f"{idx}: {label}"))
        return devices

    return [ListedDevice(backend, "audio", "default", "default")]


def strip_index_prefix(label: str) -> str:
    return _LABEL_PREFIX.sub("", label or "").strip()


def normalize_index(value: str) -> str:
    """Return an avfoundation audio address (':N') for index-like values, else ''."""
    if not value:
        return ""
    if re.fullmatch(r":\d+", value):
        return value
    if re.fullmatch(r"\d+", value):
        return f":{value}"
    return ""


def ensure_dshow_prefix(value: str) -> str:
    if not value:
        return value
    return value if _DSHOW_PREFIX.match(value) else f"audio={value}"


def match_device(
    devices: List[ListedDevice],
    saved_label: str,
    saved_address: str,
) -> Optional[ListedDevice]:
    """Pick a scanned audio device: label, then raw address, then numeric index."""
    audio = [d for d in devices if d.kind == "audio"]
    label = strip_index_prefix(saved_label)
    if label:
        for device in audio:
            if strip_index_prefix(device.label) == label:
                return device
    if saved_address:
        for device in audio:
            if device.address == saved_address:
                return device
    index = normalize_index(saved_address)
    if index:
        for device in audio:
            if device.address == index:
                return device
    return None


class DeviceResolver:
    """Turns saved device settings into ffmpeg input addresses."""

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        scanner: Scanner = scan_devices,
        session_log: Optional[SessionLog] = None,
        platform: Optional[str] = None,
    ):
        self.settings_store = settings_store
        self.scanner = scanner
        self.log = session_log or SessionLog()
        self.platform = platform

    async def resolve(self, ffmpeg: FfmpegSettings) -> ResolvedInputs:
        input_format = platform_input_format(ffmpeg.input_format, self.platform)
        mic_saved = (ffmpeg.mic_device or "").strip()
        sys_saved = (ffmpeg.system_device or "").strip()

        if input_format in VOLATILE_BACKENDS:
            return await self._resolve_volatile(input_format, ffmpeg, mic_saved, sys_saved)

        if input_format == "dshow":
            mic = DeviceSpec(ensure_dshow_prefix(mic_saved or DSHOW_DEFAULT_MIC), ffmpeg.mic_label)
            system = DeviceSpec(ensure_dshow_prefix(sys_saved), ffmpeg.system_label) if sys_saved else None
        else:
            mic = DeviceSpec(mic_saved or "default", ffmpeg.mic_label)
            system = DeviceSpec(sys_saved, ffmpeg.system_label) if sys_saved else None

        self.log.append(f"Using mic device: {mic.address} ({input_format})")
        if system:
            self.log.append(f"Using system device: {system.address}")
        return ResolvedInputs(input_format, mic, system)

    async def _resolve_volatile(
        self,
        input_format: str,
        ffmpeg: FfmpegSettings,
        mic_saved: str,
        sys_saved: str,
    ) -> ResolvedInputs:
        devices: List[ListedDevice] = []
        ffmpeg_path = (ffmpeg.path or "").strip()
        try:
            if ffmpeg_path:
                devices = await self.scanner(ffmpeg_path, input_format)
        except (DeviceScanError, OSError) as exc:
            self.log.append(f"Device scan failed: {exc}")
        audio = [d for d in devices if d.kind == "audio"]

        mic_label_saved = strip_index_prefix(ffmpeg.mic_label)
        found = match_device(devices, mic_label_saved, mic_saved)
        if found:
            mic = DeviceSpec(found.address, found.label)
        elif audio:
            mic = DeviceSpec(audio[0].address, audio[0].label)
            self.log.append(f"Saved microphone not found, falling back to {mic.address}")
        else:
            mic = DeviceSpec(AVFOUNDATION_DEFAULT_MIC, ffmpeg.mic_label)
            self.log.append(f"No audio devices scanned, falling back to {AVFOUNDATION_DEFAULT_MIC}")

        if mic.address != mic_saved:
            self.log.append(f"Remapped microphone to {mic.address} (was {mic_saved or 'unset'})")
        else:
            self.log.append(f"Using mic device: {mic.address} (saved: {mic_saved or 'none'})")
        self._persist(
            {"ffmpeg.mic_device": mic.address, "ffmpeg.mic_label": mic.label or mic_label_saved},
            changed=(mic.address != mic_saved or (mic.label or mic_label_saved) != ffmpeg.mic_label),
        )

        system = None
        sys_label_saved = strip_index_prefix(ffmpeg.system_label)
        if sys_label_saved or sys_saved:
            found = match_device(devices, sys_label_saved, sys_saved)
            if found:
                system = DeviceSpec(found.address, found.label)
                if found.address != sys_saved:
                    self.log.append(f"Remapped system audio to {found.address} (was {sys_saved or 'unset'})")
                else:
                    self.log.append(f"Using system device: {found.address}")
                self._persist(
                    {"ffmpeg.system_device": found.address, "ffmpeg.system_label": found.label},
                    changed=(found.address != sys_saved or found.label != ffmpeg.system_label),
                )
            else:
                self.log.append("System audio device not found, recording microphone only")

        return ResolvedInputs(input_format, mic, system)

    def _persist(self, partial: dict, changed: bool) -> None:
        if not changed or self.settings_store is None:
            return
        try:
            self.settings_store.update(partial)
        except OSError as exc:
            self.log.append(f"Could not save device mapping: {exc}")
