import asyncio
import os

import pytest

from meeting_recorder.config import SettingsStore
from meeting_recorder.models import ListedDevice
from meeting_recorder.errors import TranscriptionError
from meeting_recorder.models import Phase
from meeting_recorder.notes import VaultNoteStore
from meeting_recorder.service import RecorderService, new_session

CHUNK = "Segment {} covered the roadmap, the budget and the hiring plan in detail."
SUMMARY = "## Overview\nThe team agreed on the roadmap.\n\n[ ] Send recap @Ann"


class FakeCapture:
    instances = []

    def __init__(self, ffmpeg_path, session_log=None, on_crash=None):
        self.ffmpeg_path = ffmpeg_path
        self.on_crash = on_crash
        self.args = None
        self.running = False
        self.stop_requests = 0
        FakeCapture.instances.append(self)

    async def begin(self, args):
        self.args = args
        self.running = True

    async def request_stop(self):
        self.stop_requests += 1
        self.running = False


def transcriber_factory(chunk=CHUNK, full_text=None, fail_full=False):
    class FakeTranscriber:
        def __init__(self, settings):
            self.settings = settings

        def check(self):
            pass

        async def transcribe_segment(self, path):
            return chunk.format(path.stem)

        async def transcribe_file(self, audio_path, transcript_path):
            if fail_full:
                raise TranscriptionError("whisper-cli exited with code 1")
            transcript_path.write_text(full_text, encoding="utf-8")
            return full_text

    return FakeTranscriber


class FakeBackend:
    name = "fake"
    model = "fake-1"

    def __init__(self, output):
        self.output = output

    async def summarize(self, prompt, transcript, language):
        return self.output


def backend_factory(output=SUMMARY, built=None):
    def factory(llm, min_chars=40, min_letters=30):
        if built is not None:
            built.append(llm.provider)
        return FakeBackend(output)
    return factory


def make_store(tmp_path, **overrides):
    data = {
        "ffmpeg": {"path": "/usr/bin/ffmpeg", "input_format": "pulse"},
        "whisper": {"cli_path": "/opt/whisper-cli", "model_path": "/models/base.bin"},
        "live": {"enabled": True, "debounce_seconds": 0.01},
        "storage": {
            "recordings_dir": str(tmp_path / "recordings"),
            "vault_dir": str(tmp_path / "vault"),
            "output_folder": "Meetings",
            "max_recordings_kept": 5,
        },
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return SettingsStore(None, data=data)


def make_service(tmp_path, store=None, transcriber=None, backend=None, capture=FakeCapture, **kwargs):
    service = RecorderService(
        store or make_store(tmp_path),
        VaultNoteStore(tmp_path / "vault"),
        capture_factory=capture,
        transcriber_factory=transcriber or transcriber_factory(),
        backend_factory=backend or backend_factory(),
        **kwargs,
    )
    service.phases = []
    service.errors = []
    service.on_phase_change = service.phases.append
    service.on_error = service.errors.append
    return service


def capture_three_segments(service):
    bundle = service.session.bundle_dir
    for i in range(3):
        (bundle / f"seg_{i:03d}.mp3").write_bytes(b"mp3")
    service.session.audio_path.write_bytes(b"archive")


def notes_in(tmp_path):
    folder = tmp_path / "vault" / "Meetings"
    return sorted(p.name for p in folder.iterdir()) if folder.exists() else []


def test_full_session_creates_note(tmp_path):
    service = make_service(tmp_path)

    async def main():
        await service.start("standup")
        assert service.phase == Phase.RECORDING
        capture_three_segments(service)
        await service.stop()

    asyncio.run(main())

    session = service.session
    assert service.phase == Phase.DONE
    assert service.phases == [Phase.RECORDING, Phase.TRANSCRIBING, Phase.SUMMARIZING, Phase.DONE]
    assert session.transcript_path.read_text(encoding="utf-8").split("\n\n") == [
        CHUNK.format("seg_000"), CHUNK.format("seg_001"), CHUNK.format("seg_002") + "\n",
    ]
    assert not any(p.name.startswith("seg_") for p in session.bundle_dir.iterdir())

    assert service.note_created.startswith("Meetings/Stand-up ")
    note = tmp_path / "vault" / service.note_created
    assert note.read_text(encoding="utf-8").endswith("- [ ] Send recap @Ann")
    assert any(name.startswith("Live Stand-up ") for name in notes_in(tmp_path))
    assert f"Note created: {service.note_created}" in session.log_path.read_text(encoding="utf-8")
    assert service.settings_store.get("summary.last_preset") == "standup"

    capture = FakeCapture.instances[-1]
    assert capture.stop_requests == 1
    assert "tee" in capture.args


def test_empty_summary_finishes_without_note(tmp_path):
    service = make_service(tmp_path, backend=backend_factory(output=""))

    async def main():
        await service.start()
        capture_three_segments(service)
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.DONE
    assert service.note_created is None
    assert not any(name.startswith("Meeting ") for name in notes_in(tmp_path))


def test_short_transcript_skips_summarization(tmp_path):
    built = []
    service = make_service(tmp_path, transcriber=transcriber_factory(chunk="uh"), backend=backend_factory(built=built))

    async def main():
        await service.start()
        capture_three_segments(service)
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.DONE
    assert Phase.SUMMARIZING not in service.phases
    assert built == []


def test_phase_legality(tmp_path):
    service = make_service(tmp_path)

    async def main():
        await service.stop()
        assert service.phases == []

        await service.start()
        first = service.session
        await service.start()
        assert service.session is first
        assert service.phases == [Phase.RECORDING]

        await service.stop()
        assert service.phase == Phase.DONE

        await service.start()
        assert service.phase == Phase.RECORDING
        assert service.session is not first
        assert service.session.bundle_dir != first.bundle_dir
        await service.stop()

    asyncio.run(main())


def test_configuration_error_leaves_phase_unchanged(tmp_path):
    store = make_store(tmp_path, ffmpeg={"path": ""})
    service = make_service(tmp_path, store=store)

    asyncio.run(service.start())

    assert service.phase == Phase.IDLE
    assert service.phases == []
    assert service.errors == ["FFmpeg path not configured"]


def test_capture_crash_moves_to_error(tmp_path):
    service = make_service(tmp_path)

    async def main():
        await service.start()
        FakeCapture.instances[-1].on_crash(1, "Input/output error")
        assert service.phase == Phase.ERROR
        await service.stop()
        assert service.phase == Phase.ERROR

        await service.start()
        assert service.phase == Phase.RECORDING
        await service.stop()

    asyncio.run(main())

    assert "FFmpeg exited with code 1" in service.errors[0]
    assert service.phases[:2] == [Phase.RECORDING, Phase.ERROR]
    assert service.phase == Phase.DONE


def test_whole_file_transcription_without_live_mode(tmp_path):
    text = " ".join(CHUNK.format(i) for i in range(3))
    store = make_store(tmp_path, live={"enabled": False})
    service = make_service(tmp_path, store=store, transcriber=transcriber_factory(full_text=text))

    async def main():
        await service.start()
        service.session.audio_path.write_bytes(b"archive")
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.DONE
    assert service.session.transcript_path.read_text(encoding="utf-8") == text
    assert "tee" not in FakeCapture.instances[-1].args
    assert service.note_created.startswith("Meetings/Meeting ")


def test_whole_file_transcription_failure_is_an_error(tmp_path):
    store = make_store(tmp_path, live={"enabled": False})
    service = make_service(tmp_path, store=store, transcriber=transcriber_factory(fail_full=True))

    async def main():
        await service.start()
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.ERROR
    assert service.errors == ["whisper-cli exited with code 1"]


def test_retention_runs_after_recording(tmp_path):
    root = tmp_path / "recordings"
    for i in range(3):
        old = new_session(root)
        old.audio_path.write_bytes(b"old")
        os.utime(old.audio_path, (1_000 + i, 1_000 + i))
    store = make_store(tmp_path, storage={"max_recordings_kept": 2})
    service = make_service(tmp_path, store=store)

    async def main():
        await service.start()
        capture_three_segments(service)
        await service.stop()

    asyncio.run(main())

    remaining = sorted(p.name for p in root.iterdir())
    assert len(remaining) == 2
    assert service.session.base_name in remaining



class SlowStopCapture(FakeCapture):
    async def request_stop(self):
        self.stop_requests += 1
        await asyncio.sleep(0.05)
        self.running = False


def test_overlapping_stops_run_the_pipeline_once(tmp_path):
    built = []
    service = make_service(tmp_path, capture=SlowStopCapture, backend=backend_factory(built=built))

    async def main():
        await service.start("standup")
        capture_three_segments(service)
        await asyncio.gather(service.stop(), service.stop())

    asyncio.run(main())

    assert service.phases == [Phase.RECORDING, Phase.TRANSCRIBING, Phase.SUMMARIZING, Phase.DONE]
    assert FakeCapture.instances[-1].stop_requests == 1
    assert built == ["gemini"]
    assert [n for n in notes_in(tmp_path) if n.startswith("Stand-up ")] == [service.note_created.split("/")[-1]]


def test_overlapping_starts_spawn_one_capture(tmp_path):
    async def slow_scan(ffmpeg_path, backend):
        await asyncio.sleep(0.05)
        return [ListedDevice(backend, "audio", ":0", "MacBook Pro Microphone")]

    store = make_store(tmp_path, ffmpeg={"input_format": "avfoundation"})
    service = make_service(tmp_path, store=store, scanner=slow_scan)

    async def main():
        await asyncio.gather(service.start(), service.start())
        assert len(FakeCapture.instances) == 1
        assert service.phases == [Phase.RECORDING]
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.DONE
    assert len(list((tmp_path / "recordings").iterdir())) == 1


class ExplodingBackend(FakeBackend):
    async def summarize(self, prompt, transcript, language):
        raise RuntimeError("backend exploded")


def test_unexpected_error_moves_to_error_and_allows_restart(tmp_path):
    service = make_service(tmp_path, backend=lambda llm, min_chars=40, min_letters=30: ExplodingBackend(""))

    async def main():
        await service.start()
        capture_three_segments(service)
        await service.stop()
        assert service.phase == Phase.ERROR

        await service.start()
        assert service.phase == Phase.RECORDING
        await service.stop()

    asyncio.run(main())

    assert service.errors == ["backend exploded"]
    assert service.phases[:4] == [Phase.RECORDING, Phase.TRANSCRIBING, Phase.SUMMARIZING, Phase.ERROR]
    assert service.phase == Phase.DONE


def test_bad_threshold_setting_is_reported(tmp_path):
    store = make_store(tmp_path, summary={"min_compact_chars": "lots"})
    service = make_service(tmp_path, store=store)

    async def main():
        await service.start()
        capture_three_segments(service)
        await service.stop()

    asyncio.run(main())

    assert service.phase == Phase.ERROR
    assert len(service.errors) == 1


def test_crash_cleanup_finishes_before_next_start(tmp_path):
    service = make_service(tmp_path)

    async def main():
        await service.start()
        crashed = service._watcher
        FakeCapture.instances[-1].on_crash(1, "Input/output error")
        await service.start()
        assert service._cleanup is None
        assert crashed._worker is None
        assert crashed._observer is None
        await service.stop()

    asyncio.run(main())
    assert service.phase == Phase.DONE


@pytest.fixture(autouse=True)
def reset_fake_capture():
    FakeCapture.instances = []
    yield
