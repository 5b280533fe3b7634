import asyncio
import os
from datetime import date, datetime

import pytest

from meeting_recorder.config import Settings
from meeting_recorder.errors import TranscriptionError
from meeting_recorder.library import (
    delete_recordings,
    find_note_from_log,
    find_recording,
    list_recordings,
    regenerate_summary,
    regenerate_transcript,
)
from meeting_recorder.notes import VaultNoteStore

TRANSCRIPT = "We walked through the release checklist and assigned the open bugs to the team. " * 3


def make_recording(root, name, day, size=10, transcript=None):
    directory = root / name
    directory.mkdir(parents=True)
    audio = directory / f"{name}.mp3"
    audio.write_bytes(b"x" * size)
    if transcript is not None:
        (directory / f"{name}.txt").write_text(transcript, encoding="utf-8")
    stamp = datetime(day.year, day.month, day.day, 12).timestamp()
    os.utime(audio, (stamp, stamp))
    return directory


@pytest.fixture
def recordings(tmp_path):
    root = tmp_path / "recordings"
    make_recording(root, "recording_b", date(2026, 3, 1), size=300)
    make_recording(root, "recording_a", date(2026, 3, 5), size=100, transcript=TRANSCRIPT)
    make_recording(root, "recording_c", date(2026, 3, 9), size=200)
    return root


def names(bundles):
    return [b.base_name for b in bundles]


def test_sort_modes(recordings):
    assert names(list_recordings(recordings)) == ["recording_c", "recording_a", "recording_b"]
    assert names(list_recordings(recordings, "date-asc")) == ["recording_b", "recording_a", "recording_c"]
    assert names(list_recordings(recordings, "size-desc")) == ["recording_b", "recording_c", "recording_a"]
    assert names(list_recordings(recordings, "name-asc")) == ["recording_a", "recording_b", "recording_c"]


def test_unknown_sort_mode(recordings):
    with pytest.raises(ValueError):
        list_recordings(recordings, "colour-asc")


def test_date_filter_is_inclusive(recordings):
    found = list_recordings(recordings, "date-asc", from_date=date(2026, 3, 5), to_date=date(2026, 3, 9))
    assert names(found) == ["recording_a", "recording_c"]
    assert names(list_recordings(recordings, to_date=date(2026, 3, 1))) == ["recording_b"]


def test_delete_recordings(recordings):
    deleted = delete_recordings(recordings, ["recording_a", "recording_missing"])
    assert deleted == ["recording_a"]
    assert not (recordings / "recording_a").exists()
    assert find_recording(recordings, "recording_a") is None
    assert find_recording(recordings, "recording_b") is not None


def test_find_note_from_log_returns_last_entry(tmp_path):
    log = tmp_path / "session.log"
    log.write_text(
        "[2026-03-05T10:00:00] Session started\n"
        "[2026-03-05T10:30:00] Note created: Meetings/Meeting 2026-03-05 10-30.md\n"
        "[2026-03-06T09:00:00] Note created: Meetings/Meeting 2026-03-06 09-00 (regenerated).md\n",
        encoding="utf-8",
    )
    assert find_note_from_log(log) == "Meetings/Meeting 2026-03-06 09-00 (regenerated).md"
    assert find_note_from_log(tmp_path / "missing.log") is None


class FakeBackend:
    name = "fake"
    model = "fake-1"

    def __init__(self, output):
        self.output = output

    async def summarize(self, prompt, transcript, language):
        return self.output


def backend_factory(output):
    def factory(llm, min_chars=40, min_letters=30):
        return FakeBackend(output)
    return factory


def test_regenerate_summary_creates_new_note(recordings, tmp_path):
    settings = Settings()
    settings.storage.output_folder = "Meetings"
    notes = VaultNoteStore(tmp_path / "vault")
    bundle = find_recording(recordings, "recording_a")

    created = asyncio.run(regenerate_summary(
        bundle, settings, notes, "interview", backend_factory=backend_factory("## Candidate\nStrong on testing."),
    ))

    assert created.startswith("Meetings/Interview ")
    assert created.endswith(" (regenerated).md")
    assert (tmp_path / "vault" / created).read_text(encoding="utf-8") == "## Candidate\nStrong on testing."
    assert find_note_from_log(bundle.log_path) == created


def test_regenerate_summary_skipped_on_empty_output(recordings, tmp_path):
    bundle = find_recording(recordings, "recording_a")
    notes = VaultNoteStore(tmp_path / "vault")

    created = asyncio.run(regenerate_summary(bundle, Settings(), notes, backend_factory=backend_factory("")))

    assert created is None
    assert not (tmp_path / "vault").exists()
    assert "skipped" in bundle.log_path.read_text(encoding="utf-8")


def test_regenerate_summary_needs_transcript(recordings, tmp_path):
    bundle = find_recording(recordings, "recording_b")
    with pytest.raises(TranscriptionError):
        asyncio.run(regenerate_summary(bundle, Settings(), VaultNoteStore(tmp_path), backend_factory=backend_factory("x")))


class FakeTranscriber:
    def __init__(self):
        self.calls = []

    async def transcribe_file(self, audio_path, transcript_path):
        self.calls.append(audio_path)
        transcript_path.write_text("fresh transcript", encoding="utf-8")
        return "fresh transcript"


def test_regenerate_transcript_overwrites(recordings):
    bundle = find_recording(recordings, "recording_a")
    transcriber = FakeTranscriber()

    text = asyncio.run(regenerate_transcript(bundle, Settings(), transcriber))

    assert text == "fresh transcript"
    assert transcriber.calls == [bundle.audio_path]
    assert bundle.transcript_path.read_text(encoding="utf-8") == "fresh transcript"
    assert "Transcript regenerated (16 chars)" in bundle.log_path.read_text(encoding="utf-8")


def test_regenerate_transcript_needs_audio(recordings):
    bundle = find_recording(recordings, "recording_c")
    bundle.audio_path.unlink()
    with pytest.raises(TranscriptionError):
        asyncio.run(regenerate_transcript(bundle, Settings(), FakeTranscriber()))
