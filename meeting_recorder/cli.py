"""CLI interface using Click"""
import asyncio
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

import click

from .config import DEFAULT_CONFIG_PATH, SettingsStore
from .devices import platform_input_format, scan_devices
from .doctor import autodetect_ffmpeg, autodetect_whisper, check_dependencies
from .errors import RecorderError
from .library import (
    SORT_MODES,
    delete_recordings,
    find_note_from_log,
    find_recording,
    list_recordings,
    regenerate_summary,
    regenerate_transcript,
)
from .logging_utils import setup_logging
from .models import Phase
from .notes import VaultNoteStore, note_path
from .prompts import DEFAULT_PROMPT_KEY, PROMPT_PRESETS, get_preset
from .service import RecorderService
from .summarizer import SummarizationDispatcher

PHASE_COLORS = {
    Phase.RECORDING: 'red',
    Phase.TRANSCRIBING: 'cyan',
    Phase.SUMMARIZING: 'cyan',
    Phase.DONE: 'green',
    Phase.ERROR: 'red',
}


def format_elapsed(seconds):
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}" if hours else f"{minutes:02d}:{secs:02d}"


def format_size(size_bytes):
    size = float(size_bytes)
    for unit in ('B', 'KB', 'MB'):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _parse_day(value):
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}")


def _fail(e):
    click.secho(f"\n❌ Error: {e}", fg='red')
    sys.exit(1)


@click.group()
@click.option('--config', '-c', 'config_path', default=DEFAULT_CONFIG_PATH, show_default=True,
              type=click.Path(dir_okay=False), help='Settings file')
@click.pass_context
def cli(ctx, config_path):
    """🎙️ Meeting Recorder - Record, transcribe, and summarize meetings"""
    try:
        store = SettingsStore(config_path)
    except RecorderError as e:
        _fail(e)
    settings = store.snapshot()
    setup_logging(settings.logging.dir, settings.logging.level.upper())
    ctx.obj = store


async def _record_session(store, preset):
    settings = store.snapshot()
    service = RecorderService(store, VaultNoteStore(settings.vault_root))
    service.on_phase_change = lambda phase: click.secho(
        f"\n● {phase.value}", fg=PHASE_COLORS.get(phase), bold=True)
    service.on_elapsed = lambda s: click.echo(f"\r⏺  {format_elapsed(s)}  (Enter or Ctrl+C to stop)", nl=False)
    service.on_info = lambda message: click.echo(f"ℹ️  {message}")
    service.on_error = lambda message: click.secho(f"\n❌ {message}", fg='red')

    await service.start(preset)
    if service.phase != Phase.RECORDING:
        return service

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    def _wait_for_enter():
        sys.stdin.readline()
        loop.call_soon_threadsafe(stop_requested.set)

    threading.Thread(target=_wait_for_enter, daemon=True).start()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_requested.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows event loops have no signal handlers

    while service.phase == Phase.RECORDING and not stop_requested.is_set():
        try:
            await asyncio.wait_for(stop_requested.wait(), timeout=0.25)
        except asyncio.TimeoutError:
            pass
    await service.stop()
    return service


@cli.command()
@click.option('--preset', '-p', type=click.Choice(list(PROMPT_PRESETS)), help='Summary scenario')
@click.pass_obj
def record(store, preset):
    """Record a meeting, transcribe it live and create a summary note"""
    try:
        service = asyncio.run(_record_session(store, preset))
    except KeyboardInterrupt:
        click.secho("\n⚠️  Cancelled by user", fg='yellow')
        sys.exit(1)

    if service.phase == Phase.DONE:
        if service.note_created:
            click.secho(f"\n✨ All done! Note: {service.note_created}", fg='green')
        else:
            click.secho("\n✅ Session finished without a summary note", fg='green')
        if service.session:
            click.echo(f"   Recording: {service.session.bundle_dir}")
    elif service.phase == Phase.ERROR or service.session is None:
        sys.exit(1)


@cli.command()
@click.pass_obj
def devices(store):
    """List capture devices reported by FFmpeg"""
    settings = store.snapshot()
    backend = platform_input_format(settings.ffmpeg.input_format)
    try:
        found = asyncio.run(scan_devices(settings.ffmpeg.path, backend))
    except RecorderError as e:
        _fail(e)

    click.echo(f"\n🎤 Devices ({backend}):\n")
    for device in found:
        marker = ''
        if device.address == settings.ffmpeg.mic_device:
            marker = ' ← microphone'
        elif device.address == settings.ffmpeg.system_device:
            marker = ' ← system audio'
        click.echo(f"  [{device.kind:<5}] {device.address:<28} {device.label}{marker}")
    if not found:
        click.echo("  (none)")


@cli.command()
@click.pass_obj
def check(store):
    """Check that FFmpeg, whisper-cli, the model and an API key are available"""
    settings = store.snapshot()
    state = check_dependencies(settings)
    rows = [
        ('API key', state.has_api_key),
        ('FFmpeg', state.ffmpeg_ok),
        ('whisper-cli', state.whisper_ok),
        ('Whisper model', state.model_ok),
    ]
    click.echo("\n📦 Dependencies:\n")
    for name, ok in rows:
        click.echo(f"  {'✅' if ok else '❌'} {name}")
    if state.missing_messages:
        click.echo("")
        for message in state.missing_messages:
            click.secho(f"  • {message}", fg='yellow')
        sys.exit(1)
    click.secho("\n✨ Ready to record", fg='green')


@cli.command()
@click.option('--whisper-repo', type=click.Path(file_okay=False), help='whisper.cpp checkout to search')
@click.pass_obj
def detect(store, whisper_repo):
    """Auto-detect FFmpeg and whisper-cli and save their paths"""
    settings = store.snapshot()
    updates = {}

    ffmpeg = autodetect_ffmpeg()
    if ffmpeg:
        updates['ffmpeg.path'] = ffmpeg
        click.echo(f"  ✅ FFmpeg: {ffmpeg}")
    else:
        click.secho("  ❌ FFmpeg not found", fg='yellow')

    repo = whisper_repo or settings.whisper.repo_path
    whisper = autodetect_whisper(repo)
    if whisper:
        updates['whisper.cli_path'] = whisper
        if whisper_repo:
            updates['whisper.repo_path'] = whisper_repo
        click.echo(f"  ✅ whisper-cli: {whisper}")
    else:
        click.secho("  ❌ whisper-cli not found" + ("" if repo else " (pass --whisper-repo)"), fg='yellow')

    if updates:
        store.update(updates)
        click.echo(f"\n💾 Saved to {store.path}")


@cli.command()
@click.pass_obj
def presets(store):
    """List summary scenarios"""
    last = store.snapshot().summary.last_preset
    for key, preset in PROMPT_PRESETS.items():
        tags = []
        if key == DEFAULT_PROMPT_KEY:
            tags.append('default')
        if key == last:
            tags.append('last used')
        suffix = f"  ({', '.join(tags)})" if tags else ''
        click.echo(f"  {key:<20} {preset.label}{suffix}")


@cli.group()
def library():
    """Manage past recordings"""
    pass


@library.command('list')
@click.option('--sort', type=click.Choice(SORT_MODES), default='date-desc', show_default=True)
@click.option('--from', 'from_date', help='First day (YYYY-MM-DD)')
@click.option('--to', 'to_date', help='Last day (YYYY-MM-DD)')
@click.pass_obj
def library_list(store, sort, from_date, to_date):
    """List recordings"""
    settings = store.snapshot()
    bundles = list_recordings(settings.recordings_root, sort, _parse_day(from_date), _parse_day(to_date))
    if not bundles:
        click.echo("No recordings.")
        return
    for bundle in bundles:
        when = datetime.fromtimestamp(bundle.mtime).strftime('%Y-%m-%d %H:%M')
        transcript = '📝' if bundle.has_transcript else '  '
        click.echo(f"  {transcript} {bundle.base_name}  {when}  {format_size(bundle.size_bytes)}")
        note = find_note_from_log(bundle.log_path)
        if note:
            click.echo(f"       → {note}")


@library.command('delete')
@click.argument('names', nargs=-1, required=True)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_obj
def library_delete(store, names, yes):
    """Delete recordings by name"""
    if not yes and not click.confirm(f"Delete {len(names)} recording(s)?", default=False):
        return
    deleted = delete_recordings(store.snapshot().recordings_root, names)
    click.echo(f"🗑️  Deleted {len(deleted)} recording(s)")


def _bundle_or_exit(settings, name):
    bundle = find_recording(settings.recordings_root, name)
    if bundle is None:
        _fail(f"Recording not found: {name}")
    return bundle


@library.command('transcribe')
@click.argument('name')
@click.pass_obj
def library_transcribe(store, name):
    """Regenerate the transcript of a recording"""
    settings = store.snapshot()
    bundle = _bundle_or_exit(settings, name)
    try:
        text = asyncio.run(regenerate_transcript(bundle, settings))
    except RecorderError as e:
        _fail(e)
    click.secho(f"\n✅ Transcript regenerated ({len(text)} chars)", fg='green')


@library.command('summarize')
@click.argument('name')
@click.option('--preset', '-p', type=click.Choice(list(PROMPT_PRESETS)), help='Summary scenario')
@click.pass_obj
def library_summarize(store, name, preset):
    """Create a new summary note from a recording's transcript"""
    settings = store.snapshot()
    bundle = _bundle_or_exit(settings, name)
    try:
        created = asyncio.run(regenerate_summary(bundle, settings, VaultNoteStore(settings.vault_root), preset))
    except RecorderError as e:
        _fail(e)
    if created:
        click.secho(f"\n✅ Summary regenerated: {created}", fg='green')
    else:
        click.secho("\n⚠️  Summary skipped", fg='yellow')


@cli.command()
@click.argument('transcript_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--preset', '-p', type=click.Choice(list(PROMPT_PRESETS)), help='Summary scenario')
@click.pass_obj
def summarize_only(store, transcript_file, preset):
    """Summarize an existing transcript into a note"""
    settings = store.snapshot()
    transcript = Path(transcript_file).read_text(encoding='utf-8')
    preset = get_preset(preset or settings.summary.last_preset)

    async def _run():
        result = await SummarizationDispatcher(settings).run(transcript, preset.key)
        if result.skipped:
            return None
        notes = VaultNoteStore(settings.vault_root)
        return await notes.create(note_path(settings.storage.output_folder, preset.label), result.markdown)

    try:
        created = asyncio.run(_run())
    except RecorderError as e:
        _fail(e)
    if created:
        click.secho(f"\n✅ Summary complete: {created}", fg='green')
    else:
        click.secho("\n⚠️  Summary skipped (transcript too short or empty output)", fg='yellow')


if __name__ == '__main__':
    cli()
