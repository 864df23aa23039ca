"""CLI commands for voicepost.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import dataclasses
import datetime
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.panel import Panel
from rich.table import Table

from voicepost.core import (
    ApiConfig,
    CaptureController,
    DraftStore,
    EffectEngine,
    EffectSelection,
    PostClient,
    PostLogger,
    PyAudioDevice,
    RecordingEngine,
    UploadCoordinator,
    WaveformPreview,
)
from voicepost.core.config import AppConfig
from voicepost.core.errors import PipelineError
from voicepost.core.wav import decode, encode, load_clip, read_header
from voicepost.cli.utils import (
    console,
    make_device_table,
    make_drafts_table,
    make_effects_table,
    make_level_progress,
    suppress_stderr,
)

app = typer.Typer(help="Record, shape and post short voice notes")

app_config = AppConfig()

_EFFECT_HELP = "Voice effect: " + ", ".join(s.value for s in EffectSelection)


def _configure_logging(verbose: bool) -> None:
    """Route loguru output to stderr at DEBUG or WARNING level."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _parse_effect(effect: str) -> EffectSelection:
    try:
        return EffectSelection(effect)
    except ValueError:
        console.print(f"[error]✗ Unknown effect: {effect}[/error]")
        console.print(make_effects_table())
        raise typer.Exit(code=1)


def _notify(title: str, message: str) -> None:
    style = "success" if title == "Success" else "error"
    mark = "✓" if title == "Success" else "✗"
    console.print(f"[{style}]{mark} {title}: {message}[/{style}]")


def _build_coordinator(device_id: Optional[int] = None) -> UploadCoordinator:
    """Wire the recorder pipeline from the loaded configuration."""
    constraints = app_config.capture_constraints()
    if device_id is not None:
        constraints = dataclasses.replace(constraints, device_id=device_id)
    capture = CaptureController(
        PyAudioDevice(),
        constraints=constraints,
        timeslice_ms=int(app_config.get("capture.timeslice_ms")),
    )
    return UploadCoordinator(
        capture,
        engine=EffectEngine(timeout=float(app_config.get("render.timeout"))),
        client=PostClient(ApiConfig.from_app_config(app_config)),
        invalidate_cache=lambda keys: logger.debug(f"Stale collections: {sorted(keys)}"),
        notify=_notify,
        on_reply_posted=lambda parent: console.print(f"[info]↳ Reply added to post {parent}[/info]"),
        preview=WaveformPreview(bins=int(app_config.get("preview.bins"))),
        post_logger=PostLogger(app_config.get_log_path()),
    )


async def _wait_for_enter() -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, sys.stdin.readline)


async def _record_clip(coordinator: UploadCoordinator, duration: Optional[int]) -> bool:
    """Capture until *duration* elapses or Enter is pressed."""
    if not await coordinator.start_recording():
        return False

    capture = coordinator.capture
    stopper = None if duration else asyncio.ensure_future(_wait_for_enter())
    if stopper is not None:
        console.print("[info]🎙 Recording, press Enter to stop[/info]")
    try:
        with make_level_progress() as progress:
            task = progress.add_task("level", total=255, level_text="--", elapsed="0.0s")
            while True:
                if duration and capture.duration >= duration:
                    break
                if stopper is not None and stopper.done():
                    break
                coordinator.refresh_preview()
                progress.update(
                    task,
                    completed=capture.level,
                    level_text=f"{capture.level:3d}",
                    elapsed=f"{capture.duration:.1f}s",
                )
                await asyncio.sleep(0.1)
    finally:
        clip = await coordinator.stop_recording()
        if stopper is not None and not stopper.done():
            stopper.cancel()
    return clip is not None


def _save_draft(coordinator: UploadCoordinator, name: str) -> None:
    store = DraftStore(str(app_config.get_drafts_dir()))
    path = store.save(name, coordinator.clip, effect=coordinator.effect.value)
    console.print(f"[warning]💾 Saved draft '{name}' ({path}). Post it later with: voicepost post --draft {name}[/warning]")


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    if verbose:
        devices = RecordingEngine.list_devices(driver_filter=driver)
    else:
        with suppress_stderr():
            devices = RecordingEngine.list_devices(driver_filter=driver)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    table = make_device_table(devices, app_config.capture_constraints().sample_rate)
    console.print(Panel(table, title=f"[bold]{title}[/bold]"))


@app.command()
def effects():
    """List the available voice effects."""
    console.print(Panel(make_effects_table(), title="[bold]Voice Effects[/bold]"))


@app.command()
def record(
    duration: Optional[int] = typer.Option(
        None, help="Recording duration in seconds. Leave empty to stop with Enter."
    ),
    effect: str = typer.Option("none", "--effect", "-e", help=_EFFECT_HELP),
    channel: Optional[int] = typer.Option(None, help="Post to this channel instead of the global feed"),
    reply_to: Optional[int] = typer.Option(None, help="Post as a reply to this post ID"),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use. Defaults to the configured or system default device."
    ),
    post: bool = typer.Option(
        True,
        "--post/--no-post",
        help="Post right after recording; --no-post keeps the clip as a draft.",
    ),
    draft_name: Optional[str] = typer.Option(
        None, help="Name for the draft kept when posting is skipped or fails."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Record a voice note, apply an effect, and post it."""
    _configure_logging(verbose)
    selection = _parse_effect(effect)
    coordinator = _build_coordinator(device_id)
    coordinator.select_effect(selection)

    async def run() -> int:
        if verbose:
            recorded = await _record_clip(coordinator, duration)
        else:
            with suppress_stderr():
                recorded = await _record_clip(coordinator, duration)
        if not recorded:
            return 1

        clip = coordinator.clip
        console.print(Panel(
            coordinator.preview.render(),
            title=f"[bold]🎧 {clip.duration_seconds:.1f}s · {selection.label}[/bold]",
            border_style="green",
        ))
        name = draft_name or datetime.datetime.now().strftime("%y%m%d%H%M%S")
        if not post:
            _save_draft(coordinator, name)
            return 0

        with console.status("[info]Processing and uploading...[/info]"):
            ok = await coordinator.upload(channel_id=channel, parent_id=reply_to)
        if not ok:
            _save_draft(coordinator, name)
            return 1
        return 0

    try:
        code = asyncio.run(run())
    finally:
        coordinator.teardown()
    if code:
        raise typer.Exit(code=code)


@app.command("post")
def post_file(
    file: Optional[Path] = typer.Argument(None, help="Audio file to post (wav, flac, ogg)"),
    draft: Optional[str] = typer.Option(None, help="Post a saved draft instead of a file"),
    effect: Optional[str] = typer.Option(
        None, "--effect", "-e", help=_EFFECT_HELP + ". Defaults to the draft's effect or none."
    ),
    channel: Optional[int] = typer.Option(None, help="Post to this channel instead of the global feed"),
    reply_to: Optional[int] = typer.Option(None, help="Post as a reply to this post ID"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Post an existing audio file or saved draft."""
    _configure_logging(verbose)
    if (file is None) == (draft is None):
        console.print("[error]✗ Pass either a FILE or --draft NAME[/error]")
        raise typer.Exit(code=1)

    store = DraftStore(str(app_config.get_drafts_dir()))
    if draft is not None:
        clip = store.load(draft)
        if clip is None:
            console.print(f"[error]✗ No draft named '{draft}'[/error]")
            raise typer.Exit(code=1)
        selection = _parse_effect(effect or store.effect_for(draft))
    else:
        try:
            clip = load_clip(file)
        except PipelineError as e:
            console.print(f"[error]✗ {e.message}[/error]")
            raise typer.Exit(code=1)
        selection = _parse_effect(effect or "none")

    coordinator = _build_coordinator()
    coordinator.select_effect(selection)
    coordinator.load_clip(clip)

    async def run() -> bool:
        with console.status("[info]Processing and uploading...[/info]"):
            return await coordinator.upload(channel_id=channel, parent_id=reply_to)

    try:
        ok = asyncio.run(run())
    finally:
        coordinator.teardown()
    if not ok:
        raise typer.Exit(code=1)
    if draft is not None:
        store.delete(draft)


@app.command()
def render(
    source: Path = typer.Argument(..., help="Input audio file"),
    output: Path = typer.Argument(..., help="Output WAV file"),
    effect: str = typer.Option("none", "--effect", "-e", help=_EFFECT_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Apply an effect to an audio file offline and write 16-bit PCM WAV."""
    _configure_logging(verbose)
    selection = _parse_effect(effect)

    async def run():
        clip = load_clip(source)
        buffer = decode(clip)
        rendered = await EffectEngine(timeout=float(app_config.get("render.timeout"))).apply_effect(
            buffer, selection
        )
        return encode(rendered)

    try:
        blob = asyncio.run(run())
    except PipelineError as e:
        console.print(f"[error]✗ {e.kind}: {e.message}[/error]")
        raise typer.Exit(code=1)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(blob.data)
    console.print(f"[success]✓ Wrote {output} ({len(blob)} bytes, {selection.label})[/success]")


@app.command()
def inspect(
    file: Path = typer.Argument(..., help="WAV file to inspect"),
):
    """Show the PCM header fields of a WAV file."""
    try:
        header = read_header(file.read_bytes()[:44])
    except (OSError, ValueError) as e:
        console.print(f"[error]✗ {e}[/error]")
        raise typer.Exit(code=1)

    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    for key, value in header.items():
        grid.add_row(f"{key}:", str(value))
    if header["block_align"]:
        frames = header["data_length"] // header["block_align"]
        grid.add_row("frames:", str(frames))
        grid.add_row("duration:", f"{frames / header['sample_rate']:.3f}s")
    console.print(Panel(grid, title=f"[bold]{file.name}[/bold]"))


@app.command()
def drafts(
    delete: Optional[str] = typer.Option(None, help="Delete the named draft"),
):
    """List saved drafts."""
    store = DraftStore(str(app_config.get_drafts_dir()))
    if delete is not None:
        if store.delete(delete):
            console.print(f"[success]✓ Deleted draft '{delete}'[/success]")
        else:
            console.print(f"[error]✗ No draft named '{delete}'[/error]")
            raise typer.Exit(code=1)
        return

    saved = store.list_drafts()
    if not saved:
        console.print("[dim]No drafts saved[/dim]")
        return
    console.print(Panel(make_drafts_table(saved), title="[bold]Drafts[/bold]"))


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show capture settings, devices and API reachability."""
    _configure_logging(verbose)

    console.rule("[bold]📋 voicepost Status[/bold]")
    constraints = app_config.capture_constraints()
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    grid.add_row("Sample Rate:", f"{constraints.sample_rate} Hz")
    grid.add_row("Channels:", str(constraints.channels))
    grid.add_row("Device:", str(constraints.device_id) if constraints.device_id is not None else "default")
    grid.add_row("Drafts:", str(app_config.get("drafts_dir")))
    console.print(Panel(grid, title="[bold]Capture[/bold]"))

    try:
        if verbose:
            devices = RecordingEngine.list_devices()
        else:
            with suppress_stderr():
                devices = RecordingEngine.list_devices()
        table = make_device_table(devices, constraints.sample_rate)
        console.print(Panel(table, title="[bold]Available Input Devices[/bold]"))
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")

    client = PostClient(ApiConfig.from_app_config(app_config))
    if asyncio.run(client.check_health()):
        console.print(f"[info]API reachable: {client.base_url}[/info]")
    else:
        console.print(f"[warning]API not reachable ({client.base_url})[/warning]")

    uploads = [r for r in PostLogger(app_config.get_log_path()).records() if r.get("type") == "upload"]
    if uploads:
        last = uploads[-1]
        outcome = f"post {last['post_id']}" if last.get("ok") else f"{last['error_kind']}: {last['error']}"
        console.print(f"[muted]Last upload {last['at']} ({last['effect']}): {outcome}[/muted]")
