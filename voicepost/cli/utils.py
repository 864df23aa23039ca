"""Terminal helpers for the voicepost CLI: themed console, tables, level meter."""

import datetime
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

from voicepost.core.effects import EffectSelection

console = Console(
    theme=Theme(
        {
            "info": "cyan",
            "success": "bold green",
            "warning": "yellow",
            "error": "bold red",
            "muted": "dim",
        }
    )
)


def make_device_table(devices: List[Dict[str, Any]], capture_rate: Optional[int] = None) -> Table:
    """Input devices as returned by ``RecordingEngine.list_devices()``.

    When *capture_rate* is given, devices whose native rate differs are
    highlighted since the host will resample them.
    """
    table = Table(header_style="bold", expand=False)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Device", min_width=28)
    table.add_column("Driver", style="muted")
    table.add_column("Inputs", justify="right", style="muted")
    table.add_column("Native rate", justify="right")
    table.add_column("")

    for device in devices:
        rate = device.get("rate", 0)
        rate_text = f"{rate} Hz"
        if capture_rate and rate and rate != capture_rate:
            rate_text = f"[warning]{rate_text}[/warning]"
        table.add_row(
            str(device["id"]),
            device["name"],
            device.get("driver", "").upper(),
            str(device.get("channels", "")),
            rate_text,
            "[success]default[/success]" if device.get("is_default") else "",
        )
    return table


def make_effects_table() -> Table:
    """Selectable voice effects and their fixed parameters."""
    table = Table(header_style="bold", expand=False)
    table.add_column("Name", style="cyan")
    table.add_column("Label")
    table.add_column("Parameters", style="muted")
    for selection in EffectSelection:
        params = ", ".join(f"{k}={v:g}" for k, v in vars(selection.kind).items()) or "-"
        table.add_row(selection.value, selection.label, params)
    return table


def make_drafts_table(drafts: List[Dict[str, Any]]) -> Table:
    table = Table(header_style="bold", expand=False)
    table.add_column("Name", style="cyan")
    table.add_column("Length", justify="right")
    table.add_column("Effect", style="muted")
    table.add_column("Size", justify="right", style="muted")
    table.add_column("Saved", style="muted")
    for draft in drafts:
        saved = datetime.datetime.fromtimestamp(draft["created"])
        table.add_row(
            draft["name"],
            f"{draft['duration_seconds']:.1f}s",
            str(draft["effect"]),
            f"{draft['size'] / 1024:.1f} KiB",
            saved.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def make_level_progress() -> Progress:
    """Live microphone meter on a 0-255 scale.

    Tasks carry two extra fields, ``level_text`` and ``elapsed``::

        with make_level_progress() as meter:
            task = meter.add_task("level", total=255, level_text="--", elapsed="0.0s")
            meter.update(task, completed=capture.level, level_text=str(capture.level))
    """
    return Progress(
        TextColumn("🎙"),
        BarColumn(bar_width=40, complete_style="green", finished_style="red"),
        TextColumn("[bold]{task.fields[level_text]}[/bold]"),
        TextColumn("[muted]{task.fields[elapsed]}[/muted]"),
        console=console,
        transient=True,
    )


@contextmanager
def suppress_stderr() -> Iterator[None]:
    """Silence fd 2 for the duration of the block.

    PortAudio, ALSA and JACK print probe noise straight to the file
    descriptor, bypassing ``sys.stderr``.
    """
    saved = os.dup(2)
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(saved, 2)
        os.close(devnull)
        os.close(saved)


__all__ = [
    "console",
    "make_device_table",
    "make_drafts_table",
    "make_effects_table",
    "make_level_progress",
    "suppress_stderr",
]
