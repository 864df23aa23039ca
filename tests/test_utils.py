"""Utility tests for voicepost."""

from voicepost.cli.utils import (
    console,
    make_device_table,
    make_drafts_table,
    make_effects_table,
    make_level_progress,
)


def test_console_available():
    """Test that console is available."""
    assert console is not None
    assert hasattr(console, 'print')


def test_device_table_rows():
    table = make_device_table([
        {"id": 2, "name": "Mic", "driver": "alsa", "channels": 1, "rate": 48000, "is_default": True},
    ])
    assert table.row_count == 1
    assert len(table.columns) == 6


def test_effects_table_lists_every_selection():
    assert make_effects_table().row_count == 6


def test_drafts_table():
    table = make_drafts_table([
        {"name": "a", "duration_seconds": 2.5, "effect": "none", "size": 2048, "created": 0.0},
    ])
    assert table.row_count == 1


def test_level_progress_fields():
    progress = make_level_progress()
    task = progress.add_task("level", total=255, level_text="--", elapsed="0.0s")
    progress.update(task, completed=128, level_text="128")
    assert progress.tasks[0].completed == 128
    assert progress.tasks[0].fields["level_text"] == "128"
