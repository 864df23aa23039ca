"""voicepost - record, shape and post short voice notes.

This package provides a Python CLI for capturing voice notes from a
microphone, applying an offline voice effect, and posting the result as
16-bit PCM WAV to a voice-posting service.
"""

from .cli.commands import app

__version__ = "1.0.0"
__author__ = "voicepost contributors"

__all__ = ["app", "__version__"]
