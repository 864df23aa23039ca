"""Command line interface for voicepost."""

from .commands import app

__all__ = ["app"]
