"""Data types flowing through the capture → effect → encode → upload pipeline.

Ownership is linear: a :class:`RecordingSession` lives inside the capture
controller, finalizes into an :class:`EncodedClip`, which is decoded to a
:class:`DecodedBuffer`, rendered into a new buffer and serialized into an
:class:`EncodedPCMBlob` that is transmitted and discarded.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np


@dataclass(frozen=True)
class CaptureConstraints:
    """Fixed quality constraints requested from the input device."""

    sample_rate: int = 48000
    channels: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    device_id: Optional[int] = None


@dataclass
class RecordingSession:
    """Transient state of one microphone capture."""

    start_time: float
    sample_rate: int
    channels: int = 1
    active: bool = True
    elapsed_seconds: float = 0.0
    level_sample: int = 0
    chunks: List[bytes] = field(default_factory=list)


@dataclass(frozen=True)
class EncodedClip:
    """Immutable finalized capture.

    ``data`` holds a complete audio file (FLAC when produced by the capture
    controller, anything :mod:`soundfile` can read when loaded from disk).
    """

    data: bytes
    duration_seconds: float
    sample_rate: int = 48000
    channels: int = 1
    content_type: str = "audio/flac"


@dataclass
class DecodedBuffer:
    """Multi-channel float sample matrix.

    ``samples`` has shape ``(channels, frames)``.  Values are nominally in
    ``[-1.0, 1.0]`` but are not clamped here.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples)
        if samples.ndim == 1:
            samples = samples[np.newaxis, :]
        if samples.ndim != 2:
            raise ValueError(f"samples must be 1-D or 2-D, got {samples.ndim}-D")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        self.samples = samples

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate)

    def channel(self, index: int) -> np.ndarray:
        """Return the samples of one channel."""
        return self.samples[index]


@dataclass(frozen=True)
class EncodedPCMBlob:
    """Final WAV bytes handed to the post client.  Never mutated."""

    data: bytes
    content_type: str = "audio/wav"

    def __len__(self) -> int:
        return len(self.data)


__all__ = [
    "CaptureConstraints",
    "RecordingSession",
    "EncodedClip",
    "DecodedBuffer",
    "EncodedPCMBlob",
]
