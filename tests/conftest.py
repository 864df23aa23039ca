"""Shared test fixtures for voicepost tests."""

import asyncio

import numpy as np
import pytest

from voicepost.core.errors import DeviceUnavailable
from voicepost.core.models import DecodedBuffer, EncodedClip
from voicepost.core.wav import encode_clip

RATE = 48000


def sine(freq=440.0, seconds=1.0, rate=RATE, amplitude=0.5):
    t = np.arange(int(seconds * rate)) / rate
    return amplitude * np.sin(2 * np.pi * freq * t)


class FakeDevice:
    """In-memory AudioDevice that hands out pre-recorded int16 chunks."""

    def __init__(self, samples=None, level=128, deny=False, chunk_frames=4800):
        if samples is None:
            samples = sine()
        pcm = (np.asarray(samples) * 32767).astype('<i2').tobytes()
        step = chunk_frames * 2
        self.pending = [pcm[i:i + step] for i in range(0, len(pcm), step)]
        self.level = level
        self.deny = deny
        self.acquired = 0
        self.released = 0
        self.constraints = None

    def acquire(self, constraints, timeslice_ms):
        if self.deny:
            raise DeviceUnavailable("Permission denied")
        self.constraints = constraints
        self.acquired += 1

    def read_chunks(self):
        chunks, self.pending = self.pending, []
        return chunks

    def read_level(self):
        return self.level

    def release(self):
        self.released += 1


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def yield_once(_interval):
    await asyncio.sleep(0)


@pytest.fixture
def fake_device():
    return FakeDevice()


@pytest.fixture
def denied_device():
    return FakeDevice(deny=True)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sine_buffer():
    """One second of 440 Hz at 48 kHz, mono."""
    return DecodedBuffer(samples=sine(), sample_rate=RATE)


@pytest.fixture
def stereo_buffer():
    left = sine(440.0, 0.5)
    right = sine(660.0, 0.5)
    return DecodedBuffer(samples=np.vstack([left, right]), sample_rate=RATE)


@pytest.fixture
def flac_clip():
    """Two seconds of captured audio as the capture controller produces it."""
    pcm = (sine(seconds=2.0) * 32767).astype('<i2').tobytes()
    return EncodedClip(data=encode_clip(pcm, RATE, 1), duration_seconds=2.0)


@pytest.fixture
def temp_drafts_dir(tmp_path):
    """Provide temporary drafts directory for tests."""
    drafts_dir = tmp_path / "drafts"
    drafts_dir.mkdir(parents=True, exist_ok=True)
    return drafts_dir
