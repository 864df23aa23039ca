"""Offline voice effects for voicepost.

An :class:`EffectSelection` names one of the six effects offered to the
user.  Each selection resolves to a tagged :data:`EffectKind` carrying its
fixed parameters:

==============  ===============================================
Selection       Effect kind
==============  ===============================================
``none``        ``NoEffect()``
``reverb``      ``Reverb(decay=2.0, wet=0.5)``
``distortion``  ``Distortion(drive=0.5, wet=0.5)``
``delay``       ``Delay(time=0.25, feedback=0.5, wet=0.5)``
``pitch-up``    ``PitchShift(semitones=+12, wet=1.0)``
``pitch-down``  ``PitchShift(semitones=-12, wet=1.0)``
==============  ===============================================

Rendering is offline: an :class:`OfflineContext` is sized exactly to the
input buffer (channels, frames, sample rate), the effect node built for the
kind processes every channel, and the result is cut or padded to the
context length.  Everything is pure numpy/scipy with a seeded impulse
response, so two renders of the same input are bit-identical.  Samples are
not clamped here; the PCM encoder is the only place that clamps.

:class:`EffectEngine` runs the render on an executor thread and awaits it,
converting any failure or timeout into :class:`EffectRenderFailure`.
"""

import asyncio
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Union

import numpy as np
from loguru import logger
from scipy.signal import fftconvolve, lfilter

from .config import RENDER_TIMEOUT
from .errors import EffectRenderFailure
from .models import DecodedBuffer

REVERB_SEED = 0x5EED
REVERB_PRE_DELAY = 0.01
PITCH_WINDOW = 0.1


@dataclass(frozen=True)
class NoEffect:
    pass


@dataclass(frozen=True)
class Reverb:
    decay: float = 2.0
    wet: float = 0.5


@dataclass(frozen=True)
class Distortion:
    drive: float = 0.5
    wet: float = 0.5


@dataclass(frozen=True)
class Delay:
    time: float = 0.25
    feedback: float = 0.5
    wet: float = 0.5


@dataclass(frozen=True)
class PitchShift:
    semitones: float = 12.0
    wet: float = 1.0


EffectKind = Union[NoEffect, Reverb, Distortion, Delay, PitchShift]


class EffectSelection(str, Enum):
    """Closed set of effects a user can pick."""

    NONE = 'none'
    REVERB = 'reverb'
    DISTORTION = 'distortion'
    DELAY = 'delay'
    PITCH_UP = 'pitch-up'
    PITCH_DOWN = 'pitch-down'

    @property
    def kind(self) -> EffectKind:
        return _SELECTION_KINDS[self]

    @property
    def label(self) -> str:
        return _SELECTION_LABELS[self]


_SELECTION_KINDS: Dict[EffectSelection, EffectKind] = {
    EffectSelection.NONE: NoEffect(),
    EffectSelection.REVERB: Reverb(decay=2.0, wet=0.5),
    EffectSelection.DISTORTION: Distortion(drive=0.5, wet=0.5),
    EffectSelection.DELAY: Delay(time=0.25, feedback=0.5, wet=0.5),
    EffectSelection.PITCH_UP: PitchShift(semitones=12.0, wet=1.0),
    EffectSelection.PITCH_DOWN: PitchShift(semitones=-12.0, wet=1.0),
}

_SELECTION_LABELS: Dict[EffectSelection, str] = {
    EffectSelection.NONE: 'No Effect',
    EffectSelection.REVERB: 'Reverb',
    EffectSelection.DISTORTION: 'Distortion',
    EffectSelection.DELAY: 'Delay',
    EffectSelection.PITCH_UP: 'Pitch Up',
    EffectSelection.PITCH_DOWN: 'Pitch Down',
}


def resolve_effect(effect: Union[str, EffectSelection, EffectKind, None]) -> EffectKind:
    """Turn a selection name, enum member or kind into an effect kind.

    Raises:
        ValueError: If *effect* names no known effect
    """
    if effect is None:
        return NoEffect()
    if isinstance(effect, (NoEffect, Reverb, Distortion, Delay, PitchShift)):
        return effect
    return EffectSelection(effect).kind


# ----------------------------------------------------------------------
# Effect nodes.  A node builder receives the kind and the context and
# returns a processor mapping (channel samples, channel index) -> samples.
# ----------------------------------------------------------------------

ChannelProcessor = Callable[[np.ndarray, int], np.ndarray]


def _mix(dry: np.ndarray, wet_signal: np.ndarray, wet: float) -> np.ndarray:
    return (1.0 - wet) * dry + wet * wet_signal


def make_impulse_response(
    decay: float,
    sample_rate: int,
    channels: int,
    seed: int = REVERB_SEED,
) -> np.ndarray:
    """Decaying noise impulse response, one decorrelated row per channel.

    The envelope ramps in linearly over the pre-delay and then falls 60 dB
    over *decay* seconds.  Each row is scaled to unit energy.
    """
    length = max(1, int(round((decay + REVERB_PRE_DELAY) * sample_rate)))
    t = np.arange(length) / float(sample_rate)
    envelope = np.where(
        t < REVERB_PRE_DELAY,
        t / REVERB_PRE_DELAY,
        np.power(10.0, -3.0 * (t - REVERB_PRE_DELAY) / decay),
    )
    rng = np.random.default_rng(seed)
    ir = rng.uniform(-1.0, 1.0, size=(channels, length)) * envelope
    energy = np.sqrt(np.sum(ir ** 2, axis=1, keepdims=True))
    return ir / np.where(energy > 0, energy, 1.0)


def _reverb_node(kind: Reverb, context: 'OfflineContext') -> ChannelProcessor:
    ir = make_impulse_response(kind.decay, context.sample_rate, context.channels)

    def process(x: np.ndarray, channel: int) -> np.ndarray:
        return _mix(x, fftconvolve(x, ir[channel])[: x.size], kind.wet)

    return process


def distortion_curve(x: np.ndarray, drive: float) -> np.ndarray:
    """Waveshaping transfer function ``(3 + k) x 20° / (π + k|x|)``."""
    k = drive * 100.0
    deg = math.pi / 180.0
    shaped = (3.0 + k) * x * 20.0 * deg / (math.pi + k * np.abs(x))
    return np.where(np.abs(x) < 0.001, 0.0, shaped)


def _distortion_node(kind: Distortion, context: 'OfflineContext') -> ChannelProcessor:
    def process(x: np.ndarray, channel: int) -> np.ndarray:
        return _mix(x, distortion_curve(x, kind.drive), kind.wet)

    return process


def _delay_node(kind: Delay, context: 'OfflineContext') -> ChannelProcessor:
    delay_frames = max(1, int(round(kind.time * context.sample_rate)))
    # w[n] = x[n - D] + feedback * w[n - D]
    b = np.zeros(delay_frames + 1)
    b[delay_frames] = 1.0
    a = np.zeros(delay_frames + 1)
    a[0] = 1.0
    a[delay_frames] = -kind.feedback

    def process(x: np.ndarray, channel: int) -> np.ndarray:
        return _mix(x, lfilter(b, a, x), kind.wet)

    return process


def pitch_shift(x: np.ndarray, semitones: float, sample_rate: int,
                window: float = PITCH_WINDOW) -> np.ndarray:
    """Shift *x* by *semitones* with a two-tap modulated delay line.

    Each tap reads through a delay that sweeps across one window at the
    rate needed for the requested ratio.  The taps are half a window apart
    and cross-faded with ``sin(pi * phase)`` so each jump happens at zero
    gain.
    """
    n = x.size
    if n == 0:
        return x.copy()
    ratio = 2.0 ** (semitones / 12.0)
    window_frames = max(2, int(round(window * sample_rate)))
    index = np.arange(n, dtype=np.float64)
    phase = np.mod(index * (ratio - 1.0) / window_frames, 1.0)

    out = np.zeros(n, dtype=np.float64)
    for tap_phase in (phase, np.mod(phase + 0.5, 1.0)):
        position = index - window_frames * (1.0 - tap_phase)
        valid = position >= 0
        base = np.floor(np.where(valid, position, 0.0)).astype(np.int64)
        frac = np.where(valid, position, 0.0) - base
        nxt = np.minimum(base + 1, n - 1)
        value = x[base] * (1.0 - frac) + x[nxt] * frac
        out += np.where(valid, value, 0.0) * np.sin(np.pi * tap_phase)
    return out


def _pitch_node(kind: PitchShift, context: 'OfflineContext') -> ChannelProcessor:
    def process(x: np.ndarray, channel: int) -> np.ndarray:
        shifted = pitch_shift(x, kind.semitones, context.sample_rate)
        return _mix(x, shifted, kind.wet)

    return process


_NODE_BUILDERS: Dict[type, Callable[..., ChannelProcessor]] = {
    Reverb: _reverb_node,
    Distortion: _distortion_node,
    Delay: _delay_node,
    PitchShift: _pitch_node,
}


@dataclass(frozen=True)
class OfflineContext:
    """Fixed-size, non-realtime render target."""

    channels: int
    frame_count: int
    sample_rate: int

    @classmethod
    def for_buffer(cls, buffer: DecodedBuffer) -> 'OfflineContext':
        return cls(buffer.channels, buffer.frame_count, buffer.sample_rate)

    def create_node(self, kind: EffectKind) -> ChannelProcessor:
        try:
            builder = _NODE_BUILDERS[type(kind)]
        except KeyError:
            raise ValueError(f"No effect node for {type(kind).__name__}") from None
        return builder(kind, self)

    def start_rendering(self, source: DecodedBuffer, node: ChannelProcessor) -> DecodedBuffer:
        """Push *source* through *node* and return the rendered buffer."""
        rendered = np.zeros((self.channels, self.frame_count), dtype=np.float64)
        for channel in range(self.channels):
            processed = np.asarray(node(source.samples[channel].astype(np.float64), channel))
            length = min(processed.size, self.frame_count)
            rendered[channel, :length] = processed[:length]
        return DecodedBuffer(samples=rendered, sample_rate=self.sample_rate)


class OfflineRenderer(Protocol):
    """Builds a render graph for a buffer and renders it to completion."""

    def render(self, buffer: DecodedBuffer, kind: EffectKind) -> DecodedBuffer:
        ...


class NumpyOfflineRenderer:
    """Default renderer backed by numpy and scipy.signal."""

    def render(self, buffer: DecodedBuffer, kind: EffectKind) -> DecodedBuffer:
        context = OfflineContext.for_buffer(buffer)
        node = context.create_node(kind)
        return context.start_rendering(buffer, node)


class EffectEngine:
    """Applies an effect selection to a decoded buffer off the event loop.

    Args:
        renderer: Offline render backend.  Defaults to
            :class:`NumpyOfflineRenderer`.
        timeout: Seconds a render may take before it counts as failed.
        executor: Executor for the render; ``None`` uses the loop default.
    """

    def __init__(
        self,
        renderer: Optional[OfflineRenderer] = None,
        timeout: float = RENDER_TIMEOUT,
        executor: Optional[Executor] = None,
    ) -> None:
        self._renderer = renderer or NumpyOfflineRenderer()
        self._timeout = timeout
        self._executor = executor

    async def apply_effect(
        self,
        buffer: DecodedBuffer,
        effect: Union[str, EffectSelection, EffectKind, None],
    ) -> DecodedBuffer:
        """Render *buffer* with *effect* applied.

        ``none`` returns *buffer* itself.

        Raises:
            EffectRenderFailure: If the effect cannot be built, rendering
                raises, or it exceeds the timeout
        """
        try:
            kind = resolve_effect(effect)
        except ValueError as e:
            raise EffectRenderFailure(f"Unknown effect: {effect}", cause=e) from e

        if isinstance(kind, NoEffect):
            return buffer

        logger.debug(
            f"Rendering {type(kind).__name__} offline: {buffer.channels}ch "
            f"{buffer.frame_count} frames @ {buffer.sample_rate} Hz"
        )
        loop = asyncio.get_running_loop()
        job = loop.run_in_executor(self._executor, self._renderer.render, buffer, kind)
        try:
            rendered = await asyncio.wait_for(job, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise EffectRenderFailure(
                f"Effect render did not finish within {self._timeout:g}s", cause=e
            ) from e
        except Exception as e:
            raise EffectRenderFailure(f"Effect render failed: {e}", cause=e) from e
        return rendered


__all__ = [
    "Delay",
    "Distortion",
    "EffectEngine",
    "EffectKind",
    "EffectSelection",
    "NoEffect",
    "NumpyOfflineRenderer",
    "OfflineContext",
    "OfflineRenderer",
    "PitchShift",
    "Reverb",
    "distortion_curve",
    "make_impulse_response",
    "pitch_shift",
    "resolve_effect",
]
