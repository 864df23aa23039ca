"""Offline effect engine tests."""

import time

import numpy as np
import pytest

from voicepost.core.effects import (
    Delay,
    Distortion,
    EffectEngine,
    EffectSelection,
    NoEffect,
    PitchShift,
    Reverb,
    distortion_curve,
    make_impulse_response,
    resolve_effect,
)
from voicepost.core.errors import EffectRenderFailure
from voicepost.core.models import DecodedBuffer


def dominant_frequency(samples, rate):
    spectrum = np.abs(np.fft.rfft(samples * np.hanning(samples.size)))
    return np.argmax(spectrum) * rate / samples.size


class ExplodingRenderer:
    def render(self, buffer, kind):
        raise RuntimeError("graph exploded")


class SlowRenderer:
    def render(self, buffer, kind):
        time.sleep(0.5)
        return buffer


def test_selection_resolves_fixed_parameters():
    assert EffectSelection.NONE.kind == NoEffect()
    assert EffectSelection.REVERB.kind == Reverb(decay=2.0, wet=0.5)
    assert EffectSelection.DISTORTION.kind == Distortion(drive=0.5, wet=0.5)
    assert EffectSelection.DELAY.kind == Delay(time=0.25, feedback=0.5, wet=0.5)
    assert EffectSelection.PITCH_UP.kind == PitchShift(semitones=12.0, wet=1.0)
    assert EffectSelection.PITCH_DOWN.kind == PitchShift(semitones=-12.0, wet=1.0)
    assert resolve_effect("pitch-down") == PitchShift(semitones=-12.0)
    assert resolve_effect(None) == NoEffect()
    with pytest.raises(ValueError):
        resolve_effect("chorus")


@pytest.mark.asyncio
async def test_no_effect_returns_input_unchanged(sine_buffer):
    result = await EffectEngine().apply_effect(sine_buffer, EffectSelection.NONE)
    assert result is sine_buffer


@pytest.mark.asyncio
@pytest.mark.parametrize("selection", [s for s in EffectSelection if s is not EffectSelection.NONE])
async def test_render_preserves_shape(stereo_buffer, selection):
    result = await EffectEngine().apply_effect(stereo_buffer, selection)

    assert result is not stereo_buffer
    assert result.channels == stereo_buffer.channels
    assert result.frame_count == stereo_buffer.frame_count
    assert result.sample_rate == stereo_buffer.sample_rate
    assert np.all(np.isfinite(result.samples))


@pytest.mark.asyncio
@pytest.mark.parametrize("selection", [s for s in EffectSelection if s is not EffectSelection.NONE])
async def test_render_is_deterministic(sine_buffer, selection):
    first = await EffectEngine().apply_effect(sine_buffer, selection)
    second = await EffectEngine().apply_effect(sine_buffer, selection)
    assert np.array_equal(first.samples, second.samples)


def test_impulse_response_is_seeded_and_decorrelated():
    ir = make_impulse_response(2.0, 8000, 2)
    assert ir.shape == (2, int(round(2.01 * 8000)))
    assert np.array_equal(ir, make_impulse_response(2.0, 8000, 2))
    assert not np.array_equal(ir[0], ir[1])
    assert np.sum(ir[0] ** 2) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_delay_repeats_an_impulse():
    """Echoes land every 250 ms, halving each time, mixed 50/50 with the dry path."""
    samples = np.zeros(30000)
    samples[0] = 1.0
    buffer = DecodedBuffer(samples=samples, sample_rate=48000)

    out = (await EffectEngine().apply_effect(buffer, "delay")).channel(0)

    assert out[0] == pytest.approx(0.5)
    assert out[12000] == pytest.approx(0.5)
    assert out[24000] == pytest.approx(0.25)
    assert np.abs(out[1:12000]).max() == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_distortion_of_silence_is_silence():
    buffer = DecodedBuffer(samples=np.zeros(1000), sample_rate=48000)
    out = await EffectEngine().apply_effect(buffer, "distortion")
    assert np.all(out.samples == 0.0)


def test_distortion_curve_shape():
    x = np.array([-1.0, -0.5, 0.0005, 0.5, 1.0])
    y = distortion_curve(x, 0.5)
    assert y[2] == 0.0
    assert y[0] == pytest.approx(-y[4])
    assert y[1] == pytest.approx(-y[3])
    assert 0 < y[3] < y[4]


@pytest.mark.asyncio
@pytest.mark.parametrize("selection,expected", [("pitch-up", 880.0), ("pitch-down", 220.0)])
async def test_pitch_shift_moves_an_octave(sine_buffer, selection, expected):
    out = (await EffectEngine().apply_effect(sine_buffer, selection)).channel(0)
    # skip the first window while the delay taps fill
    steady = out[9600:]
    assert dominant_frequency(steady, 48000) == pytest.approx(expected, abs=50.0)


@pytest.mark.asyncio
async def test_render_failure_is_reported(sine_buffer):
    engine = EffectEngine(renderer=ExplodingRenderer())
    with pytest.raises(EffectRenderFailure) as excinfo:
        await engine.apply_effect(sine_buffer, "reverb")
    assert "graph exploded" in excinfo.value.message
    assert isinstance(excinfo.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_render_timeout_is_a_failure(sine_buffer):
    engine = EffectEngine(renderer=SlowRenderer(), timeout=0.05)
    with pytest.raises(EffectRenderFailure):
        await engine.apply_effect(sine_buffer, "delay")


@pytest.mark.asyncio
async def test_unknown_effect_is_a_render_failure(sine_buffer):
    with pytest.raises(EffectRenderFailure):
        await EffectEngine().apply_effect(sine_buffer, "chorus")
