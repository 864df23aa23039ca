"""Audio processing utilities for voicepost.

This module provides the level meter used while capturing and driver
detection for device listings.
"""

import numpy as np
from loguru import logger

FFT_SIZE = 2048
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def calculate_level(audio_data: bytes, fft_size: int = FFT_SIZE) -> int:
    """Calculate the 0-255 level of the most recent audio frames.

    The last *fft_size* int16 samples are windowed (Blackman), transformed,
    converted to decibels and mapped from ``[MIN_DECIBELS, MAX_DECIBELS]``
    onto a byte scale per frequency bin.  The level is the mean over all
    bins, the same figure a browser analyser reports as byte frequency data.

    Args:
        audio_data: Raw mono int16 audio bytes
        fft_size: Transform size in samples (power of two)

    Returns:
        Level in the range 0-255; 0 when the data cannot be analysed
    """
    try:
        samples = np.frombuffer(audio_data, dtype=np.int16).astype(np.float64) / 32768.0
        if samples.size == 0:
            return 0

        frame = samples[-fft_size:]
        if frame.size < fft_size:
            frame = np.concatenate([np.zeros(fft_size - frame.size), frame])

        spectrum = np.abs(np.fft.rfft(frame * np.blackman(fft_size)))[: fft_size // 2]
        magnitude = spectrum / fft_size
        with np.errstate(divide='ignore'):
            db = 20.0 * np.log10(magnitude)
        scaled = 255.0 * (db - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
        byte_bins = np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)
        return int(byte_bins.mean())
    except Exception as e:
        logger.debug(f"Error calculating level: {e}")
        return 0


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'default', etc.
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
