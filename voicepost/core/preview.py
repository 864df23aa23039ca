"""Waveform preview for the recorder surface.

A :class:`WaveformPreview` summarizes audio as a fixed number of peak bins,
normalized to the loudest bin.  It is created when a recorder opens, fed
either interim capture samples (:meth:`WaveformPreview.update`) or the
finished clip (:meth:`WaveformPreview.load`), and destroyed when the
recorder closes.
"""

from typing import Optional

import numpy as np

from .config import PREVIEW_BINS
from .models import EncodedClip
from .wav import decode

_BLOCKS = ' ▁▂▃▄▅▆▇█'


def compute_peaks(samples: np.ndarray, bins: int = PREVIEW_BINS) -> np.ndarray:
    """Absolute peak per bin, scaled so the loudest bin is 1.0.

    Args:
        samples: Mono samples (float or int16) or ``(channels, frames)``
        bins: Number of output bins

    Returns:
        Float array of length *bins* (all zeros for silence or no input)
    """
    data = np.asarray(samples)
    if data.ndim == 2:
        data = np.max(np.abs(data), axis=0)
    data = np.abs(data.astype(np.float64))
    peaks = np.zeros(bins, dtype=np.float64)
    if data.size == 0:
        return peaks
    for i, segment in enumerate(np.array_split(data, bins)):
        if segment.size:
            peaks[i] = segment.max()
    top = peaks.max()
    return peaks / top if top > 0 else peaks


class WaveformPreview:
    """Peak summary owned by one open recorder."""

    def __init__(self, bins: int = PREVIEW_BINS) -> None:
        self.bins = bins
        self._peaks: Optional[np.ndarray] = np.zeros(bins)

    @property
    def destroyed(self) -> bool:
        return self._peaks is None

    @property
    def peaks(self) -> np.ndarray:
        if self._peaks is None:
            raise RuntimeError('Waveform preview has been destroyed')
        return self._peaks

    def update(self, samples: np.ndarray) -> None:
        """Refresh from interim samples while recording."""
        if self._peaks is not None:
            self._peaks = compute_peaks(samples, self.bins)

    def load(self, clip: EncodedClip) -> None:
        """Load the finished clip.

        Raises:
            DecodeFailure: If the clip cannot be decoded
        """
        if self._peaks is not None:
            self._peaks = compute_peaks(decode(clip).samples, self.bins)

    def render(self) -> str:
        """Render the peaks as a one-line block sparkline."""
        if self._peaks is None:
            return ''
        steps = len(_BLOCKS) - 1
        return ''.join(_BLOCKS[int(round(p * steps))] for p in self._peaks)

    def destroy(self) -> None:
        self._peaks = None
