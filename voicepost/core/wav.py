"""Canonical 16-bit linear PCM (WAV) encoder and clip decoder.

Container layout (little-endian)::

    0   "RIFF"            4  total length - 8     8   "WAVE"
    12  "fmt "            16 16 (fmt length)      20  1 (PCM)
    22  channels          24 sample rate          28  byte rate
    32  block align       34 16 (bits/sample)
    36  "data"            40 payload length       44  samples...

Samples are interleaved frame-major, channel-minor.  Quantization clamps to
``[-1, 1]``, scales negatives by 32768 and non-negatives by 32767, then
rounds to nearest with ``floor(x + 0.5)``.  The output depends only on the
input buffer: no dithering, no compression.
"""

import io
import struct
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
import soundfile as sf

from .errors import DecodeFailure, EncodeFailure
from .models import DecodedBuffer, EncodedClip, EncodedPCMBlob

HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
PCM_FORMAT_TAG = 1

_HEADER = struct.Struct('<4sI4s4sIHHIIHH4sI')

_CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
}


def pcm_length(frame_count: int, channels: int) -> int:
    """Total container length for a buffer of the given shape."""
    return frame_count * channels * 2 + HEADER_SIZE


def build_header(channels: int, sample_rate: int, frame_count: int) -> bytes:
    """Build the 44-byte header for a buffer of the given shape."""
    total = pcm_length(frame_count, channels)
    return _HEADER.pack(
        b'RIFF',
        total - 8,
        b'WAVE',
        b'fmt ',
        16,
        PCM_FORMAT_TAG,
        channels,
        sample_rate,
        sample_rate * 2 * channels,
        channels * 2,
        BITS_PER_SAMPLE,
        b'data',
        total - HEADER_SIZE,
    )


def quantize(samples: np.ndarray) -> np.ndarray:
    """Convert float samples to int16 with the asymmetric PCM rule.

    Args:
        samples: Float samples of any shape

    Returns:
        ``int16`` array of the same shape
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clamped < 0, clamped * 32768.0, clamped * 32767.0)
    return np.floor(scaled + 0.5).astype(np.int16)


def encode(buffer: DecodedBuffer) -> EncodedPCMBlob:
    """Serialize *buffer* into the canonical WAV container.

    Args:
        buffer: Decoded samples, shape ``(channels, frames)``

    Returns:
        Immutable WAV bytes tagged ``audio/wav``

    Raises:
        EncodeFailure: If the buffer has no channels or holds non-finite values
    """
    samples = buffer.samples
    if buffer.channels < 1:
        raise EncodeFailure("Cannot encode a buffer without channels")
    if not np.all(np.isfinite(samples)):
        raise EncodeFailure("Buffer contains non-finite samples")

    # (channels, frames) -> (frames, channels) flattens to interleaved order
    interleaved = quantize(samples).T.reshape(-1)
    payload = interleaved.astype('<i2').tobytes()
    header = build_header(buffer.channels, buffer.sample_rate, buffer.frame_count)
    return EncodedPCMBlob(data=header + payload)


def read_header(data: bytes) -> Dict[str, Any]:
    """Parse the header written by :func:`encode`.

    Raises:
        ValueError: If *data* is not a canonical PCM container
    """
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Need at least {HEADER_SIZE} bytes, got {len(data)}")
    fields = _HEADER.unpack_from(data)
    if fields[0] != b'RIFF' or fields[2] != b'WAVE' or fields[3] != b'fmt ' or fields[11] != b'data':
        raise ValueError("Not a canonical RIFF/WAVE PCM container")
    return {
        'riff_length': fields[1],
        'fmt_length': fields[4],
        'format_tag': fields[5],
        'channels': fields[6],
        'sample_rate': fields[7],
        'byte_rate': fields[8],
        'block_align': fields[9],
        'bits_per_sample': fields[10],
        'data_length': fields[12],
    }


def decode(clip: EncodedClip) -> DecodedBuffer:
    """Decode an encoded clip into float samples.

    Args:
        clip: FLAC, WAV or any other container libsndfile understands

    Returns:
        Decoded buffer at the clip's native sample rate

    Raises:
        DecodeFailure: If the bytes cannot be decoded
    """
    if not clip.data:
        raise DecodeFailure("Clip is empty")
    try:
        data, sample_rate = sf.read(io.BytesIO(clip.data), dtype='float32', always_2d=True)
    except (RuntimeError, ValueError, TypeError) as e:
        raise DecodeFailure(f"Unable to decode clip: {e}", cause=e) from e
    return DecodedBuffer(samples=np.ascontiguousarray(data.T), sample_rate=int(sample_rate))


def load_clip(path: Union[str, Path]) -> EncodedClip:
    """Read an audio file from disk as a clip ready for upload.

    Raises:
        DecodeFailure: If the file is not readable audio
    """
    path = Path(path)
    try:
        info = sf.info(str(path))
    except (RuntimeError, ValueError, TypeError) as e:
        raise DecodeFailure(f"Unable to read {path.name}: {e}", cause=e) from e
    return EncodedClip(
        data=path.read_bytes(),
        duration_seconds=float(info.duration),
        sample_rate=int(info.samplerate),
        channels=int(info.channels),
        content_type=_CONTENT_TYPES.get(path.suffix.lower(), 'application/octet-stream'),
    )


def encode_clip(frames: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Pack raw int16 capture frames into a FLAC bitstream.

    Args:
        frames: Interleaved int16 little-endian frames
        sample_rate: Capture rate in Hz
        channels: Number of interleaved channels

    Returns:
        FLAC file bytes
    """
    audio_data = np.frombuffer(frames, dtype=np.int16).reshape(-1, channels)
    out = io.BytesIO()
    sf.write(out, audio_data, sample_rate, format='FLAC', subtype='PCM_16')
    return out.getvalue()


__all__ = [
    "HEADER_SIZE",
    "build_header",
    "decode",
    "encode",
    "encode_clip",
    "load_clip",
    "pcm_length",
    "quantize",
    "read_header",
]
