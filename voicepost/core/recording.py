"""Audio input devices for voicepost.

Main public classes
-------------------
:class:`AudioDevice`
    The capability the capture controller depends on: acquire and release
    an input device, read the level of the latest audio, and drain the
    chunks captured since the last read.

:class:`PyAudioDevice`
    :class:`AudioDevice` backed by a PyAudio input stream.  Audio arrives
    on PortAudio's callback thread in time slices (``timeslice_ms``) and is
    queued until the controller drains it.

:class:`RecordingEngine`
    Static helpers for enumerating available input devices.

The capture rate is a configuration constant.  The device is opened at that
rate even when it reports a different native rate; PortAudio or the sound
server resamples in that case, which is logged because it can shift pitch
and duration if the host lies about the rate it actually delivers.
"""

import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol

import pyaudio
from loguru import logger

from .config import SAMPLE_WIDTH_INT16, TIMESLICE_MS
from .errors import DeviceUnavailable
from .models import CaptureConstraints
from .processing import calculate_level, detect_driver_type


class AudioDevice(Protocol):
    """Input device capability used by the capture controller."""

    def acquire(self, constraints: CaptureConstraints, timeslice_ms: int) -> None:
        """Open the device; raise :class:`DeviceUnavailable` on failure."""
        ...

    def read_chunks(self) -> List[bytes]:
        """Return and forget the int16 chunks captured since the last call."""
        ...

    def read_level(self) -> int:
        """Return the 0-255 level of the most recent audio."""
        ...

    def release(self) -> None:
        """Close the device.  Must tolerate being called when closed."""
        ...


class RecordingEngine:
    """Device enumeration helpers."""

    @staticmethod
    def list_devices(
        driver_filter: Optional[str] = None,
        audio: Optional[pyaudio.PyAudio] = None,
    ) -> List[Dict[str, Any]]:
        """List all available input audio devices.

        Args:
            driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')
            audio: Existing PyAudio instance to reuse; a temporary one is
                created and terminated otherwise

        Returns:
            One dict per input device with keys ``id``, ``name``, ``driver``,
            ``channels``, ``rate`` and ``is_default``
        """
        owns_audio = audio is None
        if audio is None:
            audio = pyaudio.PyAudio()
        try:
            try:
                default_device = audio.get_default_input_device_info()
                default_device_id = int(default_device['index'])
            except OSError:
                default_device_id = -1

            input_devices = []
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) <= 0:
                    continue
                device_name = device_info.get('name', 'Unknown')
                driver_type = detect_driver_type(device_name)

                # Skip if driver filter is specified and doesn't match
                if driver_filter and driver_type != driver_filter.lower():
                    continue

                input_devices.append({
                    'id': i,
                    'name': device_name,
                    'driver': driver_type,
                    'channels': int(device_info.get('maxInputChannels', 0)),
                    'rate': int(device_info.get('defaultSampleRate', 0)),
                    'is_default': i == default_device_id,
                })
            return input_devices
        finally:
            if owns_audio:
                audio.terminate()


class PyAudioDevice:
    """Microphone input through PyAudio.

    Echo cancellation, noise suppression and automatic gain are requested
    through :class:`CaptureConstraints`; PortAudio exposes no switches for
    them, so they are applied by the sound server (PulseAudio/PipeWire
    filter chains) when configured there.
    """

    def __init__(self, audio_factory=pyaudio.PyAudio) -> None:
        self._audio_factory = audio_factory
        self._audio_interface: Optional[pyaudio.PyAudio] = None
        self._audio_stream = None
        self._chunks: Deque[bytes] = deque()
        self._last_chunk = b''
        self._lock = threading.Lock()

    def acquire(self, constraints: CaptureConstraints, timeslice_ms: int = TIMESLICE_MS) -> None:
        """Open the input stream with the requested constraints.

        Raises:
            DeviceUnavailable: If no input device exists or it cannot be opened
        """
        frames_per_buffer = max(1, int(constraints.sample_rate * timeslice_ms / 1000))
        try:
            self._audio_interface = self._audio_factory()
            if constraints.device_id is None:
                device_info = self._audio_interface.get_default_input_device_info()
            else:
                device_info = self._audio_interface.get_device_info_by_index(constraints.device_id)

            native_rate = int(device_info.get('defaultSampleRate', constraints.sample_rate))
            if native_rate != constraints.sample_rate:
                logger.warning(
                    f"Device native rate {native_rate} Hz differs from capture rate "
                    f"{constraints.sample_rate} Hz; audio will be resampled by the host"
                )

            self._audio_stream = self._audio_interface.open(
                format=self._audio_interface.get_format_from_width(SAMPLE_WIDTH_INT16),
                channels=constraints.channels,
                rate=constraints.sample_rate,
                input=True,
                input_device_index=int(device_info['index']),
                frames_per_buffer=frames_per_buffer,
                stream_callback=self._fill_buffer,
            )
        except (OSError, ValueError) as e:
            self.release()
            raise DeviceUnavailable(f"Failed to access microphone: {e}", cause=e) from e

        logger.info(
            f"Microphone opened: {device_info.get('name', 'Unknown')} "
            f"@ {constraints.sample_rate} Hz, {frames_per_buffer} frames/slice"
        )

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """Collect one time slice from the PortAudio callback thread."""
        with self._lock:
            self._chunks.append(in_data)
            self._last_chunk = in_data
        return None, pyaudio.paContinue

    def read_chunks(self) -> List[bytes]:
        with self._lock:
            chunks = list(self._chunks)
            self._chunks.clear()
        return chunks

    def read_level(self) -> int:
        with self._lock:
            latest = self._last_chunk
        return calculate_level(latest)

    def release(self) -> None:
        """Stop the stream and terminate PortAudio."""
        stream, self._audio_stream = self._audio_stream, None
        audio, self._audio_interface = self._audio_interface, None
        if stream is not None:
            stream.stop_stream()
            stream.close()
        if audio is not None:
            audio.terminate()
        if stream is not None:
            logger.info('Microphone has been closed')
