"""Capture controller: microphone lifecycle, metering and clip finalization.

A :class:`CaptureController` owns at most one :class:`RecordingSession` at a
time.  While the session is active a metering task wakes every time slice,
drains the device's chunks into the session, and updates the elapsed
duration and the 0-255 level.  Stopping finalizes the chunks into an
immutable FLAC :class:`EncodedClip` and releases the device exactly once.

Device failures never escape :meth:`CaptureController.start_capture`; they
are stored on :attr:`CaptureController.error` for the caller to show.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import numpy as np
from loguru import logger

from .config import TIMESLICE_MS
from .errors import DeviceUnavailable, EncodeFailure, PipelineError
from .models import CaptureConstraints, EncodedClip, RecordingSession
from .recording import AudioDevice
from .wav import encode_clip


class CaptureController:
    """Records one clip at a time from an injected :class:`AudioDevice`.

    Args:
        device: Input device capability
        constraints: Device request; the sample rate here is also the rate
            the clip is encoded at
        timeslice_ms: Chunk and metering cadence
        clock: Monotonic time source in seconds
        sleep: Coroutine used between metering ticks
    """

    def __init__(
        self,
        device: AudioDevice,
        constraints: Optional[CaptureConstraints] = None,
        timeslice_ms: int = TIMESLICE_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._device = device
        self._constraints = constraints or CaptureConstraints()
        self._timeslice_ms = timeslice_ms
        self._clock = clock
        self._sleep = sleep

        self._session: Optional[RecordingSession] = None
        self._meter_task: Optional[asyncio.Task] = None
        self._device_held = False
        self._drain_error: Optional[PipelineError] = None

        self.level = 0
        self.duration = 0.0
        self.error: Optional[PipelineError] = None

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def is_recording(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def sample_rate(self) -> int:
        return self._constraints.sample_rate

    async def start_capture(self) -> bool:
        """Acquire the device and begin a new recording session.

        Returns:
            ``True`` when recording started.  On failure :attr:`error` holds
            a :class:`DeviceUnavailable` and no session exists.
        """
        if self.is_recording:
            logger.warning('Capture already in progress')
            return False

        self.error = None
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._device.acquire, self._constraints, self._timeslice_ms
            )
        except DeviceUnavailable as e:
            self.error = e
            logger.warning(f'Microphone unavailable: {e.message}')
            return False
        except Exception as e:
            self.error = DeviceUnavailable(f'Failed to access microphone: {e}', cause=e)
            logger.warning(f'Microphone unavailable: {e}')
            return False

        self._device_held = True
        self._drain_error = None
        self._session = RecordingSession(
            start_time=self._clock(),
            sample_rate=self._constraints.sample_rate,
            channels=self._constraints.channels,
        )
        self.level = 0
        self.duration = 0.0
        self._meter_task = asyncio.ensure_future(self._meter_loop(self._session))
        logger.info(f'Recording started @ {self._constraints.sample_rate} Hz')
        return True

    async def stop_capture(self) -> Optional[EncodedClip]:
        """Finalize the active session into a clip.

        Returns:
            The clip, or ``None`` when nothing was recording, the device
            failed mid-session, no audio arrived, or the clip could not be
            encoded (see :attr:`error`). The device is released either way.
        """
        session = self._session
        if session is None or not session.active:
            return None

        session.active = False
        try:
            await self._stop_metering()
            self._collect(session)
        finally:
            self._release_device()
            self._session = None
            self.level = 0

        if self._drain_error is not None:
            self.error = self._drain_error
            logger.error(self.error.message)
            return None

        frames = b''.join(session.chunks)
        if not frames:
            self.error = EncodeFailure('Recording produced no audio')
            logger.warning(self.error.message)
            return None

        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(
                None, encode_clip, frames, session.sample_rate, session.channels
            )
        except (RuntimeError, ValueError) as e:
            self.error = EncodeFailure(f'Failed to finalize recording: {e}', cause=e)
            logger.error(self.error.message)
            return None

        clip = EncodedClip(
            data=data,
            duration_seconds=session.elapsed_seconds,
            sample_rate=session.sample_rate,
            channels=session.channels,
        )
        logger.info(
            f'Recording stopped: {clip.duration_seconds:.2f}s, '
            f'{len(session.chunks)} chunks, {len(clip.data)} bytes'
        )
        return clip

    def cleanup(self) -> None:
        """Release metering and device resources and reset observable state.

        Safe to call at any time, including repeatedly.
        """
        if self._meter_task is not None:
            self._meter_task.cancel()
            self._meter_task = None
        if self._session is not None:
            self._session.active = False
            self._session = None
        self._release_device()
        self._drain_error = None
        self.level = 0
        self.duration = 0.0
        self.error = None

    def interim_samples(self) -> np.ndarray:
        """Return the int16 samples captured so far for a live preview."""
        session = self._session
        if session is None:
            return np.zeros(0, dtype=np.int16)
        self._collect(session)
        return np.frombuffer(b''.join(session.chunks), dtype=np.int16)

    async def _meter_loop(self, session: RecordingSession) -> None:
        interval = self._timeslice_ms / 1000.0
        while session.active:
            await self._sleep(interval)
            if not session.active:
                break
            self._collect(session)
            session.level_sample = 0 if self._drain_error else self._sample_level()
            self.level = session.level_sample

    async def _stop_metering(self) -> None:
        task, self._meter_task = self._meter_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f'Level metering stopped unexpectedly: {e}')

    def _collect(self, session: RecordingSession) -> None:
        """Drain device chunks and refresh the elapsed time."""
        if self._device_held:
            try:
                session.chunks.extend(self._device.read_chunks())
            except Exception as e:
                if self._drain_error is None:
                    logger.warning(f'Audio input failed, metering continues at silence: {e}')
                self._drain_error = DeviceUnavailable(
                    f'Microphone stopped delivering audio: {e}', cause=e
                )
        session.elapsed_seconds = max(0.0, self._clock() - session.start_time)
        self.duration = session.elapsed_seconds

    def _sample_level(self) -> int:
        try:
            return max(0, min(255, int(self._device.read_level())))
        except Exception as e:
            logger.debug(f'Level metering failed, reporting silence: {e}')
            return 0

    def _release_device(self) -> None:
        if not self._device_held:
            return
        self._device_held = False
        self._device.release()
