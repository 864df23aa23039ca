"""Upload coordinator: capture → decode → effect → encode → transmit.

State machine::

    IDLE ──start──▶ RECORDING ──stop──▶ PREVIEWING ──upload──▶ PROCESSING
      ▲                                     ▲                      │
      │                                     └──────── failure ─────┤
      └─────────────── server 2xx ◀──────── UPLOADING ◀────────────┘

``IDLE`` is both initial and terminal.  A failure at any step sets
:attr:`UploadCoordinator.error`, notifies the user, and falls back to
``PREVIEWING`` when a clip is still held (``IDLE`` otherwise).  Nothing is
retried automatically.

Only one upload runs at a time per coordinator; the steps of an upload are
awaited strictly in order and nothing is transmitted until the WAV payload
is complete.
"""

import asyncio
import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

import numpy as np
from loguru import logger

from .api_client import PostClient
from .capture import CaptureController
from .effects import EffectEngine, EffectSelection
from .errors import DecodeFailure, EncodeFailure, PipelineError, TransmitFailure
from .log import PostLogger
from .models import DecodedBuffer, EncodedClip, EncodedPCMBlob
from .preview import WaveformPreview
from .wav import decode, encode

FEED_KEY = '/api/posts'
SESSION_ID_FORMAT = '%y%m%d%H%M%S'

CacheInvalidator = Callable[[FrozenSet[str]], None]
Notifier = Callable[[str, str], None]


class UploadState(str, Enum):
    IDLE = 'idle'
    RECORDING = 'recording'
    PREVIEWING = 'previewing'
    PROCESSING = 'processing'
    UPLOADING = 'uploading'


def affected_cache_keys(
    channel_id: Optional[int] = None,
    parent_id: Optional[int] = None,
) -> FrozenSet[str]:
    """Cached collections a new post changes.

    The global feed always changes; the channel feed and the parent's reply
    list change when the post targets them.
    """
    keys = {FEED_KEY}
    if channel_id is not None:
        keys.add(f'/api/channels/{channel_id}/posts')
    if parent_id is not None:
        keys.add(f'/api/posts/{parent_id}/replies')
    return frozenset(keys)


class UploadCoordinator:
    """Drives one recorder surface through record, preview and upload.

    Args:
        capture: Capture controller owning the microphone
        engine: Effect engine; defaults to the numpy renderer
        client: Post client for the posting API
        invalidate_cache: Port called with the affected cache keys after a
            successful post
        notify: Called with ``(title, message)`` for user-visible status
        on_reply_posted: Called with the parent id after a reply is posted,
            so the parent can close its reply affordance
        preview: Waveform preview owned by this recorder
        post_logger: Optional JSONL log of sessions and uploads
    """

    def __init__(
        self,
        capture: CaptureController,
        engine: Optional[EffectEngine] = None,
        client: Optional[PostClient] = None,
        invalidate_cache: Optional[CacheInvalidator] = None,
        notify: Optional[Notifier] = None,
        on_reply_posted: Optional[Callable[[int], None]] = None,
        preview: Optional[WaveformPreview] = None,
        post_logger: Optional[PostLogger] = None,
    ) -> None:
        self._capture = capture
        self._engine = engine or EffectEngine()
        self._client = client or PostClient()
        self._invalidate_cache = invalidate_cache
        self._notify = notify
        self._on_reply_posted = on_reply_posted
        self._preview = preview or WaveformPreview()
        self._post_logger = post_logger

        self._state = UploadState.IDLE
        self._clip: Optional[EncodedClip] = None
        self._uploading = False
        self._session_id: Optional[str] = None
        self._listeners: List[Callable[[UploadState], None]] = []

        self.effect = EffectSelection.NONE
        self.error: Optional[PipelineError] = None
        self.history: List[UploadState] = [UploadState.IDLE]
        self.last_post: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def clip(self) -> Optional[EncodedClip]:
        return self._clip

    @property
    def preview(self) -> WaveformPreview:
        return self._preview

    @property
    def is_uploading(self) -> bool:
        return self._uploading

    @property
    def capture(self) -> CaptureController:
        return self._capture

    def add_listener(self, listener: Callable[[UploadState], None]) -> None:
        """Register a callback invoked on every state transition."""
        self._listeners.append(listener)

    def select_effect(self, effect: Union[str, EffectSelection]) -> None:
        """Choose the effect applied on the next upload.

        Raises:
            ValueError: If *effect* is not a known selection
        """
        self.effect = EffectSelection(effect)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> bool:
        """IDLE → RECORDING.  Returns ``False`` if capture did not start."""
        if self._state is not UploadState.IDLE:
            logger.warning(f'Cannot start recording while {self._state.value}')
            return False

        self.error = None
        if not await self._capture.start_capture():
            self._fail(self._capture.error or PipelineError('Capture did not start'))
            return False

        self._session_id = datetime.datetime.now().strftime(SESSION_ID_FORMAT)
        if self._post_logger is not None:
            self._append_log(
                self._post_logger.write_session_start,
                session_id=self._session_id,
                sample_rate=self._capture.sample_rate,
                channels=self._capture.session.channels,
            )
        self._set_state(UploadState.RECORDING)
        return True

    def refresh_preview(self) -> None:
        """Update the live waveform from the samples captured so far."""
        if self._state is UploadState.RECORDING:
            self._preview.update(self._capture.interim_samples())

    async def stop_recording(self) -> Optional[EncodedClip]:
        """RECORDING → PREVIEWING with the finalized clip loaded."""
        if self._state is not UploadState.RECORDING:
            return None

        clip = await self._capture.stop_capture()
        if clip is None:
            self._fail(self._capture.error or PipelineError('Recording produced no audio'))
            return None

        if self._post_logger is not None and self._session_id is not None:
            self._append_log(
                self._post_logger.write_session_end,
                session_id=self._session_id,
                duration_sec=clip.duration_seconds,
                clip_bytes=len(clip.data),
            )
        self._enter_preview(clip)
        return clip

    def load_clip(self, clip: EncodedClip) -> bool:
        """Enter PREVIEWING with an existing clip (file or draft)."""
        if self._state not in (UploadState.IDLE, UploadState.PREVIEWING):
            logger.warning(f'Cannot load a clip while {self._state.value}')
            return False
        self.error = None
        self._session_id = None
        self._enter_preview(clip)
        return True

    def discard(self) -> None:
        """Drop the previewed clip and return to IDLE."""
        if self._state is UploadState.PREVIEWING and not self._uploading:
            self._clip = None
            self._preview.update(np.zeros(0))
            self._set_state(UploadState.IDLE)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        channel_id: Optional[int] = None,
        parent_id: Optional[int] = None,
    ) -> bool:
        """Process the previewed clip and post it.

        Args:
            channel_id: Target channel, ``None`` for the global feed
            parent_id: Post being replied to, if any

        Returns:
            ``True`` when the server accepted the post.  A request made
            while another upload is in flight is ignored and returns
            ``False``.
        """
        if self._uploading:
            logger.warning('Upload already in progress; request ignored')
            return False
        if self._state is not UploadState.PREVIEWING or self._clip is None:
            logger.warning(f'Nothing to upload while {self._state.value}')
            return False

        self._uploading = True
        self.error = None
        clip = self._clip
        blob: Optional[EncodedPCMBlob] = None
        try:
            self._set_state(UploadState.PROCESSING)
            buffer = await self._decode(clip)
            rendered = await self._engine.apply_effect(buffer, self.effect)
            blob = await self._encode(rendered)

            self._set_state(UploadState.UPLOADING)
            post = await self._transmit(blob, clip, channel_id, parent_id)
        except PipelineError as e:
            self._log_upload(clip, blob, channel_id, parent_id, error=e)
            self._fail(e)
            return False
        finally:
            self._uploading = False

        self.last_post = post
        self._clip = None
        self._preview.update(np.zeros(0))
        self._set_state(UploadState.IDLE)
        self._log_upload(clip, blob, channel_id, parent_id, post=post)

        self._run_port(self._invalidate_cache, affected_cache_keys(channel_id, parent_id))
        if parent_id is not None:
            self._run_port(self._on_reply_posted, parent_id)
        if self._notify is not None:
            self._notify('Success', 'Your voice note has been posted!')
        return True

    def teardown(self) -> None:
        """Release the microphone and the preview when the recorder closes."""
        self._capture.cleanup()
        self._preview.destroy()
        self._clip = None
        if self._state is not UploadState.IDLE and not self._uploading:
            self._set_state(UploadState.IDLE)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _decode(self, clip: EncodedClip) -> DecodedBuffer:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, decode, clip)
        except DecodeFailure:
            raise
        except Exception as e:
            raise DecodeFailure(f'Unable to decode clip: {e}', cause=e) from e

    async def _encode(self, buffer: DecodedBuffer) -> EncodedPCMBlob:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, encode, buffer)
        except EncodeFailure:
            raise
        except Exception as e:
            raise EncodeFailure(f'Unable to encode audio: {e}', cause=e) from e

    async def _transmit(
        self,
        blob: EncodedPCMBlob,
        clip: EncodedClip,
        channel_id: Optional[int],
        parent_id: Optional[int],
    ) -> Dict[str, Any]:
        try:
            return await self._client.create_post(
                blob, clip.duration_seconds, channel_id=channel_id, parent_id=parent_id
            )
        except TransmitFailure:
            raise
        except Exception as e:
            raise TransmitFailure('Failed to upload voice note', cause=e) from e

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enter_preview(self, clip: EncodedClip) -> None:
        self._clip = clip
        try:
            self._preview.load(clip)
        except DecodeFailure as e:
            logger.warning(f'Waveform preview unavailable: {e.message}')
        self._set_state(UploadState.PREVIEWING)

    def _fail(self, error: PipelineError) -> None:
        self.error = error
        logger.error(f'{error.kind}: {error.message}')
        fallback = UploadState.PREVIEWING if self._clip is not None else UploadState.IDLE
        if self._state is not fallback:
            self._set_state(fallback)
        if self._notify is not None:
            self._notify(error.kind, error.message)

    def _set_state(self, state: UploadState) -> None:
        logger.debug(f'Recorder state {self._state.value} -> {state.value}')
        self._state = state
        self.history.append(state)
        for listener in list(self._listeners):
            listener(state)

    def _run_port(self, port: Optional[Callable[[Any], None]], value: Any) -> None:
        if port is None:
            return
        try:
            port(value)
        except Exception:
            logger.exception(f'Post-upload callback {port!r} failed')

    def _append_log(self, write: Callable[..., None], **fields: Any) -> None:
        try:
            write(**fields)
        except OSError:
            logger.exception(f'Could not append to post log {self._post_logger.path}')

    def _log_upload(
        self,
        clip: EncodedClip,
        blob: Optional[EncodedPCMBlob],
        channel_id: Optional[int],
        parent_id: Optional[int],
        post: Optional[Dict[str, Any]] = None,
        error: Optional[PipelineError] = None,
    ) -> None:
        if self._post_logger is None:
            return
        post_id = post.get('id') if post else None
        self._append_log(
            self._post_logger.write_upload,
            session_id=self._session_id,
            effect=self.effect.value,
            duration_sec=int(clip.duration_seconds),
            wav_bytes=len(blob) if blob is not None else 0,
            channel_id=channel_id,
            parent_id=parent_id,
            post_id=post_id,
            error_kind=error.kind if error else None,
            error=error.message if error else None,
        )


__all__ = [
    'UploadCoordinator',
    'UploadState',
    'affected_cache_keys',
]
