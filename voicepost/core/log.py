"""Local JSONL post log for voicepost.

One JSON object per line, appended next to the drafts.  Every line carries
a ``type`` and an ``at`` timestamp; the remaining fields depend on the type:

``recording``
    ``session_id``, ``sample_rate``, ``channels`` when capture begins.
``clip``
    ``session_id``, ``duration_sec``, ``clip_bytes`` once the capture is
    finalized.
``upload``
    One per upload attempt: ``session_id`` (``null`` for files and drafts),
    ``effect``, ``channel_id``, ``parent_id``, ``duration_sec``,
    ``wav_bytes``, ``ok``, and either ``post_id`` or ``error_kind`` and
    ``error``.

For example::

    {"type": "recording", "at": "2026-10-17T14:30:22", "session_id": "261017143022", "sample_rate": 48000, "channels": 1}
    {"type": "clip", "at": "2026-10-17T14:30:29", "session_id": "261017143022", "duration_sec": 7.1, "clip_bytes": 84211}
    {"type": "upload", "at": "2026-10-17T14:30:33", "session_id": "261017143022", "effect": "pitch-up", "channel_id": 4, "parent_id": null, "duration_sec": 7, "wav_bytes": 681644, "ok": true, "post_id": 311, "error_kind": null, "error": null}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union


class PostLogger:
    """Append-only JSONL record of recordings and upload attempts.

    Writes from several threads are serialized by one lock.
    """

    def __init__(self, log_path: Union[str, Path]) -> None:
        self._path = Path(log_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write_session_start(self, session_id: str, sample_rate: int, channels: int) -> None:
        self.write('recording', session_id=session_id, sample_rate=sample_rate, channels=channels)

    def write_session_end(self, session_id: str, duration_sec: float, clip_bytes: int) -> None:
        self.write(
            'clip',
            session_id=session_id,
            duration_sec=round(duration_sec, 3),
            clip_bytes=clip_bytes,
        )

    def write_upload(
        self,
        session_id: Optional[str],
        effect: str,
        duration_sec: int,
        wav_bytes: int = 0,
        channel_id: Optional[int] = None,
        parent_id: Optional[int] = None,
        post_id: Optional[int] = None,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record one upload attempt; it counts as ``ok`` without an error kind."""
        self.write(
            'upload',
            session_id=session_id,
            effect=effect,
            channel_id=channel_id,
            parent_id=parent_id,
            duration_sec=duration_sec,
            wav_bytes=wav_bytes,
            ok=error_kind is None,
            post_id=post_id,
            error_kind=error_kind,
            error=error,
        )

    def write(self, record_type: str, **fields: Any) -> None:
        record: Dict[str, Any] = {
            'type': record_type,
            'at': datetime.now().replace(microsecond=0).isoformat(),
        }
        record.update(fields)
        line = json.dumps(record, ensure_ascii=False)
        with self._write_lock, self._path.open('a', encoding='utf-8') as out:
            out.write(line + '\n')

    def records(self) -> Iterator[Dict[str, Any]]:
        """Yield the logged records, oldest first."""
        if not self._path.exists():
            return
        with self._path.open(encoding='utf-8') as source:
            for line in source:
                if line.strip():
                    yield json.loads(line)
