"""Draft storage for voicepost.

Clips whose upload failed are kept as drafts so they can be posted later.
Each draft is the captured FLAC file plus a small YAML sidecar holding the
duration and the effect that was selected.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from .models import EncodedClip

DRAFT_EXTENSION = '.flac'
META_EXTENSION = '.yml'


class DraftStore:
    """Manages saved drafts on disk."""

    def __init__(self, storage_dir: str = "drafts/") -> None:
        """Initialize draft storage.

        Args:
            storage_dir: Directory holding drafts
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def save(self, name: str, clip: EncodedClip, effect: str = 'none') -> Path:
        """Write *clip* under *name*, replacing an existing draft.

        Returns:
            Path of the audio file
        """
        audio_path = self.storage_dir / f"{name}{DRAFT_EXTENSION}"
        audio_path.write_bytes(clip.data)
        meta = {
            'duration_seconds': clip.duration_seconds,
            'sample_rate': clip.sample_rate,
            'channels': clip.channels,
            'effect': effect,
        }
        (self.storage_dir / f"{name}{META_EXTENSION}").write_text(
            yaml.safe_dump(meta), encoding='utf-8'
        )
        logger.info(f"Saved draft: {audio_path}")
        return audio_path

    def load(self, name: str) -> Optional[EncodedClip]:
        """Load a draft clip, or ``None`` if it does not exist."""
        audio_path = self.storage_dir / f"{name}{DRAFT_EXTENSION}"
        if not audio_path.exists():
            return None
        meta = self._read_meta(name)
        return EncodedClip(
            data=audio_path.read_bytes(),
            duration_seconds=float(meta.get('duration_seconds', 0.0)),
            sample_rate=int(meta.get('sample_rate', 48000)),
            channels=int(meta.get('channels', 1)),
        )

    def effect_for(self, name: str) -> str:
        """Effect recorded with the draft, ``'none'`` if unknown."""
        return str(self._read_meta(name).get('effect', 'none'))

    def list_drafts(self) -> List[Dict[str, Any]]:
        """List all stored drafts.

        Returns:
            List of draft metadata dictionaries
        """
        drafts = []
        for audio_file in sorted(self.storage_dir.glob(f"*{DRAFT_EXTENSION}")):
            meta = self._read_meta(audio_file.stem)
            drafts.append({
                "name": audio_file.stem,
                "path": str(audio_file),
                "size": audio_file.stat().st_size,
                "created": audio_file.stat().st_ctime,
                "duration_seconds": float(meta.get('duration_seconds', 0.0)),
                "effect": meta.get('effect', 'none'),
            })
        return drafts

    def delete(self, name: str) -> bool:
        """Delete a draft and its metadata.

        Returns:
            True if the draft existed
        """
        audio_path = self.storage_dir / f"{name}{DRAFT_EXTENSION}"
        if not audio_path.exists():
            return False
        audio_path.unlink()
        meta_path = self.storage_dir / f"{name}{META_EXTENSION}"
        if meta_path.exists():
            meta_path.unlink()
        logger.info(f"Deleted draft: {name}")
        return True

    def _read_meta(self, name: str) -> Dict[str, Any]:
        meta_path = self.storage_dir / f"{name}{META_EXTENSION}"
        if not meta_path.exists():
            return {}
        content = yaml.safe_load(meta_path.read_text(encoding='utf-8'))
        return content if isinstance(content, dict) else {}
