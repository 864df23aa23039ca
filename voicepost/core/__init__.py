"""Core business logic for voicepost."""

from .api_client import ApiConfig, PostClient
from .capture import CaptureController
from .config import AppConfig
from .coordinator import UploadCoordinator, UploadState, affected_cache_keys
from .effects import EffectEngine, EffectSelection
from .errors import (
    DecodeFailure,
    DeviceUnavailable,
    EffectRenderFailure,
    EncodeFailure,
    PipelineError,
    TransmitFailure,
)
from .log import PostLogger
from .models import CaptureConstraints, DecodedBuffer, EncodedClip, EncodedPCMBlob
from .preview import WaveformPreview
from .processing import calculate_level, detect_driver_type
from .recording import PyAudioDevice, RecordingEngine
from .storage import DraftStore
from .wav import decode, encode

__all__ = [
    "ApiConfig",
    "AppConfig",
    "CaptureConstraints",
    "CaptureController",
    "DecodedBuffer",
    "DecodeFailure",
    "DeviceUnavailable",
    "DraftStore",
    "EffectEngine",
    "EffectRenderFailure",
    "EffectSelection",
    "EncodedClip",
    "EncodedPCMBlob",
    "EncodeFailure",
    "PipelineError",
    "PostClient",
    "PostLogger",
    "PyAudioDevice",
    "RecordingEngine",
    "TransmitFailure",
    "UploadCoordinator",
    "UploadState",
    "WaveformPreview",
    "affected_cache_keys",
    "calculate_level",
    "decode",
    "detect_driver_type",
    "encode",
]
