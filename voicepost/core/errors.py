"""Error taxonomy for the capture and upload pipeline.

Every failure the pipeline can report is a :class:`PipelineError`.  The
``kind`` attribute is a short, stable label used in notifications and in the
post log, e.g. ``"DeviceUnavailable"``.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    kind = "PipelineError"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class DeviceUnavailable(PipelineError):
    """Microphone permission denied or no input device present."""

    kind = "DeviceUnavailable"


class DecodeFailure(PipelineError):
    """The encoded clip could not be decoded into a sample buffer."""

    kind = "DecodeFailure"


class EffectRenderFailure(PipelineError):
    """Offline effect rendering raised or did not finish in time."""

    kind = "EffectRenderFailure"


class EncodeFailure(PipelineError):
    """The sample buffer could not be serialized to PCM."""

    kind = "EncodeFailure"


class TransmitFailure(PipelineError):
    """The post endpoint answered with a non-2xx status or was unreachable.

    Args:
        message: Server-provided message when available, generic otherwise.
        status: HTTP status code, ``0`` for network errors.
    """

    kind = "TransmitFailure"

    def __init__(
        self,
        message: str,
        status: int = 0,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status = status


__all__ = [
    "PipelineError",
    "DeviceUnavailable",
    "DecodeFailure",
    "EffectRenderFailure",
    "EncodeFailure",
    "TransmitFailure",
]
