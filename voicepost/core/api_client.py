"""HTTP client for the post-creation endpoint."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import API_BASE_URL, API_TIMEOUT, COOKIE_NAME, POSTS_PATH, AppConfig
from .errors import TransmitFailure
from .models import EncodedPCMBlob

AUDIO_FIELD = "audio"
AUDIO_FILENAME = "audio.wav"


@dataclass
class ApiConfig:
    """Connection settings for the posting API."""

    base_url: str = API_BASE_URL
    timeout: float = API_TIMEOUT
    session_cookie: Optional[str] = None
    cookie_name: str = COOKIE_NAME

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "ApiConfig":
        """Build API settings from the ``api`` section of the app config."""
        return cls(
            base_url=str(app_config.get("api.base_url", API_BASE_URL)).rstrip("/"),
            timeout=float(app_config.get("api.timeout", API_TIMEOUT)),
            session_cookie=app_config.get("api.session_cookie"),
            cookie_name=str(app_config.get("api.cookie_name", COOKIE_NAME)),
        )


def build_form_fields(
    duration_seconds: float,
    channel_id: Optional[int] = None,
    parent_id: Optional[int] = None,
) -> Dict[str, str]:
    """Non-file multipart fields; duration is sent as whole seconds."""
    fields = {"duration": str(int(duration_seconds))}
    if channel_id is not None:
        fields["channelId"] = str(channel_id)
    if parent_id is not None:
        fields["parentId"] = str(parent_id)
    return fields


def _error_message(response: httpx.Response) -> str:
    """Pull the server's message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                return str(body[key])
    return f"Upload failed ({response.status_code})"


class PostClient:
    """Submits rendered voice notes to the posting API.

    Args:
        config: Connection settings
        transport: Optional httpx transport, used to stub the server in tests
    """

    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or ApiConfig()
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def _client(self) -> httpx.AsyncClient:
        cookies = {}
        if self._config.session_cookie:
            cookies[self._config.cookie_name] = self._config.session_cookie
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            cookies=cookies,
            transport=self._transport,
        )

    async def create_post(
        self,
        blob: EncodedPCMBlob,
        duration_seconds: float,
        channel_id: Optional[int] = None,
        parent_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Upload *blob* as a new post.

        Args:
            blob: Rendered WAV bytes
            duration_seconds: Clip duration; truncated to whole seconds
            channel_id: Target channel, ``None`` for the global feed
            parent_id: Post being replied to, if any

        Returns:
            The created post as returned by the server (empty dict when the
            body is not JSON)

        Raises:
            TransmitFailure: On a non-2xx response or network error
        """
        files = {AUDIO_FIELD: (AUDIO_FILENAME, blob.data, blob.content_type)}
        data = build_form_fields(duration_seconds, channel_id, parent_id)
        try:
            async with self._client() as client:
                response = await client.post(POSTS_PATH, data=data, files=files)
        except httpx.RequestError as e:
            logger.warning(f"Post request failed: {e}")
            raise TransmitFailure("Network error", status=0, cause=e) from e

        if not response.is_success:
            message = _error_message(response)
            logger.warning(f"Post rejected with {response.status_code}: {message}")
            raise TransmitFailure(message, status=response.status_code)

        logger.info(f"Posted {len(blob)} bytes ({data['duration']}s)")
        try:
            created = response.json()
        except ValueError:
            return {}
        return created if isinstance(created, dict) else {}

    async def check_health(self) -> bool:
        """Return ``True`` when the API answers the session endpoint.

        Any transport error or non-2xx answer yields ``False``.
        """
        try:
            async with self._client() as client:
                response = await client.get("/api/user")
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
