"""Upload coordinator tests, driven end to end against a stubbed server."""

import asyncio

import httpx
import numpy as np
import pytest

from conftest import FakeDevice, yield_once
from voicepost.core.api_client import ApiConfig, PostClient
from voicepost.core.capture import CaptureController
from voicepost.core.coordinator import UploadCoordinator, UploadState, affected_cache_keys
from voicepost.core.effects import EffectEngine
from voicepost.core.errors import (
    DecodeFailure,
    DeviceUnavailable,
    EffectRenderFailure,
    EncodeFailure,
    TransmitFailure,
)
from voicepost.core.log import PostLogger
from voicepost.core.models import EncodedClip
from voicepost.core.wav import read_header

S = UploadState


class Server:
    """Records requests and answers with a fixed response."""

    def __init__(self, status=201, body=None):
        self.status = status
        self.body = {"id": 311} if body is None else body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


class Recorder:
    """Collects calls made to the coordinator's ports."""

    def __init__(self):
        self.invalidated = []
        self.notifications = []
        self.replies = []

    def invalidate(self, keys):
        self.invalidated.append(keys)

    def notify(self, title, message):
        self.notifications.append((title, message))

    def reply_posted(self, parent_id):
        self.replies.append(parent_id)


class ExplodingRenderer:
    def render(self, buffer, kind):
        raise RuntimeError("boom")


def make_coordinator(device, clock, server, ports, engine=None, post_logger=None):
    capture = CaptureController(device, clock=clock, sleep=yield_once)
    client = PostClient(ApiConfig(base_url="http://voices.test"), transport=httpx.MockTransport(server))
    return UploadCoordinator(
        capture,
        engine=engine,
        client=client,
        invalidate_cache=ports.invalidate,
        notify=ports.notify,
        on_reply_posted=ports.reply_posted,
        post_logger=post_logger,
    )


@pytest.fixture
def server():
    return Server()


@pytest.fixture
def ports():
    return Recorder()


@pytest.mark.asyncio
async def test_record_pitch_up_and_post(fake_device, fake_clock, server, ports):
    """A two-second pitch-up recording reaches the server as 16-bit mono WAV."""
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)

    assert await coordinator.start_recording() is True
    fake_clock.advance(2.0)
    clip = await coordinator.stop_recording()
    assert clip.duration_seconds == pytest.approx(2.0)
    assert coordinator.state is S.PREVIEWING
    assert coordinator.preview.peaks.max() == pytest.approx(1.0)

    coordinator.select_effect("pitch-up")
    assert await coordinator.upload() is True

    assert coordinator.history == [S.IDLE, S.RECORDING, S.PREVIEWING, S.PROCESSING, S.UPLOADING, S.IDLE]
    assert coordinator.clip is None
    assert coordinator.last_post == {"id": 311}
    assert fake_device.released == 1

    (request,) = server.requests
    assert request.method == "POST"
    assert request.url.path == "/api/posts"
    body = request.content
    assert b'name="duration"\r\n\r\n2\r\n' in body
    assert b'name="audio"; filename="audio.wav"' in body
    assert b"Content-Type: audio/wav" in body
    assert b"channelId" not in body
    assert b"parentId" not in body

    wav = body[body.index(b"RIFF"):]
    header = read_header(wav)
    assert header["channels"] == 1
    assert header["sample_rate"] == 48000
    assert header["bits_per_sample"] == 16
    assert header["data_length"] == 48000 * 2

    assert ports.invalidated == [frozenset({"/api/posts"})]
    assert ports.notifications == [("Success", "Your voice note has been posted!")]
    assert ports.replies == []


@pytest.mark.asyncio
async def test_reply_in_channel_invalidates_all_affected_lists(flac_clip, fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    coordinator.load_clip(flac_clip)

    assert await coordinator.upload(channel_id=4, parent_id=17) is True

    body = server.requests[0].content
    assert b'name="channelId"\r\n\r\n4\r\n' in body
    assert b'name="parentId"\r\n\r\n17\r\n' in body
    assert ports.invalidated == [
        frozenset({"/api/posts", "/api/channels/4/posts", "/api/posts/17/replies"})
    ]
    assert ports.replies == [17]


def test_affected_cache_keys():
    assert affected_cache_keys() == frozenset({"/api/posts"})
    assert affected_cache_keys(channel_id=2) == frozenset({"/api/posts", "/api/channels/2/posts"})
    assert affected_cache_keys(parent_id=9) == frozenset({"/api/posts", "/api/posts/9/replies"})


@pytest.mark.asyncio
async def test_denied_microphone_stays_idle(denied_device, fake_clock, server, ports):
    coordinator = make_coordinator(denied_device, fake_clock, server, ports)

    assert await coordinator.start_recording() is False

    assert coordinator.state is S.IDLE
    assert coordinator.history == [S.IDLE]
    assert isinstance(coordinator.error, DeviceUnavailable)
    assert ports.notifications == [("DeviceUnavailable", "Permission denied")]


@pytest.mark.asyncio
async def test_transmit_failure_keeps_clip_for_retry(flac_clip, fake_device, fake_clock, ports):
    server = Server(status=500, body={"message": "Disk full"})
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    coordinator.load_clip(flac_clip)

    assert await coordinator.upload() is False

    assert coordinator.state is S.PREVIEWING
    assert coordinator.history[-3:] == [S.PROCESSING, S.UPLOADING, S.PREVIEWING]
    assert coordinator.clip is flac_clip
    assert isinstance(coordinator.error, TransmitFailure)
    assert coordinator.error.status == 500
    assert ports.notifications == [("TransmitFailure", "Disk full")]
    assert ports.invalidated == []

    # a retry goes through once the server recovers
    server.status, server.body = 201, {"id": 5}
    assert await coordinator.upload() is True
    assert coordinator.state is S.IDLE
    assert len(server.requests) == 2


@pytest.mark.asyncio
async def test_effect_failure_sends_nothing(flac_clip, fake_device, fake_clock, server, ports):
    engine = EffectEngine(renderer=ExplodingRenderer())
    coordinator = make_coordinator(fake_device, fake_clock, server, ports, engine=engine)
    coordinator.load_clip(flac_clip)
    coordinator.select_effect("reverb")

    assert await coordinator.upload() is False

    assert server.requests == []
    assert coordinator.state is S.PREVIEWING
    assert isinstance(coordinator.error, EffectRenderFailure)
    assert ports.notifications[0][0] == "EffectRenderFailure"


@pytest.mark.asyncio
async def test_concurrent_upload_request_is_ignored(flac_clip, fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    coordinator.load_clip(flac_clip)

    first = asyncio.ensure_future(coordinator.upload())
    await asyncio.sleep(0)
    assert coordinator.is_uploading

    assert await coordinator.upload() is False
    assert await first is True
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_upload_without_clip_does_nothing(fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    assert await coordinator.upload() is False
    assert server.requests == []
    assert coordinator.history == [S.IDLE]


def test_select_effect_rejects_unknown_names(fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    with pytest.raises(ValueError):
        coordinator.select_effect("chorus")


def test_discard_returns_to_idle(flac_clip, fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    coordinator.load_clip(flac_clip)
    coordinator.discard()
    assert coordinator.state is S.IDLE
    assert coordinator.clip is None


@pytest.mark.asyncio
async def test_teardown_releases_microphone_and_preview(fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    await coordinator.start_recording()
    seen = []
    coordinator.add_listener(seen.append)

    coordinator.teardown()

    assert fake_device.released == 1
    assert coordinator.preview.destroyed
    assert coordinator.state is S.IDLE
    assert seen == [S.IDLE]


@pytest.mark.asyncio
async def test_sessions_and_uploads_are_logged(tmp_path, fake_device, fake_clock, ports):
    server = Server(status=400, body={"error": "Recording too long"})
    post_logger = PostLogger(tmp_path / "posts.jsonl")
    coordinator = make_coordinator(fake_device, fake_clock, server, ports, post_logger=post_logger)

    await coordinator.start_recording()
    fake_clock.advance(1.5)
    await coordinator.stop_recording()
    await coordinator.upload(channel_id=3)

    records = list(post_logger.records())
    assert [r["type"] for r in records] == ["recording", "clip", "upload"]
    assert records[0]["sample_rate"] == 48000
    assert records[1]["duration_sec"] == pytest.approx(1.5)
    upload = records[2]
    assert upload["ok"] is False
    assert upload["error_kind"] == "TransmitFailure"
    assert upload["error"] == "Recording too long"
    assert upload["channel_id"] == 3
    assert upload["duration_sec"] == 1
    assert upload["session_id"] == records[0]["session_id"]


@pytest.mark.asyncio
async def test_undecodable_clip_is_never_sent(fake_device, fake_clock, server, ports):
    coordinator = make_coordinator(fake_device, fake_clock, server, ports)
    coordinator.load_clip(EncodedClip(data=b"not audio", duration_seconds=1.0))
    assert coordinator.state is S.PREVIEWING

    assert await coordinator.upload() is False

    assert coordinator.history[-2:] == [S.PROCESSING, S.PREVIEWING]
    assert isinstance(coordinator.error, DecodeFailure)
    assert ports.notifications[0][0] == "DecodeFailure"
    assert server.requests == []
    assert ports.invalidated == []


@pytest.mark.asyncio
async def test_silent_recording_returns_to_idle(fake_clock, server, ports):
    device = FakeDevice(samples=np.zeros(0))
    coordinator = make_coordinator(device, fake_clock, server, ports)

    await coordinator.start_recording()
    assert await coordinator.stop_recording() is None

    assert coordinator.state is S.IDLE
    assert coordinator.history == [S.IDLE, S.RECORDING, S.IDLE]
    assert isinstance(coordinator.error, EncodeFailure)
    assert ports.notifications == [("EncodeFailure", "Recording produced no audio")]
    assert device.released == 1


@pytest.mark.asyncio
async def test_microphone_failure_mid_recording_releases_device(fake_clock, server, ports):
    class OverflowingDevice(FakeDevice):
        def read_chunks(self):
            raise OSError("input overflowed")

    device = OverflowingDevice()
    coordinator = make_coordinator(device, fake_clock, server, ports)

    await coordinator.start_recording()
    for _ in range(3):
        await asyncio.sleep(0)
    assert await coordinator.stop_recording() is None

    assert coordinator.state is S.IDLE
    assert isinstance(coordinator.error, DeviceUnavailable)
    assert device.released == 1
    assert ports.notifications[0][0] == "DeviceUnavailable"


@pytest.mark.asyncio
async def test_unwritable_post_log_does_not_block_success(tmp_path, flac_clip, fake_device, fake_clock, server, ports):
    class ReadOnlyLogger(PostLogger):
        def write(self, record_type, **fields):
            raise OSError("Read-only file system")

    post_logger = ReadOnlyLogger(tmp_path / "posts.jsonl")
    coordinator = make_coordinator(fake_device, fake_clock, server, ports, post_logger=post_logger)
    coordinator.load_clip(flac_clip)

    assert await coordinator.upload() is True

    assert coordinator.state is S.IDLE
    assert coordinator.clip is None
    assert ports.invalidated == [frozenset({"/api/posts"})]
    assert ports.notifications == [("Success", "Your voice note has been posted!")]
