import asyncio
import json

import httpx
import pytest

from arth_chat.api.client import ChatApiClient
from arth_chat.domain.exceptions import ApiError, RateLimitError, UploadError, ValidationError
from arth_chat.domain.models import MediaDescriptor, MediaItem
from arth_chat.streaming.reply_stream import ReplyStream, StreamState


class SettingsStub:
    api_base_url = "https://api.test/api/user"
    access_token = "token-1234567890"
    customer_id = "1234"
    http_timeout = 1.0
    stream_chunk_size = None


def _client(handler, cfg=SettingsStub()):
    return ChatApiClient(cfg, transport=httpx.MockTransport(handler))


def _upload(client):
    async def go():
        try:
            return await client.upload_media("s1", "1234", MediaDescriptor(type="image", data="p.png", description="pie"))
        finally:
            await client.aclose()

    return asyncio.run(go())


def test_upload_media_returns_url():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "SUCCESS", "body": {"url": "https://s3/p.png"}})

    assert _upload(_client(handler)) == "https://s3/p.png"
    assert captured["url"] == "https://api.test/api/user/media/chat/upload"
    assert captured["auth"] == "Bearer token-1234567890"
    assert captured["body"] == {
        "sessionId": "s1",
        "customerId": "1234",
        "media": {"type": "image", "data": "p.png", "description": "pie"},
    }


def test_upload_media_failure_status():
    def handler(request):
        return httpx.Response(200, json={"status": "FAILURE", "message": "too large"})

    with pytest.raises(UploadError) as exc:
        _upload(_client(handler))
    assert exc.value.message == "too large"


def test_upload_media_rate_limit_and_api_error():
    with pytest.raises(RateLimitError):
        _upload(_client(lambda request: httpx.Response(429)))
    with pytest.raises(ApiError) as exc:
        _upload(_client(lambda request: httpx.Response(500, text="boom")))
    assert exc.value.http_status == 500


def test_missing_token_is_validation_error():
    class NoToken(SettingsStub):
        access_token = None

    with pytest.raises(ValidationError):
        _upload(_client(lambda request: httpx.Response(200), NoToken()))


def _run_chat(handler, cfg=SettingsStub()):
    async def go():
        client = _client(handler, cfg)
        events = []
        source = client.open_chat_stream("s1", "1234", "Analyze", [MediaItem(type="IMAGE", url="https://s3/p.png", description="pie")])
        stream = ReplyStream(events.append, emit_partial=False)
        state = await stream.run(source)
        await client.aclose()
        return events, state, source

    return asyncio.run(go())


def test_chat_stream_small_chunks():
    captured = {}
    body = '{"status":"SUCCESS","body":{"message":"组合偏重科技股"}}'.encode("utf-8")

    class SmallChunks(SettingsStub):
        stream_chunk_size = 5

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=body)

    events, state, source = _run_chat(handler, SmallChunks())
    assert [e.kind for e in events] == ["structured", "terminal"]
    assert events[0].payload.message == "组合偏重科技股"
    assert state is StreamState.TERMINAL
    assert source.released
    assert captured["body"]["medias"] == [{"type": "IMAGE", "url": "https://s3/p.png", "description": "pie"}]
    assert captured["body"]["message"] == "Analyze"


def test_chat_stream_http_error_is_transport_failure():
    events, state, _ = _run_chat(lambda request: httpx.Response(500, text="server down"))
    assert [e.kind for e in events] == ["error", "terminal"]
    assert events[0].error_kind == "transport_failure"
    assert events[0].detail == "server down"
    assert state is StreamState.FAILED


def test_chat_stream_connect_error_is_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    events, state, _ = _run_chat(handler)
    assert events[0].error_kind == "transport_failure"
    assert "connection refused" in events[0].detail
    assert events[-1].kind == "terminal"
