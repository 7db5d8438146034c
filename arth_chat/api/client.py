"""聊天后端 HTTP 客户端。

本模块负责：

1. 构造上传与聊天接口的请求（Bearer 认证、JSON 请求体）。
2. 调用 HTTP 接口并把网络/API 异常统一包装为 BusinessError 家族。
3. 把聊天接口的流式响应体包装成 ByteSource，交给 ReplyStream 解帧。

接口：
- 上传: POST {base}/media/chat/upload -> {"status", "body": {"url"}}
- 聊天: POST {base}/chat -> 分块到达的 JSON 帧
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from arth_chat.config.settings import settings as default_settings
from arth_chat.domain.exceptions import (
    ApiError,
    NetworkError,
    RateLimitError,
    UploadError,
    ValidationError,
)
from arth_chat.domain.models import SUCCESS_STATUS, MediaDescriptor, MediaItem
from arth_chat.streaming.sources import ReadResult


def _raise_for_status(resp: httpx.Response, body_text: str) -> None:
    if resp.status_code == 429:
        # 限流错误交给上层做重试/退避
        raise RateLimitError(code="RATE_LIMIT", message="Chat API rate limit", http_status=429)
    if resp.status_code >= 400:
        raise ApiError(code="API_ERROR", message=body_text or f"API error: {resp.status_code}", http_status=resp.status_code)


class HttpxByteSource:
    """基于 httpx 流式响应的字节源。

    请求在第一次 read() 时才真正发出，这样连接失败、非 2xx 状态码
    都会在 ReplyStream 内部表现为 transport_failure，而不是从 send() 抛出。
    """

    def __init__(self, client: httpx.AsyncClient, request: httpx.Request, chunk_size: Optional[int] = None):
        self._client = client
        self._request = request
        self._chunk_size = chunk_size
        self._response: Optional[httpx.Response] = None
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self.released = False

    async def read(self) -> ReadResult:
        if self.released:
            return ReadResult(ended=True)
        try:
            if self._chunks is None:
                await self._open()
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            return ReadResult(ended=True)
        except httpx.HTTPError as e:
            # 连接失败、读取超时、协议错误等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or e.__class__.__name__)
        return ReadResult(chunk=chunk)

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self._response is not None:
            await self._response.aclose()

    async def _open(self) -> None:
        self._response = await self._client.send(self._request, stream=True)
        if self._response.status_code >= 400:
            body = await self._response.aread()
            _raise_for_status(self._response, body.decode("utf-8", errors="replace"))
        self._chunks = self._response.aiter_bytes(self._chunk_size)


class ChatApiClient:
    """聊天后端客户端。

    - upload_media: 上传一张图片，返回可在聊天请求中引用的 URL。
    - open_chat_stream: 构造聊天请求，返回惰性发送的 HttpxByteSource。
    """

    def __init__(self, cfg=default_settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = cfg
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._settings.api_base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        token = getattr(self._settings, "access_token", None)
        if not token:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_ACCESS_TOKEN", message="ACCESS_TOKEN not set")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                trust_env=False,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def upload_media(self, session_id: str, customer_id: str, media: MediaDescriptor) -> str:
        payload = {
            "sessionId": session_id,
            "customerId": customer_id,
            "media": media.to_payload(),
        }
        try:
            resp = await self._http().post(
                f"{self.base_url}/media/chat/upload",
                json=payload,
                headers=self._headers(),
            )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        _raise_for_status(resp, resp.text)
        try:
            data: Any = resp.json()
        except ValueError:
            raise UploadError(code="UPLOAD_FAILED", message="upload response is not JSON", http_status=resp.status_code)
        if not isinstance(data, dict) or data.get("status") != SUCCESS_STATUS:
            message = data.get("message") if isinstance(data, dict) else None
            raise UploadError(code="UPLOAD_FAILED", message=message or "Failed to upload image")
        body = data.get("body")
        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            raise UploadError(code="UPLOAD_FAILED", message="upload response has no url")
        return str(url)

    def open_chat_stream(
        self,
        session_id: str,
        customer_id: str,
        message: str,
        medias: List[MediaItem],
    ) -> HttpxByteSource:
        payload = {
            "sessionId": session_id,
            "customerId": customer_id,
            "message": message,
            "medias": [m.to_payload() for m in medias],
        }
        client = self._http()
        request = client.build_request(
            "POST",
            f"{self.base_url}/chat",
            json=payload,
            headers=self._headers(),
        )
        return HttpxByteSource(client, request, chunk_size=getattr(self._settings, "stream_chunk_size", None))
