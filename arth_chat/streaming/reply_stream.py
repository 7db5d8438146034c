"""单条回复流的状态机。

ReplyStream 从 ByteSource 拉取字节块，经 ByteDecoder 与 FrameBuffer 提取帧，
对每个帧做分类，并按到达顺序通过 on_event 回调产出 ReplyEvent。

状态流转：IDLE → ACTIVE → FINALIZING → TERMINAL，或 CANCELLED，或 FAILED。

- 正常结束：剩余文本非空时产出一个 fallback_text，然后产出 terminal。
- 显式 cancel()：静默结束，之后不再产出任何事件（包括 terminal）。
- 字节源读取失败：产出 error(transport_failure)，然后产出 terminal。

无论从哪条路径退出，字节源都恰好被 release() 一次。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from arth_chat.config.settings import settings
from arth_chat.domain.exceptions import StreamStateError
from arth_chat.domain.models import (
    SUCCESS_STATUS,
    FollowUp,
    MediaItem,
    ReplyEvent,
    ReplyPayload,
)
from arth_chat.infrastructure.logging.logger import log_event, logger
from arth_chat.streaming.decoder import ByteDecoder
from arth_chat.streaming.frame_buffer import FrameBuffer
from arth_chat.streaming.sources import ByteSource


EventSink = Callable[[ReplyEvent], None]


class StreamState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    TERMINAL = "terminal"
    CANCELLED = "cancelled"
    FAILED = "failed"


_FINISHED_STATES = {StreamState.TERMINAL, StreamState.CANCELLED, StreamState.FAILED}


@dataclass
class StreamStats:
    """单条流的统计信息，结束时写入日志。"""

    chunks: int = 0
    bytes: int = 0
    frames: int = 0
    recoveries: int = 0
    decode_anomalies: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "chunks": self.chunks,
            "bytes": self.bytes,
            "frames": self.frames,
            "recoveries": self.recoveries,
            "decode_anomalies": self.decode_anomalies,
        }


def _preview(value: Any, limit: int = 120) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return text if len(text) <= limit else text[:limit] + "..."


def parse_payload(envelope: Dict[str, Any], body: Dict[str, Any]) -> ReplyPayload:
    """把 SUCCESS 信封的 body 转成 ReplyPayload，缺失字段取空值。"""

    message = body.get("message")
    medias: List[MediaItem] = []
    for item in body.get("medias") or []:
        if not isinstance(item, dict):
            continue
        medias.append(
            MediaItem(
                type=str(item.get("type") or ""),
                url=str(item.get("url") or ""),
                description=str(item.get("description") or ""),
            )
        )
    follow_ups: List[FollowUp] = []
    for item in body.get("suggestedFollowUps") or []:
        if isinstance(item, dict) and item.get("content"):
            follow_ups.append(FollowUp(content=str(item["content"])))
        elif isinstance(item, str) and item:
            follow_ups.append(FollowUp(content=item))
    return ReplyPayload(
        status=str(envelope.get("status")),
        message="" if message is None else str(message),
        medias=medias,
        suggested_follow_ups=follow_ups,
        raw=envelope,
    )


def classify_frame(value: Any) -> ReplyEvent:
    """对一个已解析的帧分类。

    - SUCCESS 信封且 body 为对象 -> structured
    - 带有非 SUCCESS status 的对象 -> error(malformed_payload)，detail 为服务端 message
    - 其他 JSON 值 -> error(malformed_payload)
    """

    if not isinstance(value, dict):
        return ReplyEvent.error("malformed_payload", f"expected an object frame: {_preview(value)}")
    status = value.get("status")
    if status is None:
        return ReplyEvent.error("malformed_payload", f"frame has no status: {_preview(value)}")
    if status != SUCCESS_STATUS:
        message = value.get("message") or f"remote status {status}"
        return ReplyEvent.error("malformed_payload", str(message))
    body = value.get("body")
    if not isinstance(body, dict):
        return ReplyEvent.error("malformed_payload", f"SUCCESS frame without body: {_preview(value)}")
    return ReplyEvent.structured(parse_payload(value, body))


class ReplyStream:
    def __init__(
        self,
        on_event: EventSink,
        *,
        emit_partial: Optional[bool] = None,
        stream_id: Optional[str] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._on_event = on_event
        self._emit_partial = settings.emit_partial if emit_partial is None else emit_partial
        self.stream_id = stream_id or f"st-{uuid4().hex}"
        self._log_ctx: Dict[str, Any] = dict(log_ctx or {})
        self._log_ctx["stream_id"] = self.stream_id

        self._decoder = ByteDecoder()
        self._buffer = FrameBuffer()
        self._state = StreamState.IDLE
        self._started = False
        self._cancelled = False
        self._source: Optional[ByteSource] = None
        self._task: Optional["asyncio.Task[Any]"] = None
        self._reading = False
        self._released = False
        self._last_partial: Optional[str] = None
        self.stats = StreamStats()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def started(self) -> bool:
        return self._started

    @property
    def finished(self) -> bool:
        return self._state in _FINISHED_STATES

    async def run(self, source: ByteSource) -> StreamState:
        """拉取 source 直到结束、取消或失败，返回最终状态。"""

        if self._started:
            raise StreamStateError(
                code="STREAM_ALREADY_STARTED",
                message=f"stream {self.stream_id} was already started",
                stream_id=self.stream_id,
            )
        self._started = True
        self._source = source
        self._task = asyncio.current_task()
        if self._state is StreamState.IDLE:
            self._state = StreamState.ACTIVE
            log_event(logging.INFO, "Stream started", self._log_ctx)
        try:
            while not self._cancelled:
                self._reading = True
                try:
                    result = await source.read()
                except Exception as exc:
                    if not self._cancelled:
                        self._fail(exc)
                    break
                finally:
                    self._reading = False
                if self._cancelled:
                    # 读取期间已被取消：丢弃这次到达的数据
                    break
                if result.chunk:
                    self._on_chunk(result.chunk)
                if result.ended and not self._cancelled:
                    self._finalize()
                    break
        except asyncio.CancelledError:
            self.cancel()
            raise
        finally:
            if self._state in (StreamState.ACTIVE, StreamState.FINALIZING):
                self._state = StreamState.FAILED
            await self._release()
        return self._state

    def cancel(self) -> bool:
        """取消流；之后不再产出任何事件。已结束的流返回 False。

        run() 正挂在 source.read() 上时，取消它所在的任务以放弃这次读取，
        run() 随即释放字节源并抛出 CancelledError。
        """

        if self._state in _FINISHED_STATES:
            return False
        self._cancelled = True
        self._state = StreamState.CANCELLED
        log_event(logging.INFO, "Stream cancelled", self._log_ctx, **self.stats.as_dict())
        task = self._task
        if self._reading and task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        return True

    # ---- 内部处理 ----

    def _on_chunk(self, chunk: bytes) -> None:
        self.stats.chunks += 1
        self.stats.bytes += len(chunk)
        anomalies = self._decoder.anomalies
        text = self._decoder.decode(chunk)
        if self._decoder.anomalies > anomalies:
            self.stats.decode_anomalies = self._decoder.anomalies
            log_event(logging.WARNING, "Invalid UTF-8 replaced", self._log_ctx, chunk_index=self.stats.chunks)
        self._push(text, allow_partial=True)

    def _push(self, text: str, *, allow_partial: bool) -> None:
        recoveries = self._buffer.recoveries
        frames = self._buffer.push(text)
        if self._buffer.recoveries > recoveries:
            self.stats.recoveries = self._buffer.recoveries
            log_event(
                logging.INFO,
                "Skipped unparsable fragment",
                self._log_ctx,
                skipped_chars=self._buffer.recoveries - recoveries,
            )
        for frame in frames:
            if self._cancelled:
                return
            self.stats.frames += 1
            event = classify_frame(frame.value)
            if event.kind == "error":
                log_event(
                    logging.WARNING,
                    "Unexpected reply frame",
                    self._log_ctx,
                    error_kind=event.error_kind,
                    span=[frame.start, frame.end],
                )
            self._emit(event)
        if frames or not allow_partial or not self._emit_partial:
            return
        pending = self._buffer.pending
        if pending.strip() and pending != self._last_partial:
            self._last_partial = pending
            self._emit(ReplyEvent.partial(pending))

    def _finalize(self) -> None:
        self._state = StreamState.FINALIZING
        tail = self._decoder.finish()
        if tail:
            self.stats.decode_anomalies = self._decoder.anomalies
            log_event(logging.WARNING, "Truncated UTF-8 sequence at end of stream", self._log_ctx)
            self._push(tail, allow_partial=False)
        remainder = self._buffer.flush()
        if remainder.strip():
            log_event(logging.INFO, "Unparsed remainder at end of stream", self._log_ctx, chars=len(remainder))
            self._emit(ReplyEvent.fallback(remainder))
        self._emit(ReplyEvent.terminal())
        if not self._cancelled:
            self._state = StreamState.TERMINAL
            log_event(logging.INFO, "Stream finished", self._log_ctx, **self.stats.as_dict())

    def _fail(self, exc: Exception) -> None:
        self._state = StreamState.FAILED
        detail = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        logger.warning(
            "Byte source failed",
            exc_info=exc,
            extra={"extra": {**self._log_ctx, "error": detail}},
        )
        self._emit(ReplyEvent.error("transport_failure", detail))
        self._emit(ReplyEvent.terminal())

    def _emit(self, event: ReplyEvent) -> None:
        if self._cancelled:
            return
        self._on_event(event)

    async def _release(self) -> None:
        if self._released or self._source is None:
            return
        self._released = True
        try:
            await self._source.release()
        except Exception as exc:
            log_event(logging.WARNING, "Releasing byte source failed", self._log_ctx, error=str(exc))
