"""会话级流控制器。

每个会话同一时刻最多只有一条活动的 ReplyStream（single-flight）：
send() 发现该会话已有活动流时，先取消它并等待其任务退出（字节源已释放），
再创建并启动新的流。同一会话上的 send/cancel 由一把 asyncio.Lock 串行化。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from arth_chat.domain.models import MediaItem, ReplyEvent
from arth_chat.infrastructure.logging.logger import log_event
from arth_chat.session.callbacks import ReplyCallbacks, dispatch_event
from arth_chat.streaming.reply_stream import ReplyStream, StreamState
from arth_chat.streaming.sources import ByteSource


# (session_id, message, medias) -> ByteSource，可以是同步或异步函数
SourceFactory = Callable[
    [str, str, List[MediaItem]],
    Union[ByteSource, Awaitable[ByteSource]],
]


@dataclass
class StreamHandle:
    """一次 send() 启动的流。"""

    session_id: str
    stream: ReplyStream
    callbacks: ReplyCallbacks
    task: Optional["asyncio.Task[StreamState]"] = None
    _cancel_notified: bool = field(default=False, repr=False)

    @property
    def stream_id(self) -> str:
        return self.stream.stream_id

    @property
    def state(self) -> StreamState:
        return self.stream.state

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> StreamState:
        """等待流结束并返回最终状态；被取消的流返回 CANCELLED。"""

        if self.task is None:
            return self.stream.state
        try:
            return await asyncio.shield(self.task)
        except asyncio.CancelledError:
            if self.task.cancelled():
                return StreamState.CANCELLED
            raise

    async def cancel(self) -> bool:
        cancelled = self.stream.cancel()
        if cancelled and not self._cancel_notified:
            self._cancel_notified = True
            self.callbacks.on_cancelled()
        if self.task is not None and not self.task.done():
            # 挂起中的读取由 stream.cancel() 放弃；还未开始运行的任务会看到 CANCELLED 状态，直接释放字节源后退出
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        return cancelled


class SessionController:
    def __init__(self, source_factory: SourceFactory, *, emit_partial: Optional[bool] = None):
        self._source_factory = source_factory
        self._emit_partial = emit_partial
        self._active: Dict[str, StreamHandle] = {}
        # session_id -> (锁, 持有或等待该锁的调用数)；计数归零时丢弃
        self._locks: Dict[str, List[Any]] = {}

    def active(self, session_id: str) -> Optional[StreamHandle]:
        handle = self._active.get(session_id)
        if handle is None or handle.stream.finished:
            return None
        return handle

    def active_sessions(self) -> List[str]:
        return [sid for sid in self._active if self.active(sid) is not None]

    async def send(
        self,
        session_id: str,
        message: str,
        medias: Sequence[MediaItem] = (),
        callbacks: Optional[ReplyCallbacks] = None,
    ) -> StreamHandle:
        """启动一条新的回复流；同一会话已有活动流时先取消它。"""

        callbacks = callbacks or ReplyCallbacks()
        log_ctx: Dict[str, Any] = {"session_id": session_id}
        async with self._session_lock(session_id):
            previous = self.active(session_id)
            if previous is not None:
                log_event(
                    logging.INFO,
                    "Cancelling previous stream",
                    log_ctx,
                    previous_stream_id=previous.stream_id,
                )
                await previous.cancel()

            stream = ReplyStream(
                lambda event: self._deliver(callbacks, event),
                emit_partial=self._emit_partial,
                stream_id=f"st-{uuid4().hex}",
                log_ctx=log_ctx,
            )
            handle = StreamHandle(session_id=session_id, stream=stream, callbacks=callbacks)
            source = self._source_factory(session_id, message, list(medias))
            if asyncio.iscoroutine(source) or isinstance(source, asyncio.Future):
                source = await source
            self._active[session_id] = handle
            handle.task = asyncio.create_task(self._run(handle, source))
            return handle

    async def cancel_active(self, session_id: str) -> bool:
        """取消会话当前的活动流（例如用户离开页面）。没有活动流时返回 False。"""

        async with self._session_lock(session_id):
            handle = self.active(session_id)
            if handle is None:
                return False
            return await handle.cancel()

    async def aclose(self) -> None:
        for session_id in list(self._active):
            await self.cancel_active(session_id)

    async def _run(self, handle: StreamHandle, source: ByteSource) -> StreamState:
        try:
            return await handle.stream.run(source)
        finally:
            if self._active.get(handle.session_id) is handle:
                del self._active[handle.session_id]

    @staticmethod
    def _deliver(callbacks: ReplyCallbacks, event: ReplyEvent) -> None:
        dispatch_event(callbacks, event)

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0 and self._locks.get(session_id) is entry:
                del self._locks[session_id]
