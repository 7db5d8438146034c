"""测试会话级 single-flight 控制。"""

import asyncio

from arth_chat.session.accumulator import ReplyAccumulator
from arth_chat.session.callbacks import ReplyCallbacks
from arth_chat.session.controller import SessionController
from arth_chat.streaming.reply_stream import StreamState
from arth_chat.streaming.sources import IterableByteSource, ReadResult


REPLY = b'{"status":"SUCCESS","body":{"message":"new"}}'


class BlockingSource:
    def __init__(self, first: bytes):
        self._first = first
        self._sent = False
        self.release_count = 0

    async def read(self):
        if not self._sent:
            self._sent = True
            return ReadResult(chunk=self._first)
        await asyncio.Event().wait()
        return ReadResult(ended=True)

    async def release(self):
        self.release_count += 1


class Recorder(ReplyCallbacks):
    def __init__(self, tag, log, seen=None):
        self._tag = tag
        self._log = log
        self._seen = seen

    def _record(self, kind):
        self._log.append((self._tag, kind))
        if self._seen is not None:
            self._seen.set()

    def on_partial(self, text):
        self._record("partial")

    def on_structured(self, payload):
        self._record("structured")

    def on_fallback_text(self, text):
        self._record("fallback_text")

    def on_error(self, kind, detail):
        self._record("error")

    def on_terminal(self):
        self._record("terminal")

    def on_cancelled(self):
        self._record("cancelled")


def test_send_runs_stream_to_completion():
    async def scenario():
        controller = SessionController(lambda sid, msg, medias: IterableByteSource([REPLY[:20], REPLY[20:]]))
        reply = ReplyAccumulator()
        handle = await controller.send("s1", "hello", callbacks=reply)
        state = await handle.wait()
        return controller, handle, reply, state

    controller, handle, reply, state = asyncio.run(scenario())
    assert state is StreamState.TERMINAL
    assert reply.message.text == "new"
    assert reply.message.is_streaming is False
    assert controller.active("s1") is None
    assert handle.done


def test_second_send_cancels_first_before_new_events():
    sources = {
        "first": BlockingSource(b'{"status":"SUCCESS","body":{"message":"wor'),
        "second": IterableByteSource([REPLY]),
    }

    async def scenario():
        log = []
        first_seen = asyncio.Event()
        controller = SessionController(lambda sid, msg, medias: sources[msg], emit_partial=True)
        first = await controller.send("s1", "first", callbacks=Recorder("first", log, first_seen))
        await first_seen.wait()
        second = await controller.send("s1", "second", callbacks=Recorder("second", log))
        second_state = await second.wait()
        first_state = await first.wait()
        return log, first_state, second_state

    log, first_state, second_state = asyncio.run(scenario())
    assert log == [
        ("first", "partial"),
        ("first", "cancelled"),
        ("second", "structured"),
        ("second", "terminal"),
    ]
    assert first_state is StreamState.CANCELLED
    assert second_state is StreamState.TERMINAL
    assert sources["first"].release_count == 1
    assert sources["second"].release_count == 1


def test_cancel_active_is_silent_and_idempotent():
    source = BlockingSource(b'{"status":"SUCC')

    async def scenario():
        log = []
        seen = asyncio.Event()
        controller = SessionController(lambda sid, msg, medias: source, emit_partial=True)
        handle = await controller.send("s1", "hi", callbacks=Recorder("s1", log, seen))
        await seen.wait()
        first = await controller.cancel_active("s1")
        second = await controller.cancel_active("s1")
        return log, first, second, handle, controller

    log, first, second, handle, controller = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert log == [("s1", "partial"), ("s1", "cancelled")]
    assert handle.state is StreamState.CANCELLED
    assert controller.active("s1") is None
    assert source.release_count == 1


def test_cancel_before_first_read_releases_source():
    source = IterableByteSource([REPLY])

    async def scenario():
        log = []
        controller = SessionController(lambda sid, msg, medias: source)
        handle = await controller.send("s1", "hi", callbacks=Recorder("s1", log))
        # 任务尚未被调度，立即取消
        await handle.cancel()
        return log, await handle.wait()

    log, state = asyncio.run(scenario())
    assert log == [("s1", "cancelled")]
    assert state is StreamState.CANCELLED
    assert source.release_count == 1


def test_sessions_are_independent():
    async def factory(sid, msg, medias):
        body = '{"status":"SUCCESS","body":{"message":"%s"}}' % sid
        return IterableByteSource([body[:10], body[10:]])

    async def scenario():
        controller = SessionController(factory)
        replies = {sid: ReplyAccumulator() for sid in ("a", "b")}
        handles = [await controller.send(sid, "q", callbacks=replies[sid]) for sid in ("a", "b")]
        assert sorted(controller.active_sessions()) == ["a", "b"]
        await asyncio.gather(*(h.wait() for h in handles))
        return replies, controller

    replies, controller = asyncio.run(scenario())
    assert replies["a"].message.text == "a"
    assert replies["b"].message.text == "b"
    assert controller.active_sessions() == []


def test_aclose_cancels_everything():
    sources = [BlockingSource(b"{"), BlockingSource(b"{")]

    async def scenario():
        controller = SessionController(lambda sid, msg, medias: sources[int(sid)])
        handles = [await controller.send(str(i), "q") for i in range(2)]
        await asyncio.sleep(0)
        await controller.aclose()
        return [await h.wait() for h in handles]

    states = asyncio.run(scenario())
    assert states == [StreamState.CANCELLED, StreamState.CANCELLED]
    assert [s.release_count for s in sources] == [1, 1]


def test_session_locks_do_not_accumulate():
    source = BlockingSource(b'{"status":"SUCC')

    async def scenario():
        controller = SessionController(
            lambda sid, msg, medias: source if sid == "blocked" else IterableByteSource([REPLY])
        )
        handles = [await controller.send(f"session_{i}", "q") for i in range(5)]
        await asyncio.gather(*(h.wait() for h in handles))
        blocked = await controller.send("blocked", "q")
        await asyncio.sleep(0)
        await controller.cancel_active("blocked")
        return controller, await blocked.wait()

    controller, state = asyncio.run(scenario())
    assert state is StreamState.CANCELLED
    assert controller._locks == {}
    assert controller.active_sessions() == []


def test_concurrent_sends_share_one_lock():
    sources = {"first": BlockingSource(b"{"), "second": BlockingSource(b"{"), "third": IterableByteSource([REPLY])}

    async def scenario():
        controller = SessionController(lambda sid, msg, medias: sources[msg])
        await controller.send("s1", "first")
        await asyncio.sleep(0)
        second, third = await asyncio.gather(controller.send("s1", "second"), controller.send("s1", "third"))
        await third.wait()
        return controller, second, third

    controller, second, third = asyncio.run(scenario())
    assert second.state is StreamState.CANCELLED
    assert third.state is StreamState.TERMINAL
    assert [sources[k].release_count for k in ("first", "second", "third")] == [1, 1, 1]
    assert controller._locks == {}
