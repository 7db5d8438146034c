"""消费者回调接口。

SessionController 把 ReplyEvent 一一映射到这些回调，按事件顺序同步调用。
子类按需覆盖，未覆盖的回调为空操作。
"""

from arth_chat.domain.models import ErrorKind, ReplyEvent, ReplyPayload


class ReplyCallbacks:
    def on_partial(self, text: str) -> None:
        pass

    def on_structured(self, payload: ReplyPayload) -> None:
        pass

    def on_fallback_text(self, text: str) -> None:
        pass

    def on_error(self, kind: ErrorKind, detail: str) -> None:
        pass

    def on_terminal(self) -> None:
        pass

    def on_cancelled(self) -> None:
        """显式取消时调用一次；取消后不会再有 on_terminal。"""


def dispatch_event(callbacks: ReplyCallbacks, event: ReplyEvent) -> None:
    if event.kind == "partial":
        callbacks.on_partial(event.text or "")
    elif event.kind == "structured":
        callbacks.on_structured(event.payload)
    elif event.kind == "fallback_text":
        callbacks.on_fallback_text(event.text or "")
    elif event.kind == "error":
        callbacks.on_error(event.error_kind, event.detail or "")
    elif event.kind == "terminal":
        callbacks.on_terminal()
    else:
        raise ValueError(f"Unknown reply event kind: {event.kind!r}")
