"""会话层：single-flight 控制器、消费者回调与回复折叠。"""

from arth_chat.session.accumulator import DisplayMessage, ReplyAccumulator
from arth_chat.session.callbacks import ReplyCallbacks, dispatch_event
from arth_chat.session.controller import SessionController, StreamHandle

__all__ = [
    "DisplayMessage",
    "ReplyAccumulator",
    "ReplyCallbacks",
    "SessionController",
    "StreamHandle",
    "dispatch_event",
]
