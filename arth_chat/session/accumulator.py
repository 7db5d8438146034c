"""把事件序列折叠成一条展示中的回复。

ReplyAccumulator 由消费者持有（每个会话一份），只通过回调更新：

- partial: 在收到第一个 structured 之前，用原始文本覆盖展示文本；
- structured: 最后一个 structured 生效，整体替换文本、媒体与建议追问；
- fallback_text: 总是记录在 fallback_text 中；尚无 structured 时同时作为展示文本；
- error: 记录到 errors；传输失败或远端失败在没有 structured 时给出提示文本；
- terminal / cancelled: 结束“流式中”状态。
"""

from copy import deepcopy
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from arth_chat.domain.models import ErrorKind, FollowUp, MediaItem, ReplyPayload
from arth_chat.session.callbacks import ReplyCallbacks


TRANSPORT_ERROR_TEXT = "Sorry, there was an error processing the response."


@dataclass
class DisplayMessage:
    """当前展示中的助手消息。"""

    text: str = ""
    medias: List[MediaItem] = field(default_factory=list)
    suggested_follow_ups: List[FollowUp] = field(default_factory=list)
    is_streaming: bool = True
    error: bool = False
    cancelled: bool = False
    fallback_text: Optional[str] = None
    errors: List[Tuple[ErrorKind, str]] = field(default_factory=list)


class ReplyAccumulator(ReplyCallbacks):
    def __init__(self) -> None:
        self._message = DisplayMessage()
        self._has_structured = False

    @property
    def message(self) -> DisplayMessage:
        return self._message

    def snapshot(self) -> DisplayMessage:
        return deepcopy(self._message)

    def on_partial(self, text: str) -> None:
        if not self._has_structured:
            self._message.text = text

    def on_structured(self, payload: ReplyPayload) -> None:
        self._has_structured = True
        self._message.text = payload.message
        self._message.medias = list(payload.medias)
        self._message.suggested_follow_ups = list(payload.suggested_follow_ups)

    def on_fallback_text(self, text: str) -> None:
        self._message.fallback_text = text
        if not self._has_structured:
            self._message.text = text

    def on_error(self, kind: ErrorKind, detail: str) -> None:
        self._message.errors.append((kind, detail))
        if self._has_structured:
            return
        if kind == "transport_failure":
            self._message.error = True
            self._message.text = TRANSPORT_ERROR_TEXT

    def on_terminal(self) -> None:
        self._message.is_streaming = False

    def on_cancelled(self) -> None:
        self._message.is_streaming = False
        self._message.cancelled = True
