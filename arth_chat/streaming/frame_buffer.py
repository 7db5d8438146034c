"""帧缓冲：在不断增长的文本中提取完整的 JSON 帧。

push() 每次追加一段解码后的文本，并从读游标开始反复调用 scanner.scan()：

1. 扫描命中后，用 json.loads 解析 ``text[cursor:end + 1]``；
2. 解析成功则产出一个 Frame，游标移动到该片段之后；
3. 括号平衡但解析失败（unparsable fragment）时，游标只前进一个字符后重新扫描；
4. 扫描不到闭合位置时停止，保留游标之后的文本等待下一次 push。

第 3 步在最坏情况下对缓冲区长度是 O(n²)，聊天回复体量很小，可以接受。
"""

import json
from dataclasses import dataclass
from typing import Any, List

from arth_chat.streaming.scanner import scan


@dataclass(frozen=True)
class Frame:
    """一个完整的 JSON 值。

    - raw: 被解析的原始文本片段（可能带前导空白）。
    - value: json.loads 的结果。
    - start / end: 在整个解码文本流中的字符偏移（end 不含）。
    """

    raw: str
    value: Any
    start: int
    end: int


class FrameBuffer:
    def __init__(self) -> None:
        self._text = ""
        # 已从 _text 中丢弃的字符数，用于计算绝对偏移
        self._consumed = 0
        self.recoveries = 0
        self.frames_emitted = 0

    @property
    def pending(self) -> str:
        """尚未构成完整帧的剩余文本。"""

        return self._text

    def push(self, text: str) -> List[Frame]:
        if text:
            self._text += text
        frames: List[Frame] = []
        cursor = 0
        while cursor < len(self._text):
            end = scan(self._text, cursor)
            if end is None:
                break
            raw = self._text[cursor:end + 1]
            try:
                value = json.loads(raw)
            except json.JSONDecodeError:
                self.recoveries += 1
                cursor += 1
                continue
            frames.append(
                Frame(
                    raw=raw,
                    value=value,
                    start=self._consumed + cursor,
                    end=self._consumed + end + 1,
                )
            )
            cursor = end + 1
        if cursor:
            self._text = self._text[cursor:]
            self._consumed += cursor
        self.frames_emitted += len(frames)
        return frames

    def flush(self) -> str:
        """取出并清空剩余文本（流结束时调用）。"""

        remainder, self._text = self._text, ""
        self._consumed += len(remainder)
        return remainder
