"""JSON 值边界扫描。

scan() 是一个无状态的纯函数：从 from_offset 开始向前扫描，
找到下一个完整 JSON 值（对象或数组）的结束位置。

规则：
- 在字符串内部时，引号与转义的处理优先于括号计数；
- 第一个 ``{`` 或 ``[`` 开始一个值（depth=1），匹配的闭合括号让 depth 回到 0，
  此时返回该闭合字符的下标；
- 第一个开括号之前的字符不做校验，其中的引号和闭括号不改变扫描状态；
- 值没有闭合时返回 None，这在分块到达时是常态，不是错误。
"""

from typing import Optional

_OPENERS = "{["
_CLOSERS = "}]"


def scan(text: str, from_offset: int = 0) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False

    for i in range(max(from_offset, 0), len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch in _OPENERS:
            depth += 1
        elif depth == 0:
            # 还没进入任何值：前导空白或杂散字符
            continue
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            depth -= 1
            if depth == 0:
                return i
    return None
