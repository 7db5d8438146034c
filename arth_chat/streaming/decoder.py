"""增量 UTF-8 解码。

响应体按任意字节边界分块到达，一个多字节字符可能被拆到两个块里。
ByteDecoder 只保留末尾不完整的 UTF-8 序列（最多 3 字节），
其余部分立即解码输出，已输出的文本不会再被改写。
"""

from typing import Tuple


def _split_incomplete_tail(data: bytes) -> Tuple[bytes, bytes]:
    """把 data 拆成 (可解码部分, 末尾不完整序列)。"""

    n = len(data)
    for back in range(1, min(3, n) + 1):
        byte = data[n - back]
        if byte & 0xC0 == 0x80:
            # continuation byte，继续往前找起始字节
            continue
        if 0xC2 <= byte <= 0xF4:
            needed = 2 if byte < 0xE0 else 3 if byte < 0xF0 else 4
            if needed > back:
                return data[: n - back], data[n - back:]
        break
    return data, b""


class ByteDecoder:
    """有状态的 UTF-8 解码器。

    decode() 的所有输出按顺序拼接，再加上 finish() 的输出，
    等于整个字节流的 ``bytes.decode("utf-8", errors="replace")``。
    非法字节序列被替换为 U+FFFD，并计入 anomalies。
    """

    def __init__(self) -> None:
        self._carry = b""
        self.anomalies = 0

    @property
    def carry(self) -> bytes:
        return self._carry

    def decode(self, chunk: bytes) -> str:
        data = self._carry + chunk if self._carry else bytes(chunk)
        ready, self._carry = _split_incomplete_tail(data)
        return self._decode_ready(ready)

    def finish(self) -> str:
        """流结束：剩余的不完整序列按替换字符输出，不会静默丢弃。"""

        tail, self._carry = self._carry, b""
        if not tail:
            return ""
        self.anomalies += 1
        return tail.decode("utf-8", errors="replace")

    def _decode_ready(self, ready: bytes) -> str:
        if not ready:
            return ""
        try:
            return ready.decode("utf-8")
        except UnicodeDecodeError:
            self.anomalies += 1
            return ready.decode("utf-8", errors="replace")
