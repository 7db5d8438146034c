"""字节源抽象与内置实现。

ReplyStream 不直接依赖 httpx，而是依赖 ByteSource 协议：

- read(): 挂起直到下一块数据或流结束，返回 ReadResult。
- release(): 释放底层资源（关闭响应、取消读取），由 ReplyStream 在任何退出路径上恰好调用一次。

块边界与 JSON 值边界没有任何对应关系，无论底层是 HTTP 分块响应、SSE 还是 socket。
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Union


@dataclass(frozen=True)
class ReadResult:
    """一次 read() 的结果；ended=True 时 chunk 可能仍带有最后一段数据。"""

    chunk: bytes = b""
    ended: bool = False


class ByteSource(Protocol):
    async def read(self) -> ReadResult:
        ...

    async def release(self) -> None:
        ...


class IterableByteSource:
    """把预先录制的块按顺序回放成字节源。"""

    def __init__(self, chunks: Iterable[Union[bytes, str]]):
        self._chunks: List[bytes] = [
            c.encode("utf-8") if isinstance(c, str) else bytes(c) for c in chunks
        ]
        self._index = 0
        self.released = False
        self.release_count = 0

    async def read(self) -> ReadResult:
        if self.released:
            return ReadResult(ended=True)
        if self._index >= len(self._chunks):
            return ReadResult(ended=True)
        chunk = self._chunks[self._index]
        self._index += 1
        return ReadResult(chunk=chunk)

    async def release(self) -> None:
        self.released = True
        self.release_count += 1


class SseByteSource:
    """把 Server-Sent-Events 字节流适配为纯 JSON 字节流。

    只保留 ``data:`` 行的内容（每个事件后补一个换行），
    丢弃注释行、event/id/retry 字段以及 ``[DONE]`` 结束标记。
    """

    def __init__(self, inner: ByteSource):
        self._inner = inner
        self._line_buf = bytearray()
        self._ended = False

    async def read(self) -> ReadResult:
        while not self._ended:
            result = await self._inner.read()
            if result.chunk:
                self._line_buf.extend(result.chunk)
            if result.ended:
                self._ended = True
                if self._line_buf:
                    # 最后一行可能没有换行符
                    self._line_buf.extend(b"\n")
            payload = self._extract_data()
            if payload or self._ended:
                return ReadResult(chunk=payload, ended=self._ended)
        return ReadResult(ended=True)

    async def release(self) -> None:
        await self._inner.release()

    def _extract_data(self) -> bytes:
        out = bytearray()
        while b"\n" in self._line_buf:
            idx = self._line_buf.index(b"\n")
            line = bytes(self._line_buf[:idx]).rstrip(b"\r")
            del self._line_buf[:idx + 1]
            data = self._data_field(line)
            if data is None or data.strip() == b"[DONE]":
                continue
            out.extend(data)
            out.extend(b"\n")
        return bytes(out)

    @staticmethod
    def _data_field(line: bytes) -> Optional[bytes]:
        if not line.startswith(b"data:"):
            return None
        data = line[5:]
        if data.startswith(b" "):
            data = data[1:]
        return data
