"""流式回复解帧层。

该包下的模块负责：
- 增量 UTF-8 解码 (decoder)。
- JSON 值边界扫描 (scanner) 与帧缓冲 (frame_buffer)。
- 单条回复流的状态机 (reply_stream)。
- 字节源协议与内置实现 (sources)。
"""

from arth_chat.streaming.decoder import ByteDecoder
from arth_chat.streaming.frame_buffer import Frame, FrameBuffer
from arth_chat.streaming.reply_stream import ReplyStream, StreamState, classify_frame
from arth_chat.streaming.scanner import scan
from arth_chat.streaming.sources import ByteSource, IterableByteSource, ReadResult, SseByteSource

__all__ = [
    "ByteDecoder",
    "ByteSource",
    "Frame",
    "FrameBuffer",
    "IterableByteSource",
    "ReadResult",
    "ReplyStream",
    "SseByteSource",
    "StreamState",
    "classify_frame",
    "scan",
]
