"""统一的回复与媒体数据模型。

本模块定义了客户端内部共享的标准数据结构：

- MediaItem / FollowUp / ReplyPayload: 服务端 SUCCESS 信封中 body 的解析结果。
- ReplyEvent: ReplyStream 按到达顺序产出的事件。
- MediaDescriptor / ImageAttachment: 上传接口使用的请求模型。

传输层（httpx）与解析层只依赖这些模型，
并负责在服务端 JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


SUCCESS_STATUS = "SUCCESS"

# 事件类型（与 ReplyCallbacks 的回调一一对应）
EventKind = Literal["partial", "structured", "fallback_text", "error", "terminal"]

# 错误分类：
# - decode_anomaly / unparsable_fragment 只计数与记日志，不产生事件；
# - malformed_payload 非致命（含服务端返回的非 SUCCESS status），流继续读取；
# - transport_failure 致命，其后紧跟 terminal。
ErrorKind = Literal[
    "decode_anomaly",
    "malformed_payload",
    "unparsable_fragment",
    "transport_failure",
]


@dataclass
class MediaItem:
    """回复或请求中携带的一项媒体。"""

    type: str
    url: str
    description: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "url": self.url, "description": self.description}


@dataclass
class FollowUp:
    """服务端建议的追问。"""

    content: str


@dataclass
class ReplyPayload:
    """SUCCESS 信封解析后的结构化回复。

    - status: 信封中的 status 字段（目前只会是 "SUCCESS"）。
    - message: 回复正文。
    - medias: 回复附带的媒体列表。
    - suggested_follow_ups: 建议追问列表。
    - raw: 原始帧 JSON，用于调试或日志记录。
    """

    status: str
    message: str
    medias: List[MediaItem] = field(default_factory=list)
    suggested_follow_ups: List[FollowUp] = field(default_factory=list)
    raw: Optional[dict] = None


@dataclass
class ReplyEvent:
    """ReplyStream 产生的事件。

    kind:
        - "partial": 尚未提取出完整帧时的原始文本，仅用于“打字中”展示。
        - "structured": 一个 SUCCESS 信封，携带 payload。
        - "fallback_text": 流结束时仍无法解析的剩余文本。
        - "error": 非致命或致命错误，error_kind 见 ErrorKind。
        - "terminal": 流正常结束或传输失败后的最后一个事件。
    """

    kind: EventKind
    text: Optional[str] = None
    payload: Optional[ReplyPayload] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def partial(cls, text: str) -> "ReplyEvent":
        return cls(kind="partial", text=text)

    @classmethod
    def structured(cls, payload: ReplyPayload) -> "ReplyEvent":
        return cls(kind="structured", payload=payload)

    @classmethod
    def fallback(cls, text: str) -> "ReplyEvent":
        return cls(kind="fallback_text", text=text)

    @classmethod
    def error(cls, kind: ErrorKind, detail: Optional[str] = None) -> "ReplyEvent":
        return cls(kind="error", error_kind=kind, detail=detail)

    @classmethod
    def terminal(cls) -> "ReplyEvent":
        return cls(kind="terminal")


@dataclass
class MediaDescriptor:
    """上传接口请求体中的 media 字段。"""

    type: str
    data: str
    description: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data, "description": self.description}


@dataclass
class ImageAttachment:
    """用户选择的一张待上传图片。"""

    name: str
    content_type: str = "image/jpeg"
    description: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.content_type.lower().startswith("image/")
