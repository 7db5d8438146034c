"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层或 UI 层做统一捕获与用户提示。

注意：流式解析过程中的非致命问题（格式错误的帧、无法解析的片段等）
不会以异常形式抛出，而是作为 ReplyEvent 交给消费者，见 streaming.reply_stream。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "UPLOAD_FAILED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 session_id、stream_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、读取超时等。"""


class ApiError(BusinessError):
    """远端 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """远端限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class UploadError(BusinessError):
    """图片上传接口返回了非 SUCCESS 状态或缺少 URL。"""


class StreamStateError(BusinessError):
    """在不允许的状态下操作 ReplyStream（例如重复启动）。"""
