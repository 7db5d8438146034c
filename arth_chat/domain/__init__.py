"""领域层模型与异常。

包含：
- models: ReplyPayload / ReplyEvent 等回复模型与上传请求模型。
- exceptions: 业务异常类型定义。
"""
