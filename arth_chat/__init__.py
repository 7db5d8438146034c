"""Arth Chat 顶层包。

该包提供投资组合助手聊天客户端的核心实现，
包括配置加载、领域模型、流式回复解帧、会话级流控制、
以及上传与聊天 HTTP 接口。
"""

from arth_chat.api.service import ChatService, get_default_service
from arth_chat.session import ReplyAccumulator, ReplyCallbacks, SessionController

__all__ = [
    "ChatService",
    "ReplyAccumulator",
    "ReplyCallbacks",
    "SessionController",
    "get_default_service",
]
