"""HTTP 接口层：聊天后端客户端 (client) 与对外服务 (service)。"""

from arth_chat.api.client import ChatApiClient, HttpxByteSource
from arth_chat.api.service import ChatService, get_default_service

__all__ = ["ChatApiClient", "ChatService", "HttpxByteSource", "get_default_service"]
