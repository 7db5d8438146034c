"""对外服务模块。

把上传、发送与会话级流控制组合成上层应用直接调用的接口：
先上传所有图片拿到 URL，再发起聊天请求，回复通过 ReplyCallbacks 推送。
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from arth_chat.api.client import ChatApiClient
from arth_chat.config.settings import settings
from arth_chat.domain.exceptions import BusinessError, ValidationError
from arth_chat.domain.models import FollowUp, ImageAttachment, MediaDescriptor, MediaItem
from arth_chat.infrastructure.logging.logger import log_event, logger
from arth_chat.session.callbacks import ReplyCallbacks
from arth_chat.session.controller import SessionController, StreamHandle
from arth_chat.streaming.sources import ByteSource


class ChatService:
    def __init__(
        self,
        client: ChatApiClient,
        customer_id: Optional[str] = None,
        controller: Optional[SessionController] = None,
        cfg=settings,
    ):
        self._client = client
        self._settings = cfg
        self._customer_id = customer_id or getattr(cfg, "customer_id", None)
        self._controller = controller or SessionController(self._open_source)

    @staticmethod
    def new_session_id() -> str:
        return f"session_{int(time.time() * 1000)}"

    def _require_customer_id(self) -> str:
        if not self._customer_id:
            raise ValidationError(code="MISSING_CUSTOMER_ID", message="CUSTOMER_ID not set")
        return self._customer_id

    def _open_source(self, session_id: str, message: str, medias: List[MediaItem]) -> ByteSource:
        return self._client.open_chat_stream(session_id, self._require_customer_id(), message, medias)

    async def upload_images(self, session_id: str, images: Sequence[ImageAttachment]) -> List[MediaItem]:
        """并发上传图片；上传失败的图片被丢弃并记日志，其余按原顺序返回。"""

        customer_id = self._require_customer_id()
        for image in images:
            if not image.is_image:
                raise ValidationError(
                    code="UNSUPPORTED_MEDIA",
                    message=f"{image.name} is not an image ({image.content_type})",
                )
        default_desc = getattr(self._settings, "default_media_description", "Portfolio screenshot")
        descriptors = [
            MediaDescriptor(type="image", data=image.name, description=image.description or default_desc)
            for image in images
        ]
        results = await asyncio.gather(
            *(self._client.upload_media(session_id, customer_id, d) for d in descriptors),
            return_exceptions=True,
        )
        medias: List[MediaItem] = []
        for image, descriptor, result in zip(images, descriptors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, BusinessError):
                    raise result
                log_event(
                    logging.WARNING,
                    "Image upload failed",
                    {"session_id": session_id},
                    image=descriptor.data,
                    code=result.code,
                    error=result.message,
                )
                continue
            # 聊天请求里的描述用图片自身的描述或文件名
            medias.append(MediaItem(type="IMAGE", url=result, description=image.description or image.name))
        return medias

    async def send_message(
        self,
        session_id: str,
        message: str,
        images: Sequence[ImageAttachment] = (),
        callbacks: Optional[ReplyCallbacks] = None,
    ) -> StreamHandle:
        """上传图片后发送消息，返回回复流句柄。

        Args:
            session_id: 会话ID
            message: 用户输入内容
            images: 待上传的图片（可选）
            callbacks: 接收回复事件的回调（可选）

        Raises:
            ValidationError: 消息与图片都为空，或缺少 customer_id
        """
        text = (message or "").strip()
        if not text and not images:
            raise ValidationError(code="EMPTY_MESSAGE", message="message and images are both empty")
        try:
            medias = await self.upload_images(session_id, images) if images else []
            handle = await self._controller.send(session_id, text, medias, callbacks)
        except Exception as e:
            logger.error(f"Send failed: {e}", extra={"extra": {
                "session_id": session_id,
                "error": str(e),
            }})
            raise
        log_event(
            logging.INFO,
            "Message sent",
            {"session_id": session_id, "stream_id": handle.stream_id},
            media_count=len(medias),
        )
        return handle

    async def send_follow_up(
        self,
        session_id: str,
        follow_up: FollowUp,
        callbacks: Optional[ReplyCallbacks] = None,
    ) -> StreamHandle:
        return await self.send_message(session_id, follow_up.content, callbacks=callbacks)

    async def cancel(self, session_id: str) -> bool:
        return await self._controller.cancel_active(session_id)

    async def aclose(self) -> None:
        await self._controller.aclose()
        await self._client.aclose()


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService(client=ChatApiClient(settings))
    return _service
