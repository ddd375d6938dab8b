"""
LINE 渠道模块 - 通过 LINE Messaging API 收发消息。

入站：
    Webhook 的 HTTP 接入不在本模块内（由部署方的 Web 框架负责）。
    部署方把解析后的事件交给 handle_text_event()，本模块只处理一对一或群组中的文本消息，
    其他事件（关注、贴图等）直接忽略。

出站（send）：
    - 带 reply_to（reply token）的消息优先走 reply 接口（免费、但 token 短时间内有效）
    - reply 失败或没有 token 时走 push 接口，发送到 chat_id
    - shiftCallOut 广播消息没有 reply token，直接 push 到配置的群组

API 端点：
    POST {api_base}/message/reply  {"replyToken": ..., "messages": [...]}
    POST {api_base}/message/push   {"to": ...,         "messages": [...]}
"""

from typing import Any

import httpx
from loguru import logger

from shiftbot.bus.events import OutboundMessage
from shiftbot.bus.queue import MessageBus
from shiftbot.channels.base import BaseChannel

LINE_API_BASE = "https://api.line.me/v2/bot"
MAX_TEXT_LENGTH = 5000


class LineChannel(BaseChannel):
    """
    LINE Messaging API 渠道。

    属性:
        _http: 异步 HTTP 客户端；可在构造时注入（测试用 httpx.MockTransport）
    """

    name = "line"

    def __init__(self, config: Any, bus: MessageBus, client: httpx.AsyncClient | None = None):
        super().__init__(config, bus)
        self._http = client
        self._owns_client = client is None

    @property
    def api_base(self) -> str:
        return (getattr(self.config, "api_base", None) or LINE_API_BASE).rstrip("/")

    async def start(self) -> None:
        if not self.config.channel_access_token:
            logger.error("LINE channel access token not configured")
            return
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
        self.bus.subscribe_outbound(self.name, self.send)
        self._running = True
        logger.info("LINE channel started")

    async def stop(self) -> None:
        self._running = False
        if self._http and self._owns_client:
            await self._http.aclose()
            self._http = None

    async def handle_text_event(self, event: dict[str, Any]) -> bool:
        """
        处理一条 LINE Webhook 事件。

        返回:
            True 表示事件已作为入站消息发布到总线
        """
        if event.get("type") != "message":
            return False
        message = event.get("message") or {}
        if message.get("type") != "text":
            return False

        source = event.get("source") or {}
        user_id = source.get("userId")
        if not user_id:
            logger.warning("LINE event without userId, ignoring")
            return False
        chat_id = source.get("groupId") or source.get("roomId") or user_id

        metadata = {"message_id": message.get("id")}
        if event.get("replyToken"):
            metadata["reply_token"] = event["replyToken"]
        return await self._handle_message(user_id, chat_id, message.get("text", ""), metadata)

    async def send(self, msg: OutboundMessage) -> None:
        if not self._http:
            logger.warning("LINE HTTP client not initialized")
            return

        messages = [{"type": "text", "text": msg.content[:MAX_TEXT_LENGTH]}]
        if msg.reply_to:
            try:
                await self._post("/message/reply", {"replyToken": msg.reply_to, "messages": messages})
                return
            except httpx.HTTPError as e:
                logger.warning(f"LINE reply failed, falling back to push: {e}")

        # push 失败时抛出 httpx.HTTPStatusError，由总线分发器记录
        await self._post("/message/push", {"to": msg.chat_id, "messages": messages})

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        headers = {"Authorization": f"Bearer {self.config.channel_access_token}"}
        response = await self._http.post(f"{self.api_base}{path}", headers=headers, json=payload)
        response.raise_for_status()
