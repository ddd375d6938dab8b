"""
渠道基类模块 - 定义消息渠道的统一接口。

- start(): 启动渠道（开始接收消息，或仅建立出站连接）
- stop(): 停止渠道，释放资源
- send(): 把 OutboundMessage 发送到平台

公共能力：
- is_allowed(): 基于白名单的权限控制
- _handle_message(): 权限检查 → 构造 InboundMessage → 发布到总线

【Java 开发者类比】
- BaseChannel 相当于 abstract class，_handle_message() 是模板方法
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from shiftbot.bus.events import InboundMessage, OutboundMessage
from shiftbot.bus.queue import MessageBus


class BaseChannel(ABC):
    """
    消息渠道抽象基类。

    属性:
        name: 渠道标识名，用于出站消息路由
        config: 渠道配置对象
        bus: 消息总线
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        pass

    def is_allowed(self, sender_id: str) -> bool:
        """白名单为空时允许所有人，否则只允许名单中的用户。"""
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True
        return str(sender_id) in allow_list

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        把平台消息标准化后发布到总线。

        返回:
            True 表示已发布，False 表示发送者不在白名单中
        """
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return False

        await self.bus.publish_inbound(InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            metadata=metadata or {},
        ))
        return True

    @property
    def is_running(self) -> bool:
        return self._running
