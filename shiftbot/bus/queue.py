"""
异步消息队列模块 - 消息总线的核心实现。

基于 asyncio.Queue 的生产者-消费者模式：

入站：渠道适配器 → publish_inbound() → inbound 队列 → consume_inbound() → AgentLoop
出站：AgentLoop / shiftCallOut → publish_outbound() → outbound 队列 → dispatch_outbound() → 渠道回调

【Java 开发者类比】
- asyncio.Queue 类似于 LinkedBlockingQueue
- subscribe_outbound + dispatch_outbound 类似于 Spring 的 @EventListener
"""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from shiftbot.bus.events import InboundMessage, OutboundMessage

OutboundCallback = Callable[[OutboundMessage], Awaitable[None]]


class MessageBus:
    """
    异步消息总线。

    出站消息按 channel 路由到订阅者回调；单个回调失败只记录日志，
    不影响其他订阅者和后续消息。
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._outbound_subscribers: dict[str, list[OutboundCallback]] = {}
        self._running = False

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        return await self.outbound.get()

    def subscribe_outbound(self, channel: str, callback: OutboundCallback) -> None:
        """注册某个渠道的出站回调（同一渠道可注册多个）。"""
        self._outbound_subscribers.setdefault(channel, []).append(callback)

    async def dispatch_outbound(self) -> None:
        """
        出站消息分发器（后台常驻任务）。

        每秒检查一次 _running 标志，以便 stop() 后及时退出。
        """
        self._running = True
        while self._running:
            try:
                msg = await asyncio.wait_for(self.outbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            subscribers = self._outbound_subscribers.get(msg.channel, [])
            if not subscribers:
                logger.warning(f"No subscriber for outbound channel: {msg.channel}")
            for callback in subscribers:
                try:
                    await callback(msg)
                except Exception as e:
                    logger.error(f"Error dispatching to {msg.channel}: {e}")

    def stop(self) -> None:
        self._running = False

    @property
    def inbound_size(self) -> int:
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self.outbound.qsize()
