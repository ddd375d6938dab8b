"""
消息总线模块 - 解耦聊天渠道与 Agent 核心。

消息流向：
  用户消息 → 渠道(Channel) → InboundMessage → 消息总线 → AgentLoop.run()
  Agent 回复 / 广播 → OutboundMessage → 消息总线 → 渠道(Channel) → 用户
"""

from shiftbot.bus.events import InboundMessage, OutboundMessage
from shiftbot.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
