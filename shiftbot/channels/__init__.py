"""
消息渠道模块。

  用户消息 → 渠道 → MessageBus → AgentLoop → MessageBus → 渠道 → 用户

- BaseChannel: 渠道统一接口
- LineChannel: LINE Messaging API 实现
"""

from shiftbot.channels.base import BaseChannel
from shiftbot.channels.line import LineChannel

__all__ = ["BaseChannel", "LineChannel"]
