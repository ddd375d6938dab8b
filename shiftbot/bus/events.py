"""
消息事件类型定义模块 - 定义消息总线中传输的数据结构。

- InboundMessage：入站消息（聊天渠道 → Agent），一条 = 一个用户说的一句话
- OutboundMessage：出站消息（Agent → 聊天渠道），包括对话回复和 shiftCallOut 广播

【Java 开发者类比】
- @dataclass 等价于 Java 的 record 类或 Lombok 的 @Data
- field(default_factory=...) 等价于在构造器里 new HashMap<>()
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """
    入站消息。

    属性:
        channel: 来源渠道标识（如 'line', 'cli'）
        sender_id: 发送者 ID，同时作为会话历史的用户键
        chat_id: 回复目标（LINE 中一对一聊天时与 sender_id 相同）
        content: 消息文本
        metadata: 渠道特有数据（如 LINE 的 reply_token）
    """

    channel: str
    sender_id: str
    chat_id: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return self.sender_id


@dataclass
class OutboundMessage:
    """
    出站消息。

    属性:
        channel: 目标渠道
        chat_id: 目标聊天 ID（广播时为配置的群组 ID）
        content: 文本内容
        reply_to: LINE reply token；存在时优先用 reply 接口，否则用 push
        metadata: 附加数据（广播消息带 {"broadcast": True}）
    """

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
