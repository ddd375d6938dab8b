"""
广播工具模块 (agent/tools/message.py)

模块职责：
    提供 shiftCallOut 工具：当班次出现空缺时，由模型起草一段招募消息，
    广播到配置好的 LINE 群组。

在架构中的位置：
    工具只负责构建 OutboundMessage 并交给 send_callback（通常是 MessageBus.publish_outbound），
    实际的 LINE 推送由 LineChannel 完成，工具本身不依赖任何 HTTP 客户端。

    LLM 返回 tool_call("shiftCallOut", {message: "..."})
      → BroadcastTool.execute()
        → send_callback(OutboundMessage(metadata={"broadcast": True}))
          → 消息总线 → LineChannel.send() → LINE 群组
"""

from typing import Any, Awaitable, Callable

from loguru import logger

from shiftbot.agent.tools.base import Tool
from shiftbot.bus.events import OutboundMessage


class BroadcastTool(Tool):
    """
    把一条消息广播到团队群组。

    参数:
        send_callback: 异步回调，负责把消息投递到消息总线
        channel: 广播使用的渠道（默认 "line"）
        target: 广播目标（LINE 群组 ID）；为空时工具返回"未配置"
    """

    def __init__(
        self,
        send_callback: Callable[[OutboundMessage], Awaitable[None]] | None = None,
        channel: str = "line",
        target: str = "",
    ):
        self._send_callback = send_callback
        self._channel = channel
        self._target = target

    @property
    def name(self) -> str:
        return "shiftCallOut"

    @property
    def description(self) -> str:
        return (
            "Broadcast a message to the whole team group. Use it to ask for someone to "
            "cover a shift that has become understaffed."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The message to broadcast to the team",
                },
            },
            "required": ["message"],
        }

    async def execute(self, message: str, **kwargs: Any) -> str:
        if not self._target or not self._send_callback:
            return "Broadcasting is not configured; the message was not sent."

        await self._send_callback(OutboundMessage(
            channel=self._channel,
            chat_id=self._target,
            content=message,
            metadata={"broadcast": True},
        ))
        logger.info(f"Broadcast queued for {self._channel}:{self._target}")
        return "Message sent to the team."
