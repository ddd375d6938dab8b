"""
Agent 工具子包 (agent/tools)

工具系统采用"注册表模式"：
  - ToolDeclaration / Tool：工具的声明与统一接口
  - ToolRegistry：名称 → 处理函数，启动时构建，之后只读

内置工具：
  - getCurrentDate / getShiftData / getRuleData / editShiftData：排班表查询与编辑（shift.py）
  - shiftCallOut：向团队群组广播消息（message.py）
"""

from typing import Awaitable, Callable

from shiftbot.agent.tools.base import FunctionTool, Tool, ToolDeclaration
from shiftbot.agent.tools.message import BroadcastTool
from shiftbot.agent.tools.registry import ToolRegistry
from shiftbot.agent.tools.shift import (
    EditShiftDataTool,
    GetCurrentDateTool,
    GetRuleDataTool,
    GetShiftDataTool,
)
from shiftbot.bus.events import OutboundMessage
from shiftbot.shifts.board import ShiftBoard


def build_default_registry(
    board: ShiftBoard,
    timezone: str = "Asia/Tokyo",
    send_callback: Callable[[OutboundMessage], Awaitable[None]] | None = None,
    broadcast_channel: str = "line",
    broadcast_to: str = "",
) -> ToolRegistry:
    """构建包含全部排班工具的注册表。"""
    registry = ToolRegistry()
    registry.add(GetCurrentDateTool(timezone))
    registry.add(GetShiftDataTool(board))
    registry.add(GetRuleDataTool(board))
    registry.add(EditShiftDataTool(board))
    registry.add(BroadcastTool(send_callback, channel=broadcast_channel, target=broadcast_to))
    return registry


__all__ = [
    "Tool",
    "FunctionTool",
    "ToolDeclaration",
    "ToolRegistry",
    "BroadcastTool",
    "GetCurrentDateTool",
    "GetShiftDataTool",
    "GetRuleDataTool",
    "EditShiftDataTool",
    "build_default_registry",
]
