"""
Agent 核心模块 —— shiftbot 的"大脑"。

- AgentLoop: 编排器，一条消息 → 若干推理 / 工具周期 → 一条回复
- ContextBuilder: 把入站消息组装成 user 轮次（含系统提示词策略）
- ToolExecutor: 执行一个周期内的全部工具调用（去重 + 失败隔离）
"""

from shiftbot.agent.context import SHIFT_MANAGER_PROMPT, ContextBuilder, SessionState
from shiftbot.agent.executor import ToolExecutor
from shiftbot.agent.loop import AgentLoop

__all__ = ["AgentLoop", "ContextBuilder", "SessionState", "ToolExecutor", "SHIFT_MANAGER_PROMPT"]
