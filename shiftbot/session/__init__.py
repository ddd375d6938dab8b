"""
会话模块 - 按用户持久化的对话历史。

【架构定位】
会话存储位于 Agent 主循环之下：
- AgentLoop 在调用模型前先把用户消息追加到存储（崩溃也不会丢）
- 每个推理周期结束后追加 model / tool 轮次
- 构建上下文时通过 load_recent 读取按用户轮次数划定的窗口

【Java 开发者类比】
- HistoryStore 类似于 Spring Data 的 Repository
- ConversationTurn 类似于一条不可变的事件记录（Event Sourcing 中的 Event）
"""

from shiftbot.session.manager import HistoryStore, JsonlHistoryStore
from shiftbot.session.turns import (
    ConversationTurn,
    Part,
    ToolInvocationRequest,
    ToolInvocationResult,
)

__all__ = [
    "HistoryStore",
    "JsonlHistoryStore",
    "ConversationTurn",
    "Part",
    "ToolInvocationRequest",
    "ToolInvocationResult",
]
