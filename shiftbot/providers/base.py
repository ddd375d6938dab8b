"""
模型网关基类定义模块。

本模块定义了 Agent 与语言模型后端之间的接口边界：
- ModelResponse : 模型的统一响应格式（文本片段 + 工具调用请求，保留原始 parts 以便持久化）
- ModelGateway  : 抽象基类，任何满足 converse() 契约的后端都可以接入

架构角色：
  AgentLoop → ModelGateway.converse(history, tools, new_input) → 后端 API → ModelResponse

失败语义：
  网络 / 后端错误统一以 ModelGatewayError 抛出，本组件内部不做重试（重试策略属于调用方）。

类比 Java：
  - ModelGateway 相当于一个 interface
  - ModelResponse 相当于一个不可变的 DTO
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from shiftbot.session.turns import ConversationTurn, Part, ToolInvocationRequest

if TYPE_CHECKING:
    from shiftbot.agent.tools.base import ToolDeclaration


@dataclass(frozen=True)
class ModelResponse:
    """
    模型的一次回复。

    属性：
        parts: 原始内容片段（文本 / 工具调用请求），按模型输出顺序
        finish_reason: 结束原因（"stop" / "tool_calls" / "length" 等）
        usage: token 用量统计
    """
    parts: tuple[Part, ...] = ()
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @classmethod
    def of(cls, *parts: Part, **kwargs) -> "ModelResponse":
        return cls(parts=tuple(parts), **kwargs)

    @property
    def text_parts(self) -> list[str]:
        """全部文本片段（可能为空列表）。"""
        return [p.text for p in self.parts if p.text is not None]

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        """全部工具调用请求（可能为空列表）。"""
        return [p.tool_request for p in self.parts if p.tool_request is not None]

    @property
    def has_tool_requests(self) -> bool:
        return any(p.tool_request is not None for p in self.parts)

    def to_turn(self) -> ConversationTurn:
        """原样转换为 model 轮次（文本与工具调用请求一并保留，便于回放和审计）。"""
        return ConversationTurn(role="model", parts=self.parts)


class ModelGateway(ABC):
    """
    语言模型网关抽象基类。

    实现类只需实现 converse()：把历史轮次、工具声明和本次新输入发给后端，
    把后端响应解析为 ModelResponse。
    """

    @abstractmethod
    async def converse(
        self,
        history: Sequence[ConversationTurn],
        tool_declarations: Sequence["ToolDeclaration"],
        new_input: Sequence[Part],
    ) -> ModelResponse:
        """
        发送一次对话请求。

        参数：
            history: 已有的历史轮次（时间升序）
            tool_declarations: 可供模型调用的工具声明
            new_input: 本次新输入（用户文本，或上一周期的工具执行结果）

        返回：
            ModelResponse

        异常：
            ModelGatewayError: 后端不可达或响应非法
        """
