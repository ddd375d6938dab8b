"""
会话轮次数据模型 - 对话历史中持久化的最小单元。

本模块定义了 Agent 与会话存储之间流转的全部数据结构：
- ToolInvocationRequest：模型发出的工具调用请求 {id, name, args}
- ToolInvocationResult：工具执行结果 {id, name, result | error}，每个请求必有一个结果
- Part：内容片段，三选一：文本 / 工具调用请求 / 工具执行结果
- ConversationTurn：一个带角色（user / model / tool）的轮次，由有序的 Part 列表组成

序列化格式（每个轮次对应 JSONL 中的一行）：
    {"role": "model", "sequence": 3, "timestamp": "...",
     "parts": [{"text": "..."}, {"toolInvocationRequest": {"id": ..., "name": ..., "args": {...}}}]}

【Java 开发者类比】
- frozen dataclass 相当于 Java 的 record：构造后不可修改
- Part 相当于一个 tagged union（sealed interface + 三个实现类）
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Literal

Role = Literal["user", "model", "tool"]
ROLES: tuple[str, ...] = ("user", "model", "tool")


def new_call_id() -> str:
    """为缺少 ID 的工具调用生成一个唯一 ID。"""
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ToolInvocationRequest:
    """模型请求调用的一个工具。id 用于把结果与请求一一对应。"""
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_call_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": self.args}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolInvocationRequest":
        return cls(name=data["name"], args=data.get("args") or {}, id=data.get("id") or new_call_id())


@dataclass(frozen=True)
class ToolInvocationResult:
    """
    一次工具调用的结果。

    result 和 error 二选一：
    - 正常执行：result 为字符串或可 JSON 序列化的对象
    - 执行失败 / 未知工具：error 为错误描述
    """
    name: str
    id: str = ""
    result: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.is_error:
            data["error"] = self.error
        else:
            data["result"] = self.result
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolInvocationResult":
        return cls(
            name=data["name"],
            id=data.get("id", ""),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class Part:
    """内容片段。text / tool_request / tool_result 三者恰好有一个非空。"""
    text: str | None = None
    tool_request: ToolInvocationRequest | None = None
    tool_result: ToolInvocationResult | None = None

    @classmethod
    def of_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def of_request(cls, request: ToolInvocationRequest) -> "Part":
        return cls(tool_request=request)

    @classmethod
    def of_result(cls, result: ToolInvocationResult) -> "Part":
        return cls(tool_result=result)

    def to_dict(self) -> dict[str, Any]:
        if self.tool_request is not None:
            return {"toolInvocationRequest": self.tool_request.to_dict()}
        if self.tool_result is not None:
            return {"toolResult": self.tool_result.to_dict()}
        return {"text": self.text or ""}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Part":
        if "toolInvocationRequest" in data:
            return cls(tool_request=ToolInvocationRequest.from_dict(data["toolInvocationRequest"]))
        if "toolResult" in data:
            return cls(tool_result=ToolInvocationResult.from_dict(data["toolResult"]))
        if "text" in data:
            return cls(text=data["text"])
        raise ValueError(f"Unrecognized part: {data!r}")


@dataclass(frozen=True)
class ConversationTurn:
    """
    会话中的一个轮次。

    属性:
        role: 角色（user / model / tool）
        parts: 有序的内容片段
        sequence: 会话内单调递增的序号，由存储层在 append 时分配（未持久化时为 None）
        timestamp: 存储层写入时的 ISO 8601 时间戳
    """
    role: Role
    parts: tuple[Part, ...] = ()
    sequence: int | None = None
    timestamp: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid role: {self.role!r}")
        # 允许传入 list，统一转成 tuple 保证不可变
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def user(cls, *texts: str) -> "ConversationTurn":
        return cls(role="user", parts=tuple(Part.of_text(t) for t in texts))

    @classmethod
    def tool(cls, results: list[ToolInvocationResult]) -> "ConversationTurn":
        return cls(role="tool", parts=tuple(Part.of_result(r) for r in results))

    @property
    def texts(self) -> list[str]:
        return [p.text for p in self.parts if p.text is not None]

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        return [p.tool_request for p in self.parts if p.tool_request is not None]

    @property
    def tool_results(self) -> list[ToolInvocationResult]:
        return [p.tool_result for p in self.parts if p.tool_result is not None]

    def stamped(self, sequence: int, timestamp: str) -> "ConversationTurn":
        """返回带有序号和时间戳的副本（原对象保持不变）。"""
        return replace(self, sequence=sequence, timestamp=timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "parts": [p.to_dict() for p in self.parts],
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=data["role"],
            parts=tuple(Part.from_dict(p) for p in data.get("parts", [])),
            sequence=data.get("sequence"),
            timestamp=data.get("timestamp"),
        )
