"""
工具基类模块 (agent/tools/base.py)

模块职责：
    定义工具的声明（ToolDeclaration）与抽象基类（Tool）。
    - ToolDeclaration：{name, description, parameter_schema}，启动时注册，之后不可变
    - Tool：声明 + 异步 execute()，基类负责按 JSON Schema 校验模型传入的参数
    - FunctionTool：把"声明 + 普通函数"包装成 Tool，供 ToolRegistry.register() 使用

在架构中的位置：
    ToolRegistry 持有 名称 → 处理函数 的映射，ToolExecutor 通过 registry 查找并执行。
    处理函数签名统一为 handler(args: dict) -> result（同步或异步均可），
    result 为字符串或可 JSON 序列化的对象。

设计模式对比（Java 视角）：
    相当于 Java 中的 interface + 模板方法模式：
    - validate_params() 是模板方法，提供通用的 JSON Schema 校验逻辑
    - execute() 是子类实现的业务方法
"""

import inspect
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

Handler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ToolDeclaration:
    """呈现给模型的工具声明。"""
    name: str
    description: str
    parameter_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_schema(self) -> dict[str, Any]:
        """转换为 OpenAI Function Calling 格式（LiteLLM 对所有后端统一使用该格式）。"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


class Tool(ABC):
    """
    Agent 工具的抽象基类。

    子类必须实现：
      - name / description / parameters：工具声明的三个字段
      - execute(**kwargs)：实际执行逻辑（异步）

    业务上可预期的情况（如"该日期没有排班"）应返回描述性字符串，
    只有意外故障才抛出异常（由 ToolExecutor 捕获）。
    """

    # JSON Schema 类型 -> Python 类型的映射表，用于参数校验
    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        pass

    @property
    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(self.name, self.description, self.parameters)

    async def invoke(self, args: dict[str, Any]) -> Any:
        """
        校验参数后执行工具（注册到 ToolRegistry 的处理函数）。

        异常:
            ValueError: 参数不符合 schema
        """
        args = args or {}
        errors = self.validate_params(args)
        if errors:
            raise ValueError(f"Invalid parameters for tool '{self.name}': " + "; ".join(errors))
        return await self.execute(**args)

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """根据 JSON Schema 校验工具参数，返回错误信息列表（空列表表示通过）。"""
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        t, label = schema.get("type"), path or "parameter"
        # bool 是 int 的子类，integer / number 需要单独排除
        if t in ("integer", "number") and isinstance(val, bool):
            return [f"{label} should be {t}"]
        if t in self._TYPE_MAP and not isinstance(val, self._TYPE_MAP[t]):
            return [f"{label} should be {t}"]

        errors = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}")
        if t == "string" and "pattern" in schema:
            if not re.fullmatch(schema["pattern"], val):
                errors.append(f"{label} must match {schema['pattern']}")
        if t == "object":
            props = schema.get("properties", {})
            for k in schema.get("required", []):
                if k not in val:
                    errors.append(f"missing required {path + '.' + k if path else k}")
            for k, v in val.items():
                if k in props:
                    errors.extend(self._validate(v, props[k], path + '.' + k if path else k))
        if t == "array" and "items" in schema:
            for i, item in enumerate(val):
                errors.extend(self._validate(item, schema["items"], f"{path}[{i}]" if path else f"[{i}]"))
        return errors


class FunctionTool(Tool):
    """把一个 ToolDeclaration 和一个普通处理函数组合成 Tool。"""

    def __init__(self, declaration: ToolDeclaration, handler: Handler):
        self._declaration = declaration
        self._handler = handler

    @property
    def name(self) -> str:
        return self._declaration.name

    @property
    def description(self) -> str:
        return self._declaration.description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._declaration.parameter_schema

    @property
    def declaration(self) -> ToolDeclaration:
        return self._declaration

    async def execute(self, **kwargs: Any) -> Any:
        result = self._handler(kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
