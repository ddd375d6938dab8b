"""
工具注册表模块 (agent/tools/registry.py)

模块职责：
    维护 工具名称 → (声明, 处理函数) 的映射，启动时一次性构建，之后只读。
    取代"按字符串工具名写一大段 if/switch"的分发方式：执行器只需 handler_for(name)。

在架构中的位置：
    1. 启动时，AgentLoop 把所有领域工具注册到 registry
    2. 每次调用模型前，declarations() 提供呈现给模型的工具清单
    3. 模型返回工具调用请求时，ToolExecutor 通过 handler_for(name) 取得处理函数

设计模式对比（Java 视角）：
    类似于 Spring 的 BeanFactory / ServiceLocator：
    - register() 相当于注册一个 Bean（重名直接报错，而不是静默覆盖）
    - handler_for() 相当于 getBean()
"""

from shiftbot.agent.tools.base import FunctionTool, Handler, Tool, ToolDeclaration
from shiftbot.errors import DuplicateToolError


class ToolRegistry:
    """
    Agent 工具注册表。

    注册完成后只有读操作，可被多个用户的并发请求安全共享。
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, declaration: ToolDeclaration, handler: Handler) -> None:
        """
        注册一个工具。

        参数:
            declaration: 工具声明
            handler: 处理函数 handler(args) -> result，同步或异步均可

        异常:
            DuplicateToolError: 同名工具已注册
        """
        self.add(FunctionTool(declaration, handler))

    def add(self, tool: Tool) -> None:
        """注册一个 Tool 实例（参数会先按其 schema 校验再执行）。"""
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool

    def declarations(self) -> tuple[ToolDeclaration, ...]:
        """返回呈现给模型的全部工具声明（按注册顺序，不可变）。"""
        return tuple(tool.declaration for tool in self._tools.values())

    def handler_for(self, name: str) -> Handler | None:
        """按名称查找处理函数，未知工具返回 None。"""
        tool = self._tools.get(name)
        return tool.invoke if tool else None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
