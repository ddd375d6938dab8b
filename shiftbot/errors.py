"""
异常类型定义模块 - shiftbot 的统一错误分类。

错误按"影响范围"分为两类：
- 只影响单次工具调用的错误（ToolExecutionError、UnknownToolError）：
  由 ToolExecutor 在本地转换为 {name, error} 结果回传给模型，不会向外抛出
- 影响整个推理过程的错误（ModelGatewayError、首条用户消息的 PersistenceError、
  AgentTimeoutError）：向调用方抛出，由渠道层转换成友好的兜底回复

【Java 开发者类比】
- ShiftbotError 相当于项目级的 RuntimeException 基类
- 各子类相当于按领域划分的业务异常
"""


class ShiftbotError(Exception):
    """所有 shiftbot 异常的基类。"""


class PersistenceError(ShiftbotError):
    """会话历史存储不可用（读写失败）。"""


class ModelGatewayError(ShiftbotError):
    """调用语言模型后端失败（网络错误或响应格式非法）。"""


class DuplicateToolError(ShiftbotError):
    """工具名称重复注册。"""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


class ToolExecutionError(ShiftbotError):
    """工具处理函数执行时抛出的意外异常。"""

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name
        self.message = message


class UnknownToolError(ShiftbotError):
    """模型请求了一个未注册的工具。"""

    def __init__(self, name: str):
        super().__init__("unknown tool")
        self.name = name


class AgentTimeoutError(ShiftbotError):
    """handle_message 超过调用方给定的超时时间仍未得到最终回复。"""
