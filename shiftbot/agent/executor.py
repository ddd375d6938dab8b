"""
工具执行器模块 (agent/executor.py)

模块职责：
    执行一个推理周期内模型请求的全部工具调用，保证：
    1. 结果与请求一一对应、顺序一致（每个请求恰好产出一个结果）
    2. 同一批次内同名工具只真正执行一次（先到先得），重复请求得到"已跳过"的合成结果
    3. 工具失败（抛异常 / 未知工具）被就地转换为 {name, error} 结果，绝不向外抛出

为什么要去重：
    模型在一次回复中经常重复请求同一个工具。对 editShiftData 这类有副作用的工具，
    重复执行会导致重复排班；用合成结果告知模型"已执行过"，而不是静默丢弃。
"""

from loguru import logger

from shiftbot.agent.tools.base import Handler
from shiftbot.agent.tools.registry import ToolRegistry
from shiftbot.errors import ToolExecutionError, UnknownToolError
from shiftbot.session.turns import ToolInvocationRequest, ToolInvocationResult
from shiftbot.utils.helpers import truncate_string

SKIPPED_RESULT = "skipped — already executed this cycle"


class ToolExecutor:
    """
    按模型给出的顺序串行执行工具调用。

    串行而非并行：工具之间可能有依赖（如先 getShiftData 再 editShiftData），
    且领域存储的写操作需要保持顺序。
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute_all(self, requests: list[ToolInvocationRequest]) -> list[ToolInvocationResult]:
        """
        执行一批工具调用请求。

        参数:
            requests: 模型本次回复中的全部工具调用请求（按出现顺序）

        返回:
            与 requests 一一对应的结果列表
        """
        executed_names: set[str] = set()
        results: list[ToolInvocationResult] = []

        for request in requests:
            if request.name in executed_names:
                logger.warning(f"Tool {request.name} already executed this cycle, skipping")
                results.append(ToolInvocationResult(name=request.name, id=request.id, result=SKIPPED_RESULT))
                continue

            handler = self.registry.handler_for(request.name)
            if handler is None:
                error = UnknownToolError(request.name)
                logger.warning(f"Model requested unknown tool: {request.name}")
                results.append(ToolInvocationResult(name=request.name, id=request.id, error=str(error)))
                continue

            # 只要处理函数被调用过（无论成功与否）就记为已执行，避免重复的副作用
            executed_names.add(request.name)
            try:
                value = await self._invoke(request, handler)
            except ToolExecutionError as e:
                results.append(ToolInvocationResult(name=request.name, id=request.id, error=e.message))
            else:
                results.append(ToolInvocationResult(name=request.name, id=request.id, result=value))

        return results

    async def _invoke(self, request: ToolInvocationRequest, handler: Handler):
        logger.info(f"Tool call: {request.name}({truncate_string(str(request.args), 200)})")
        try:
            return await handler(request.args)
        except Exception as e:
            logger.error(f"Tool {request.name} failed: {e}")
            raise ToolExecutionError(request.name, str(e) or type(e).__name__) from e
