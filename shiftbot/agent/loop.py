"""
Agent 主循环模块 —— shiftbot 的核心处理引擎。

本模块把一条入站消息变成零到多次带副作用的工具调用，外加一条最终的自然语言回复：
  用户消息 → 持久化 user 轮次 → 读取历史窗口 → 模型推理 → (执行工具 → 模型推理)* → 回复

状态机：
  AwaitingUserInput → Reasoning → (ExecutingTools → Reasoning)* → Done

核心保证：
1. 持久化顺序：user 轮次在调用模型之前写入（崩溃也不会丢失用户消息）；
   之后每个周期依次写入 model 轮次、tool 轮次，单用户内严格按周期顺序追加
2. 必然终止：带工具请求的回复超过 max_iterations 次即以"超出上限"状态结束
3. 同用户串行：每个用户一把 asyncio.Lock，不同用户之间完全并发
4. 失败语义：
   - 工具失败 → 转换为 {name, error} 结果反馈给模型，循环继续
   - ModelGatewayError → 中止本次处理并抛给调用方（已写入的 user 轮次不回滚）
   - 首条 user 轮次的 PersistenceError → 致命，直接抛出
   - 之后轮次的 PersistenceError → 记录日志，本次剩余轮次只在内存中继续
5. 超时：调用方给定的超时只在等待模型或两个周期之间生效，
   正在执行的工具不会被中断（避免副作用执行到一半）

【Java 开发者类比】
- AgentLoop 类似于 Spring 中的核心 Service，持有所有依赖并协调它们
- run() 方法类似于消息监听器（@KafkaListener），持续消费消息
- _locks 类似于按 key 分段的 ReentrantLock（ConcurrentHashMap<String, Lock>）
"""

import asyncio
import weakref

from loguru import logger

from shiftbot.agent.context import ContextBuilder, SessionState
from shiftbot.agent.executor import ToolExecutor
from shiftbot.agent.tools.registry import ToolRegistry
from shiftbot.bus.events import InboundMessage, OutboundMessage
from shiftbot.bus.queue import MessageBus
from shiftbot.errors import AgentTimeoutError, PersistenceError, ShiftbotError
from shiftbot.providers.base import ModelGateway, ModelResponse
from shiftbot.session.manager import HistoryStore
from shiftbot.session.turns import ConversationTurn, Part
from shiftbot.utils.helpers import truncate_string

CAPPED_REPLY = (
    "Sorry, I couldn't finish working through your request within the allowed "
    "number of steps. Please try again, perhaps with a simpler request."
)
TOOLS_ONLY_REPLY = "Tools executed, no further reply."
EMPTY_REPLY = "Sorry, I couldn't come up with a reply. Please try again."
UNAVAILABLE_REPLY = "The system is temporarily unavailable. Please try again in a little while."
NEW_SESSION_REPLY = "New session started. Your conversation history has been cleared."
HELP_REPLY = "Commands:\n/new - Start a new conversation\n/help - Show available commands"


class AgentLoop:
    """
    Agent 主循环（编排器）。

    核心属性：
    - gateway: 模型网关（任何 ModelGateway 实现）
    - history: 会话历史存储
    - tools: 工具注册表（启动时构建，之后只读）
    - context: 上下文构建器（系统提示词策略）
    - bus: 可选的消息总线，run() 从中消费入站消息

    循环参数：
    - max_iterations: 单条消息允许的工具周期上限（默认 10）
    - user_turn_limit / fetch_cap: 历史窗口（按用户轮次数 / 最多读取的原始记录数）
    - timeout: 默认超时（秒），None 表示不限
    """

    def __init__(
        self,
        gateway: ModelGateway,
        history: HistoryStore,
        tools: ToolRegistry,
        context: ContextBuilder | None = None,
        bus: MessageBus | None = None,
        max_iterations: int = 10,
        user_turn_limit: int = 5,
        fetch_cap: int = 50,
        timeout: float | None = None,
    ):
        self.gateway = gateway
        self.history = history
        self.tools = tools
        self.context = context or ContextBuilder()
        self.bus = bus
        self.max_iterations = max_iterations
        self.user_turn_limit = user_turn_limit
        self.fetch_cap = fetch_cap
        self.timeout = timeout

        self.executor = ToolExecutor(tools)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._states: dict[str, SessionState] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def handle_message(self, user_id: str, text: str, timeout: float | None = None) -> str:
        """
        处理一条用户消息并返回回复文本（唯一的入站入口）。

        参数：
            user_id: 用户标识（会话键）
            text: 消息文本
            timeout: 本次调用的超时（秒），None 时使用构造参数中的默认值

        异常：
            ModelGatewayError: 模型后端不可用
            PersistenceError: user 轮次无法写入
            AgentTimeoutError: 超时前未得到最终回复
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        async with lock:
            return await self._process_message(user_id, text, self.timeout if timeout is None else timeout)

    async def _process_message(self, user_id: str, text: str, timeout: float | None) -> str:
        logger.info(f"Processing message from {user_id}: {truncate_string(text, 80)}")

        # 斜杠命令不经过模型
        cmd = text.strip().lower()
        if cmd == "/new":
            await self.history.clear(user_id)
            self._states.pop(user_id, None)
            return NEW_SESSION_REPLY
        if cmd == "/help":
            return HELP_REPLY

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        state = self._states.setdefault(user_id, SessionState())
        state.message_count += 1

        # 步骤1：先持久化 user 轮次（失败即致命，且不计入系统提示词的间隔）
        try:
            user_turn = await self.context.build_user_turn(user_id, text, state)
            user_turn = await self.history.append(user_id, user_turn)
        except Exception:
            state.message_count -= 1
            raise

        # 步骤2：读取有界的历史窗口，拆成"已有历史"和"本次输入"
        history = await self._load_context(user_id, user_turn)
        input_turn = user_turn

        # 步骤3-4：推理循环
        iteration = 0
        tools_ran = False
        capped = False
        # 某个轮次写入失败后，本次剩余轮次只保留在内存中，
        # 持久化的历史不会出现缺少对应 model 轮次的 tool 轮次
        persisting = True
        while True:
            response = await self._converse(history, input_turn.parts, deadline)
            model_turn = response.to_turn()
            if persisting:
                model_turn = await self._append(user_id, model_turn)
                persisting = model_turn.sequence is not None
            history.extend([input_turn, model_turn])

            if not response.has_tool_requests:
                break

            iteration += 1
            if iteration > self.max_iterations:
                logger.warning(f"Reached {self.max_iterations} iterations for {user_id} without completion")
                capped = True
                break

            # 工具不可被中途取消：外层取消时 shield 让已开始的执行跑完
            results = await asyncio.shield(self.executor.execute_all(response.tool_requests))
            tools_ran = True
            input_turn = ConversationTurn.tool(results)
            if persisting:
                input_turn = await self._append(user_id, input_turn)
                persisting = input_turn.sequence is not None

            if deadline is not None and loop.time() >= deadline:
                raise AgentTimeoutError(f"Timed out after {timeout}s ({iteration} tool cycles)")

        # 步骤5：提取回复（已包含在持久化的 model 轮次中，不再单独写入）
        reply = self._extract_reply(response, capped=capped, tools_ran=tools_ran)
        logger.info(f"Response to {user_id}: {truncate_string(reply, 120)}")
        return reply

    # ------------------------------------------------------------------
    # 内部步骤
    # ------------------------------------------------------------------

    async def _load_context(self, user_id: str, user_turn: ConversationTurn) -> list[ConversationTurn]:
        try:
            window = await self.history.load_recent(user_id, self.user_turn_limit, self.fetch_cap)
        except PersistenceError as e:
            logger.warning(f"Failed to load history for {user_id}, continuing without it: {e}")
            return []
        return [t for t in window if (t.sequence or 0) < (user_turn.sequence or 0)]

    async def _converse(
        self,
        history: list[ConversationTurn],
        new_input: tuple[Part, ...],
        deadline: float | None,
    ) -> ModelResponse:
        remaining = None
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise AgentTimeoutError("Timed out before the next model call")
        try:
            return await asyncio.wait_for(
                self.gateway.converse(list(history), self.tools.declarations(), list(new_input)),
                timeout=remaining,
            )
        except asyncio.TimeoutError as e:
            raise AgentTimeoutError("Timed out waiting for the model") from e

    async def _append(self, user_id: str, turn: ConversationTurn) -> ConversationTurn:
        """首条之后的轮次：尽力持久化，失败只记录日志，返回内存中的轮次继续。"""
        try:
            return await self.history.append(user_id, turn)
        except PersistenceError as e:
            logger.warning(f"Failed to persist {turn.role} turn for {user_id}: {e}")
            return turn

    @staticmethod
    def _extract_reply(response: ModelResponse, capped: bool, tools_ran: bool) -> str:
        if capped:
            return CAPPED_REPLY
        texts = [t.strip() for t in response.text_parts if t and t.strip()]
        if texts:
            return "\n".join(texts)
        return TOOLS_ONLY_REPLY if tools_ran else EMPTY_REPLY

    # ------------------------------------------------------------------
    # 消息总线消费
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        持续消费消息总线上的入站消息。

        每条消息派生一个任务：不同用户并发处理，同一用户由会话锁串行化。
        """
        if self.bus is None:
            raise RuntimeError("AgentLoop.run() requires a message bus")
        self._running = True
        logger.info("Agent loop started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(self._dispatch(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def stop(self) -> None:
        self._running = False
        logger.info("Agent loop stopping")

    async def _dispatch(self, msg: InboundMessage) -> None:
        try:
            content = await self.handle_message(msg.sender_id, msg.content)
        except ShiftbotError as e:
            logger.error(f"Error processing message from {msg.sender_id}: {e}")
            content = UNAVAILABLE_REPLY
        except Exception:
            logger.exception(f"Unexpected error processing message from {msg.sender_id}")
            content = UNAVAILABLE_REPLY

        await self.bus.publish_outbound(OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=content,
            reply_to=msg.metadata.get("reply_token"),
            metadata=msg.metadata or {},
        ))
