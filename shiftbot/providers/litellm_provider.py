"""
LiteLLM 模型网关实现模块 —— 多 LLM 服务商的统一调用层。

本模块是 ModelGateway 的生产实现，通过 LiteLLM 把会话轮次发送给任意后端
（Gemini、OpenAI、Anthropic 等），并把响应解析回统一的 ModelResponse。

LiteLLM 是什么？
  LiteLLM 把 100+ 家 LLM 服务商的 API 统一为 OpenAI 兼容格式。
  类比 Java 世界：LiteLLM 类似于 JDBC —— 一套接口，多种数据库驱动。
  模型名带服务商前缀即可路由，如 "gemini/gemini-2.5-flash"、"openai/gpt-4o"。

轮次 → OpenAI 消息格式的映射：
  user  轮次 → {"role": "user", "content": "..."}
  model 轮次 → {"role": "assistant", "content": "...", "tool_calls": [...]}
  tool  轮次 → 每个结果一条 {"role": "tool", "tool_call_id": ..., "content": "{\"result\": ...}"}

数据流：
  AgentLoop → converse() → _build_messages() → litellm.acompletion() → LLM API
                                                          ↓
  AgentLoop ← ModelResponse ← _parse_response() ←─────────┘
"""

import json
from typing import Any, Sequence

import litellm
from litellm import acompletion

from shiftbot.errors import ModelGatewayError
from shiftbot.providers.base import ModelGateway, ModelResponse
from shiftbot.session.turns import ConversationTurn, Part, ToolInvocationRequest, ToolInvocationResult


class LiteLLMGateway(ModelGateway):
    """
    基于 LiteLLM 的模型网关。

    构造参数：
        model: 模型名称（带服务商前缀，如 "gemini/gemini-2.5-flash"）
        api_key: API 密钥（为空时由 LiteLLM 从环境变量读取，如 GEMINI_API_KEY）
        api_base: 自定义 API 基础 URL（用于代理 / 网关 / 本地部署）
        temperature: 采样温度（排班对话需要稳定输出，默认 0.2）
        max_tokens: 单次回复的最大 token 数
        extra_headers: 额外的 HTTP 请求头
    """

    def __init__(
        self,
        model: str = "gemini/gemini-2.5-flash",
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        extra_headers: dict[str, str] | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_headers = extra_headers or {}

        # 禁用 LiteLLM 的调试日志输出（默认很啰嗦）
        litellm.suppress_debug_info = True
        # 自动丢弃服务商不支持的参数
        litellm.drop_params = True

    async def converse(
        self,
        history: Sequence[ConversationTurn],
        tool_declarations: Sequence[Any],
        new_input: Sequence[Part],
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self._build_messages(history, new_input),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tool_declarations:
            kwargs["tools"] = [d.to_schema() for d in tool_declarations]
            kwargs["tool_choice"] = "auto"

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            raise ModelGatewayError(f"Error calling model {self.model}: {e}") from e
        return self._parse_response(response)

    # ------------------------------------------------------------------
    # 请求构建
    # ------------------------------------------------------------------

    def _build_messages(
        self,
        history: Sequence[ConversationTurn],
        new_input: Sequence[Part],
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for turn in history:
            messages.extend(self._turn_to_messages(turn))

        # 新输入：工具结果以 tool 消息发送，其余视为用户输入
        role = "tool" if any(p.tool_result is not None for p in new_input) else "user"
        messages.extend(self._turn_to_messages(ConversationTurn(role=role, parts=tuple(new_input))))
        return messages

    @staticmethod
    def _turn_to_messages(turn: ConversationTurn) -> list[dict[str, Any]]:
        text = "\n".join(t for t in turn.texts if t)

        if turn.role == "user":
            return [{"role": "user", "content": text}]

        if turn.role == "model":
            msg: dict[str, Any] = {"role": "assistant", "content": text or None}
            requests = turn.tool_requests
            if requests:
                msg["tool_calls"] = [
                    {
                        "id": r.id,
                        "type": "function",
                        "function": {
                            "name": r.name,
                            "arguments": json.dumps(r.args, ensure_ascii=False),
                        },
                    }
                    for r in requests
                ]
            return [msg]

        return [
            {
                "role": "tool",
                "tool_call_id": r.id,
                "name": r.name,
                "content": _result_content(r),
            }
            for r in turn.tool_results
        ]

    # ------------------------------------------------------------------
    # 响应解析
    # ------------------------------------------------------------------

    def _parse_response(self, response: Any) -> ModelResponse:
        try:
            choice = response.choices[0]
            message = choice.message
        except (AttributeError, IndexError, TypeError) as e:
            raise ModelGatewayError(f"Invalid response from model {self.model}: {e}") from e

        parts: list[Part] = []
        if message.content:
            parts.append(Part.of_text(message.content))

        for tc in getattr(message, "tool_calls", None) or []:
            args = tc.function.arguments
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args else {}
                except json.JSONDecodeError:
                    args = {"raw": args}
            if tc.id:
                request = ToolInvocationRequest(name=tc.function.name, args=args or {}, id=tc.id)
            else:
                request = ToolInvocationRequest(name=tc.function.name, args=args or {})
            parts.append(Part.of_request(request))

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return ModelResponse(
            parts=tuple(parts),
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )


def _result_content(result: ToolInvocationResult) -> str:
    payload = {"error": result.error} if result.is_error else {"result": result.result}
    return json.dumps(payload, ensure_ascii=False, default=str)
