"""
模型网关模块（providers 包）。

本模块是 shiftbot 与语言模型后端之间的桥梁层：
- base.py             : ModelGateway 抽象基类和 ModelResponse 数据结构（类似 Java 的接口 + DTO）
- litellm_provider.py : 基于 LiteLLM 的实现，一套代码对接 Gemini / OpenAI / Anthropic 等后端

AgentLoop 只依赖 ModelGateway 接口，测试中可替换为脚本化的假实现。
"""

from shiftbot.providers.base import ModelGateway, ModelResponse
from shiftbot.providers.litellm_provider import LiteLLMGateway

__all__ = ["ModelGateway", "ModelResponse", "LiteLLMGateway"]
