"""
配置数据模型定义 (config/schema.py)
=================================
使用 Pydantic 定义 shiftbot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── agent     - 编排器参数（模型、温度、迭代上限、历史窗口、超时、系统提示词）
├── provider  - LLM 后端连接参数（API Key、API Base、额外请求头）
├── storage   - 会话历史目录
├── shifts    - 排班表文件与时区
└── line      - LINE 渠道（access token、广播群组）

对于 Java 开发者：
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class AgentConfig(BaseModel):
    """
    编排器配置。

    - max_iterations: 单条消息允许的工具周期上限（防止模型无限请求工具）
    - user_turn_limit / fetch_cap: 历史窗口（最近 N 个用户回合 / 最多读取的记录数）
    - system_prompt_interval: 每隔多少条消息重新附带一次系统提示词
    """
    model: str = "gemini/gemini-2.5-flash"
    temperature: float = 0.2
    max_tokens: int = 4096
    max_iterations: int = 10
    user_turn_limit: int = 5
    fetch_cap: int = 50
    timeout_seconds: float | None = None
    system_prompt: str | None = None  # 为空时使用内置的排班助手提示词
    system_prompt_interval: int = 3


class ProviderConfig(BaseModel):
    """LLM 后端连接参数；api_key 为空时由 LiteLLM 从环境变量读取（如 GEMINI_API_KEY）。"""
    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] | None = None


class StorageConfig(BaseModel):
    history_dir: str = "~/.shiftbot/history"


class ShiftsConfig(BaseModel):
    board_path: str = "~/.shiftbot/shifts.json"
    timezone: str = "Asia/Tokyo"


class LineConfig(BaseModel):
    """LINE 渠道配置。"""
    enabled: bool = False
    channel_access_token: str = ""
    broadcast_to: str = ""  # shiftCallOut 广播的目标群组 ID
    api_base: str | None = None
    allow_from: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """
    shiftbot 根配置类。

    除了从 JSON 文件加载外，还支持环境变量覆盖：
    - 环境变量前缀: SHIFTBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: SHIFTBOT_AGENT__MAX_ITERATIONS=5 可覆盖 agent.max_iterations
    """
    agent: AgentConfig = Field(default_factory=AgentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    shifts: ShiftsConfig = Field(default_factory=ShiftsConfig)
    line: LineConfig = Field(default_factory=LineConfig)

    @property
    def history_path(self) -> Path:
        return Path(self.storage.history_dir).expanduser()

    @property
    def board_path(self) -> Path:
        return Path(self.shifts.board_path).expanduser()

    model_config = ConfigDict(
        env_prefix="SHIFTBOT_",
        env_nested_delimiter="__",
    )
