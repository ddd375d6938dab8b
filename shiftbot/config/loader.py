"""
配置加载工具模块 (config/loader.py)
=================================
- 配置文件默认路径: ~/.shiftbot/config.json
- 文件使用 camelCase，Python 内部使用 snake_case，加载 / 保存时自动转换
- 请求头等"值即数据"的字典（extraHeaders）保持键名原样

对于 Java 开发者：
- camelCase ↔ snake_case 转换类似于 Jackson 的 @JsonNaming
"""

import json
from pathlib import Path
from typing import Any

from shiftbot.config.schema import Config

# 这些字段的子键是用户数据，不做命名转换
_VERBATIM_KEYS = {"extra_headers", "extraHeaders"}


def get_config_path() -> Path:
    """获取默认配置文件路径: ~/.shiftbot/config.json"""
    return Path.home() / ".shiftbot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    从 JSON 文件加载配置，文件不存在或损坏时返回默认配置。

    参数:
        config_path: 可选的配置文件路径。为 None 时使用默认路径。
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            # 配置文件损坏时降级使用默认配置，而非直接报错退出
            print(f"Warning: Failed to load config from {path}: {e}")
            print("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """将配置对象以 camelCase 键名保存为 JSON 文件。"""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def convert_keys(data: Any) -> Any:
    """
    递归地将字典中所有 camelCase 键名转换为 snake_case。

    示例: {"maxIterations": 5} → {"max_iterations": 5}
    """
    if isinstance(data, dict):
        return {
            camel_to_snake(k): (v if k in _VERBATIM_KEYS else convert_keys(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """递归地将字典中所有 snake_case 键名转换为 camelCase。"""
    if isinstance(data, dict):
        return {
            snake_to_camel(k): (v if k in _VERBATIM_KEYS else convert_to_camel(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """例: "maxTokens" → "max_tokens", "historyDir" → "history_dir" """
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """例: "max_tokens" → "maxTokens" """
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
