"""
配置模块 (config)
================
- schema.py: Pydantic 配置模型（默认值 + 环境变量覆盖）
- loader.py: 读写 ~/.shiftbot/config.json（camelCase ↔ snake_case 自动转换）
"""

from shiftbot.config.loader import get_config_path, load_config, save_config
from shiftbot.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
