"""
工具函数模块 - 提供 shiftbot 项目全局通用的辅助函数。
"""

from shiftbot.utils.helpers import ensure_dir, safe_filename, truncate_string

__all__ = ["ensure_dir", "safe_filename", "truncate_string"]
