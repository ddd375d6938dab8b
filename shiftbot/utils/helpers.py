"""
工具函数集合 - shiftbot 项目全局通用的辅助函数。

- ensure_dir：路径管理
- truncate_string / safe_filename / to_text：字符串工具
"""

import json
from pathlib import Path
from typing import Any


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """截断字符串到指定最大长度（包含后缀），用于日志预览。"""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_filename(name: str) -> str:
    """将用户 ID 转换为安全的文件名（替换 < > : " / \\ | ? * 为下划线）。"""
    unsafe = '<>:"/\\|?*'
    for char in unsafe:
        name = name.replace(char, "_")
    return name.strip()


def to_text(value: Any) -> str:
    """字符串原样返回，其它对象序列化为 JSON（用于展示工具参数和结果）。"""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)
