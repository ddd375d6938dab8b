"""
排班表存储模块 (shifts/board.py)

排班表是工具函数唯一的外部状态，文件格式（默认 ~/.shiftbot/shifts.json）：

    {
      "shifts":  {"2026-10-20": {"memberAssignments": [{"userId": "U1", "startTime": "09:00", "endTime": "17:00"}]}},
      "rules":   {"maxPerDay": 3, "minRestHours": 11},
      "members": {"U1": {"name": "Sato", "role": "staff"}}
    }

并发与一致性：
- 所有读写都在同一把 asyncio.Lock 内完成，避免两个 editShiftData 互相覆盖
- 写入先落到同目录的临时文件，再 os.replace 原子替换，崩溃不会留下半个文件

对于 Java 开发者：
- BoardData 等 Pydantic 模型类似 Jackson 映射的 DTO，alias 对应 @JsonProperty
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shiftbot.errors import PersistenceError

T = TypeVar("T")


class Assignment(BaseModel):
    """某一天某位成员的一个班次。"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")


class DayShift(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    member_assignments: list[Assignment] = Field(default_factory=list, alias="memberAssignments")


class Member(BaseModel):
    name: str
    role: str = ""


class BoardData(BaseModel):
    """排班表的完整内容。"""
    shifts: dict[str, DayShift] = Field(default_factory=dict)
    rules: dict[str, Any] = Field(default_factory=dict)
    members: dict[str, Member] = Field(default_factory=dict)


class ShiftBoard:
    """
    基于 JSON 文件的排班表。

    读取：文件不存在时视为空表；内容非法时抛 PersistenceError（不静默丢弃排班数据）。
    修改：通过 update(fn) 在锁内完成 读取 → 修改 → 原子写回。
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def load(self) -> BoardData:
        async with self._lock:
            return self._read()

    async def update(self, fn: Callable[[BoardData], T | Awaitable[T]]) -> T:
        """
        在锁内修改排班表。

        fn 接收当前的 BoardData 并就地修改，其返回值原样返回给调用方。
        fn 抛出异常时不会写回。
        """
        async with self._lock:
            data = self._read()
            result = fn(data)
            if asyncio.iscoroutine(result):
                result = await result
            self._write(data)
            return result

    async def save(self, data: BoardData) -> None:
        async with self._lock:
            self._write(data)

    async def member_name(self, user_id: str) -> str | None:
        """成员 ID → 名字；未登记的成员返回 None。"""
        member = (await self.load()).members.get(user_id)
        return member.name if member else None

    # ------------------------------------------------------------------

    def _read(self) -> BoardData:
        if not self.path.exists():
            return BoardData()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return BoardData.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(f"Failed to read shift board {self.path}: {e}") from e

    def _write(self, data: BoardData) -> None:
        payload = json.dumps(data.model_dump(by_alias=True), ensure_ascii=False, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".shifts-", suffix=".tmp", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write shift board {self.path}: {e}") from e
        logger.debug(f"Shift board saved to {self.path}")
