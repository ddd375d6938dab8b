"""
排班领域工具模块 (agent/tools/shift.py)

模块职责：
    提供排班助手可调用的四个领域工具，全部基于 ShiftBoard：
      - getCurrentDate：当前日期时间（按配置的时区，默认 Asia/Tokyo）
      - getShiftData：查询某一天的排班
      - getRuleData：查询排班规则
      - editShiftData：为成员增加 / 移除某一天的班次

返回值约定：
    业务上可预期的情况（当天无人排班、成员已在班上、缺少时间段等）返回描述性文本，
    由模型据此组织回复；只有存储故障等意外情况才抛出异常，由 ToolExecutor 转换为 error 结果。
"""

from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from shiftbot.agent.tools.base import Tool
from shiftbot.shifts.board import Assignment, BoardData, DayShift, ShiftBoard

DATE_PATTERN = r"\d{4}-\d{2}-\d{2}"
TIME_PATTERN = r"\d{1,2}:\d{2}"


class GetCurrentDateTool(Tool):
    """返回当前的日期和时间。"""

    def __init__(self, timezone: str = "Asia/Tokyo", clock: Callable[[ZoneInfo], datetime] | None = None):
        self._tz = ZoneInfo(timezone)
        self._clock = clock or (lambda tz: datetime.now(tz))

    @property
    def name(self) -> str:
        return "getCurrentDate"

    @property
    def description(self) -> str:
        return (
            "Get the current date and time. Use this whenever the member mentions a "
            "relative date such as 'today', 'tomorrow' or 'next Friday'."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, **kwargs: Any) -> str:
        now = self._clock(self._tz)
        return f"Current time ({self._tz.key}): {now:%Y-%m-%d} {now:%H:%M} ({now:%A})"


class _BoardTool(Tool):
    def __init__(self, board: ShiftBoard):
        self._board = board

    def _name_of(self, data: BoardData, user_id: str) -> str:
        member = data.members.get(user_id)
        return member.name if member else "unknown member"


class GetShiftDataTool(_BoardTool):
    """查询某一天的排班情况。"""

    @property
    def name(self) -> str:
        return "getShiftData"

    @property
    def description(self) -> str:
        return (
            "Look up the shift schedule for one day. Use it when a member asks to cover "
            "or drop a shift, and to check a member's start and end times."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "date": {
                    "type": "string",
                    "description": "Date to look up (YYYY-MM-DD)",
                    "pattern": DATE_PATTERN,
                },
            },
            "required": ["date"],
        }

    async def execute(self, date: str, **kwargs: Any) -> str:
        data = await self._board.load()
        day = data.shifts.get(date)
        if day is None or not day.member_assignments:
            return f"Nobody is on shift on {date} (understaffed)."

        members = ", ".join(
            f"{self._name_of(data, a.user_id)}: {a.start_time}-{a.end_time}"
            for a in day.member_assignments
        )
        return f"Shifts on {date}: {members} (total {len(day.member_assignments)})"


class GetRuleDataTool(_BoardTool):
    """查询排班规则。"""

    @property
    def name(self) -> str:
        return "getRuleData"

    @property
    def description(self) -> str:
        return (
            "Look up the shift rules. Use it when a member asks to cover a shift, to decide "
            "whether the rules allow it."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, **kwargs: Any) -> str:
        data = await self._board.load()
        if not data.rules:
            return "No shift rules have been configured."
        lines = [f"- {key}: {value}" for key, value in data.rules.items()]
        return "Shift rules:\n" + "\n".join(lines)


class EditShiftDataTool(_BoardTool):
    """
    为成员增加或移除某一天的班次。

    - add：成员当天已有班次时拒绝；必须提供 startTime 和 endTime
    - remove：成员当天没有班次时拒绝；当天移除后无人时删除该日期
    """

    @property
    def name(self) -> str:
        return "editShiftData"

    @property
    def description(self) -> str:
        return (
            "Edit the shift schedule. Use 'add' when a member's request to work is accepted, "
            "and 'remove' when an absence request is accepted. Only call after the member confirms."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "date": {
                    "type": "string",
                    "description": "Date to edit (YYYY-MM-DD)",
                    "pattern": DATE_PATTERN,
                },
                "action": {
                    "type": "string",
                    "enum": ["add", "remove"],
                    "description": "'add' for a request to work, 'remove' for an absence request",
                },
                "userId": {
                    "type": "string",
                    "description": "The member's ID",
                },
                "startTime": {
                    "type": "string",
                    "description": "Shift start time (HH:MM), required for 'add'",
                    "pattern": TIME_PATTERN,
                },
                "endTime": {
                    "type": "string",
                    "description": "Shift end time (HH:MM), required for 'add'",
                    "pattern": TIME_PATTERN,
                },
            },
            "required": ["date", "action", "userId"],
        }

    async def execute(
        self,
        date: str,
        action: str,
        userId: str,
        startTime: str | None = None,
        endTime: str | None = None,
        **kwargs: Any,
    ) -> str:
        if action == "add":
            return await self._board.update(lambda data: self._add(data, date, userId, startTime, endTime))
        return await self._board.update(lambda data: self._remove(data, date, userId))

    def _add(self, data: BoardData, date: str, user_id: str, start: str | None, end: str | None) -> str:
        name = self._name_of(data, user_id)
        day = data.shifts.setdefault(date, DayShift())
        for a in day.member_assignments:
            if a.user_id == user_id:
                return f"{name} is already on shift on {date} ({a.start_time}-{a.end_time})."
        if not start or not end:
            if not day.member_assignments:
                del data.shifts[date]
            return "Adding a shift requires both startTime and endTime."

        day.member_assignments.append(Assignment(user_id=user_id, start_time=start, end_time=end))
        return f"Added {name}'s shift on {date} ({start}-{end}). Now {len(day.member_assignments)} on shift."

    def _remove(self, data: BoardData, date: str, user_id: str) -> str:
        name = self._name_of(data, user_id)
        day = data.shifts.get(date)
        index = next(
            (i for i, a in enumerate(day.member_assignments) if a.user_id == user_id),
            None,
        ) if day else None
        if index is None:
            return f"{name} is not on shift on {date}."

        removed = day.member_assignments.pop(index)
        remaining = len(day.member_assignments)
        if remaining == 0:
            del data.shifts[date]
            tail = "The day is now unstaffed."
        else:
            tail = f"{remaining} remain on shift."
        return f"Removed {name}'s shift on {date} ({removed.start_time}-{removed.end_time}). {tail}"
