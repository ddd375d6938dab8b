"""
排班数据模块 - 工具读写的"排班表"。

- board.py: ShiftBoard，基于 JSON 文件的排班表（班次 / 规则 / 成员），写入为原子替换
"""

from shiftbot.shifts.board import Assignment, BoardData, DayShift, Member, ShiftBoard

__all__ = ["ShiftBoard", "BoardData", "DayShift", "Assignment", "Member"]
