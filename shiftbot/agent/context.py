"""
上下文构建器模块 —— 负责把一条入站消息组装成要持久化的 user 轮次。

与通用聊天机器人不同，排班助手的系统提示词（处理步骤、判断标准、注意事项）
直接作为 user 轮次的第一个文本片段写入历史，而不是每次都单独发送：
- 会话的第一条消息、以及之后每隔 interval 条消息，附带一次系统提示词
- 其余消息只附带"成员名 / ID / 消息内容"三行

计数器属于每个用户的 SessionState，由 AgentLoop 在该用户的会话锁内维护，
不存在任何模块级的全局计数器，不同用户的请求可以安全并发。
"""

from dataclasses import dataclass
from typing import Awaitable, Callable

from shiftbot.session.turns import ConversationTurn

MemberNameResolver = Callable[[str], Awaitable[str | None]]

SHIFT_MANAGER_PROMPT = """You are the shift manager for this team. Talk with members politely and make sure you understand what they want.

## Procedure
1. Gather the information you need with tools first.
   - Dates: always call getCurrentDate to learn today's year, month and day, and resolve relative dates ("tomorrow", "next Friday") from it.
   - Shift requests: call getShiftData for the date in question every time a member asks. An empty schedule means nobody is on shift.
   - Covering someone else's shift: call getRuleData to check the rules.
2. If information is still missing, ask the member.
3. For add / remove requests, summarize what you will do and ask the member to confirm.
4. Only after the member confirms, call editShiftData to update the schedule (use the member ID below).

## Judgement
- Covering a shift: politely decline when the day is already fully staffed.
- Rule violations: explain which rule prevents it and decline.
- Absence requests: accept them and remove the member from that day.

## Your reply should include
- What you checked (date, current staffing, applicable rules)
- Why you decided as you did
- What you changed (shift added / removed)
- A word of thanks

## Notes
- Do not call the same tool more than once in a single reply.
- Use the member ID ({member_id}) for editShiftData.
- Always address the member by name ({member_name})."""


@dataclass
class SessionState:
    """单个用户在本进程内的会话状态（不持久化）。"""
    message_count: int = 0


class ContextBuilder:
    """
    把入站消息转换为 user 轮次。

    属性：
        system_prompt: 系统提示词模板（支持 {member_name} / {member_id} 占位符），None 表示不附带
        interval: 系统提示词的重发间隔（按该用户的消息条数计）
        resolve_member_name: 可选的 成员 ID → 名字 解析函数；配置后消息以三行格式呈现
    """

    UNKNOWN_MEMBER = "unknown member"

    def __init__(
        self,
        system_prompt: str | None = None,
        interval: int = 3,
        resolve_member_name: MemberNameResolver | None = None,
    ):
        self.system_prompt = system_prompt
        self.interval = interval
        self.resolve_member_name = resolve_member_name

    def should_include_system_prompt(self, state: SessionState) -> bool:
        if not self.system_prompt:
            return False
        if state.message_count == 1:
            return True
        return self.interval > 0 and state.message_count % self.interval == 0

    async def build_user_turn(self, user_id: str, text: str, state: SessionState) -> ConversationTurn:
        """
        构建 user 轮次（调用前 state.message_count 应已包含本条消息）。

        返回的轮次尚未持久化（sequence 为 None）。
        """
        if self.resolve_member_name is None:
            body = text
            member_name = user_id
        else:
            member_name = await self.resolve_member_name(user_id) or self.UNKNOWN_MEMBER
            body = f"Member: {member_name}\nID: {user_id}\nMessage: {text}"

        if self.should_include_system_prompt(state):
            prompt = (
                self.system_prompt
                .replace("{member_name}", member_name)
                .replace("{member_id}", user_id)
            )
            return ConversationTurn.user(prompt, body)
        return ConversationTurn.user(body)
