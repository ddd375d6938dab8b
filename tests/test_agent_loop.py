import asyncio
import gc
import re
from unittest.mock import AsyncMock

import pytest

from conftest import ScriptedGateway, text_response, tool_response
from shiftbot.agent.context import ContextBuilder
from shiftbot.agent.loop import (
    CAPPED_REPLY,
    EMPTY_REPLY,
    HELP_REPLY,
    NEW_SESSION_REPLY,
    TOOLS_ONLY_REPLY,
    AgentLoop,
)
from shiftbot.agent.tools.base import ToolDeclaration
from shiftbot.errors import AgentTimeoutError, ModelGatewayError, PersistenceError
from shiftbot.providers.base import ModelGateway
from shiftbot.session.manager import JsonlHistoryStore
from shiftbot.session.turns import ConversationTurn

CYCLE_PATTERN = re.compile(r"^(user,model(,tool,model)*,?)+$")


def _register(registry, name, handler):
    registry.register(ToolDeclaration(name=name, description=name), handler)
    return handler


def _roles(turns):
    return [t.role for t in turns]


async def _all_turns(store, user_id):
    return await store.load_recent(user_id, user_turn_limit=1000, fetch_cap=10_000)


class EchoToolGateway(ModelGateway):
    """First call per message requests getShiftData, the follow-up answers with text."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay

    async def converse(self, history, tool_declarations, new_input):
        await asyncio.sleep(self.delay)
        if any(p.tool_result is not None for p in new_input):
            return text_response("done")
        text = next(p.text for p in new_input if p.text is not None)
        return tool_response(("getShiftData", {"date": "2025-07-01", "note": text}))


class FailingStore(JsonlHistoryStore):
    """Fails appends for the given roles."""

    def __init__(self, history_dir, fail_roles):
        super().__init__(history_dir)
        self.fail_roles = set(fail_roles)

    async def append(self, user_id, turn):
        if turn.role in self.fail_roles:
            raise PersistenceError("store unreachable")
        return await super().append(user_id, turn)


class FlakyStore(JsonlHistoryStore):
    """Fails only the first append of each given role."""

    def __init__(self, history_dir, fail_once_roles):
        super().__init__(history_dir)
        self.pending = set(fail_once_roles)

    async def append(self, user_id, turn):
        if turn.role in self.pending:
            self.pending.discard(turn.role)
            raise PersistenceError("store hiccup")
        return await super().append(user_id, turn)


async def test_remove_shift_scenario(store, registry):
    handler = _register(registry, "editShiftData", AsyncMock(return_value="removed"))
    gateway = ScriptedGateway(
        tool_response(("editShiftData", {"date": "2025-07-01", "action": "remove", "userId": "U1"})),
        text_response("Done, it's removed."),
    )
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    reply = await agent.handle_message("U1", "remove my shift on 2025-07-01")

    assert reply == "Done, it's removed."
    handler.assert_awaited_once_with({"date": "2025-07-01", "action": "remove", "userId": "U1"})
    turns = await _all_turns(store, "U1")
    assert _roles(turns) == ["user", "model", "tool", "model"]
    assert turns[0].texts == ["remove my shift on 2025-07-01"]
    assert turns[1].tool_requests[0].name == "editShiftData"
    assert turns[2].tool_results[0].result == "removed"
    assert turns[2].tool_results[0].id == turns[1].tool_requests[0].id
    assert turns[3].texts == ["Done, it's removed."]

    # second model call receives the tool results as its new input
    second = gateway.calls[1]
    assert second["input"][0].tool_result.result == "removed"
    assert _roles(second["history"]) == ["user", "model"]


async def test_terminates_at_iteration_cap(store, registry):
    handler = _register(registry, "getShiftData", AsyncMock(return_value="nobody"))
    gateway = ScriptedGateway(tool_response(("getShiftData", {"date": "2025-07-01"})))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry, max_iterations=3)

    reply = await agent.handle_message("U1", "who works tomorrow?")

    assert reply == CAPPED_REPLY
    assert handler.await_count == 3
    assert len(gateway.calls) == 4
    turns = await _all_turns(store, "U1")
    assert _roles(turns) == ["user", "model"] + ["tool", "model"] * 3


async def test_default_cap_is_ten(store, registry):
    handler = _register(registry, "getShiftData", AsyncMock(return_value="nobody"))
    gateway = ScriptedGateway(tool_response(("getShiftData", {})))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "loop forever") == CAPPED_REPLY
    assert handler.await_count == 10


async def test_sequential_calls_keep_cycle_order(store, registry):
    _register(registry, "getShiftData", AsyncMock(return_value="x"))
    _register(registry, "getRuleData", AsyncMock(return_value="y"))
    gateway = ScriptedGateway(
        text_response("hello"),
        tool_response(("getShiftData", {})),
        tool_response(("getRuleData", {})),
        text_response("checked"),
        tool_response(("getShiftData", {})),
        text_response("again"),
    )
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "hi") == "hello"
    assert await agent.handle_message("U1", "check") == "checked"
    assert await agent.handle_message("U1", "more") == "again"

    turns = await _all_turns(store, "U1")
    sequences = [t.sequence for t in turns]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)
    assert CYCLE_PATTERN.match(",".join(_roles(turns)))
    assert _roles(turns) == [
        "user", "model",
        "user", "model", "tool", "model", "tool", "model",
        "user", "model", "tool", "model",
    ]


async def test_later_messages_see_previous_history(store, registry):
    gateway = ScriptedGateway(text_response("first reply"), text_response("second reply"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    await agent.handle_message("U1", "one")
    await agent.handle_message("U1", "two")

    second = gateway.calls[1]
    assert [t.texts for t in second["history"]] == [["one"], ["first reply"]]
    assert [p.text for p in second["input"]] == ["two"]


async def test_history_window_is_bounded(store, registry):
    gateway = ScriptedGateway(text_response("ok"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry, user_turn_limit=2)

    for i in range(5):
        await agent.handle_message("U1", f"m{i}")

    last = gateway.calls[-1]
    # window holds two user turns: the previous one plus the current input
    assert [t.texts for t in last["history"]] == [["m3"], ["ok"]]


async def test_concurrent_users_do_not_interleave(store, registry):
    _register(registry, "getShiftData", AsyncMock(return_value="x"))
    agent = AgentLoop(gateway=EchoToolGateway(), history=store, tools=registry)

    await asyncio.gather(*(
        agent.handle_message(user, f"{user}-{i}")
        for i in range(3)
        for user in ("A", "B")
    ))

    for user in ("A", "B"):
        turns = await _all_turns(store, user)
        assert _roles(turns) == ["user", "model", "tool", "model"] * 3
        for turn in turns:
            for text in turn.texts:
                if turn.role == "user":
                    assert text.startswith(f"{user}-")
            for request in turn.tool_requests:
                assert request.args["note"].startswith(f"{user}-")


async def test_same_user_messages_are_serialized(store, registry):
    handler = _register(registry, "getShiftData", AsyncMock(return_value="x"))
    agent = AgentLoop(gateway=EchoToolGateway(delay=0.02), history=store, tools=registry)

    replies = await asyncio.gather(
        agent.handle_message("A", "first"),
        agent.handle_message("A", "second"),
    )

    assert replies == ["done", "done"]
    assert handler.await_count == 2
    turns = await _all_turns(store, "A")
    assert _roles(turns) == ["user", "model", "tool", "model"] * 2


async def test_tool_failure_is_fed_back_to_model(store, registry):
    _register(registry, "editShiftData", AsyncMock(side_effect=RuntimeError("board locked")))
    gateway = ScriptedGateway(
        tool_response(("editShiftData", {"date": "2025-07-01"})),
        text_response("Sorry, I could not update the schedule."),
    )
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    reply = await agent.handle_message("U1", "drop my shift")

    assert reply == "Sorry, I could not update the schedule."
    assert len(gateway.calls) == 2
    tool_turn = (await _all_turns(store, "U1"))[2]
    result = tool_turn.tool_results[0]
    assert result.name == "editShiftData"
    assert result.error == "board locked"


async def test_unknown_tool_is_fed_back_to_model(store, registry):
    gateway = ScriptedGateway(tool_response(("nope", {})), text_response("fine"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "hi") == "fine"
    assert gateway.calls[1]["input"][0].tool_result.error == "unknown tool"


async def test_gateway_error_propagates_and_keeps_user_turn(store, registry):
    gateway = ScriptedGateway(ModelGatewayError("backend down"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    with pytest.raises(ModelGatewayError):
        await agent.handle_message("U1", "are you there?")

    turns = await _all_turns(store, "U1")
    assert _roles(turns) == ["user"]
    assert turns[0].texts == ["are you there?"]


async def test_user_turn_persistence_failure_is_fatal(history_dir, registry):
    gateway = ScriptedGateway(text_response("never"))
    store = FailingStore(history_dir, fail_roles={"user"})
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    with pytest.raises(PersistenceError):
        await agent.handle_message("U1", "hi")
    assert gateway.calls == []


async def test_later_persistence_failure_continues_in_memory(history_dir, registry):
    _register(registry, "getShiftData", AsyncMock(return_value="x"))
    gateway = ScriptedGateway(tool_response(("getShiftData", {})), text_response("all good"))
    store = FailingStore(history_dir, fail_roles={"model", "tool"})
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    reply = await agent.handle_message("U1", "hi")

    assert reply == "all good"
    assert _roles(gateway.calls[1]["history"]) == ["user", "model"]
    assert _roles(await _all_turns(store, "U1")) == ["user"]


async def test_unpersisted_model_turn_keeps_its_tool_turn_out_of_history(history_dir, registry):
    _register(registry, "getShiftData", AsyncMock(return_value="x"))
    gateway = ScriptedGateway(
        tool_response(("getShiftData", {})),
        text_response("all good"),
        text_response("second reply"),
    )
    store = FlakyStore(history_dir, fail_once_roles={"model"})
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "hi") == "all good"
    assert _roles(await _all_turns(store, "U1")) == ["user"]

    assert await agent.handle_message("U1", "again") == "second reply"
    assert _roles(gateway.calls[2]["history"]) == ["user"]
    assert _roles(await _all_turns(store, "U1")) == ["user", "user", "model"]


async def test_failed_user_append_does_not_advance_prompt_interval(history_dir, registry):
    context = ContextBuilder(system_prompt="SYSTEM", interval=3)
    gateway = ScriptedGateway(text_response("ok"))
    store = FlakyStore(history_dir, fail_once_roles={"user"})
    agent = AgentLoop(gateway=gateway, history=store, tools=registry, context=context)

    with pytest.raises(PersistenceError):
        await agent.handle_message("U1", "lost")
    await agent.handle_message("U1", "hello")

    assert [p.text for p in gateway.calls[0]["input"]] == ["SYSTEM", "hello"]


async def test_idle_users_do_not_accumulate_state(store, registry):
    agent = AgentLoop(gateway=ScriptedGateway(text_response("ok")), history=store, tools=registry)

    await agent.handle_message("U1", "hi")
    await agent.handle_message("U1", "/new")
    gc.collect()

    assert "U1" not in agent._locks
    assert "U1" not in agent._states


async def test_multiple_text_parts_joined_by_newline(store, registry):
    gateway = ScriptedGateway(text_response("Line one.", "", "Line two."))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "hi") == "Line one.\nLine two."


async def test_text_alongside_tool_request_is_persisted(store, registry):
    _register(registry, "getCurrentDate", AsyncMock(return_value="2025-07-01"))
    gateway = ScriptedGateway(
        tool_response(("getCurrentDate", {}), text="Let me check the date."),
        text_response("It is July 1st."),
    )
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "what day is it") == "It is July 1st."
    model_turn = (await _all_turns(store, "U1"))[1]
    assert model_turn.texts == ["Let me check the date."]
    assert model_turn.tool_requests[0].name == "getCurrentDate"


async def test_empty_reply_after_tools_uses_fallback(store, registry):
    _register(registry, "editShiftData", AsyncMock(return_value="ok"))
    gateway = ScriptedGateway(tool_response(("editShiftData", {})), text_response())
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    assert await agent.handle_message("U1", "do it") == TOOLS_ONLY_REPLY


async def test_empty_reply_without_tools_uses_fallback(store, registry):
    agent = AgentLoop(gateway=ScriptedGateway(text_response("  ")), history=store, tools=registry)

    assert await agent.handle_message("U1", "hello?") == EMPTY_REPLY


async def test_timeout_while_waiting_for_model(store, registry):
    class SlowGateway(ModelGateway):
        async def converse(self, history, tool_declarations, new_input):
            await asyncio.sleep(5)
            return text_response("too late")

    agent = AgentLoop(gateway=SlowGateway(), history=store, tools=registry)

    with pytest.raises(AgentTimeoutError):
        await agent.handle_message("U1", "hi", timeout=0.05)
    assert _roles(await _all_turns(store, "U1")) == ["user"]


async def test_timeout_lets_running_tool_finish_but_starts_no_new_cycle(store, registry):
    finished = []

    async def slow_edit(args):
        await asyncio.sleep(0.2)
        finished.append(args)
        return "edited"

    _register(registry, "editShiftData", slow_edit)
    gateway = ScriptedGateway(tool_response(("editShiftData", {"date": "2025-07-01"})), text_response("done"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry, timeout=0.05)

    with pytest.raises(AgentTimeoutError):
        await agent.handle_message("U1", "edit")

    assert finished == [{"date": "2025-07-01"}]
    assert len(gateway.calls) == 1
    assert _roles(await _all_turns(store, "U1")) == ["user", "model", "tool"]


async def test_new_command_clears_history_without_model(store, registry):
    gateway = ScriptedGateway(text_response("hi"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)
    await agent.handle_message("U1", "hello")

    assert await agent.handle_message("U1", "/new") == NEW_SESSION_REPLY
    assert await _all_turns(store, "U1") == []
    assert await agent.handle_message("U1", "/help") == HELP_REPLY
    assert len(gateway.calls) == 1


async def test_system_prompt_follows_per_user_interval(store, registry):
    names = {"U1": "Sato"}

    async def resolve(user_id):
        return names.get(user_id)

    context = ContextBuilder(system_prompt="You help {member_name} ({member_id}).", interval=3, resolve_member_name=resolve)
    gateway = ScriptedGateway(text_response("ok"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry, context=context)

    for i in range(4):
        await agent.handle_message("U1", f"m{i}")
    await agent.handle_message("U2", "hey")

    inputs = [[p.text for p in call["input"]] for call in gateway.calls]
    assert inputs[0] == ["You help Sato (U1).", "Member: Sato\nID: U1\nMessage: m0"]
    assert inputs[1] == ["Member: Sato\nID: U1\nMessage: m1"]
    assert inputs[2][0] == "You help Sato (U1)."
    assert len(inputs[3]) == 1
    # another user's counter starts from scratch
    assert inputs[4][0] == "You help unknown member (U2)."


async def test_tool_declarations_are_sent_every_call(store, registry):
    _register(registry, "getRuleData", AsyncMock(return_value="rules"))
    gateway = ScriptedGateway(tool_response(("getRuleData", {})), text_response("ok"))
    agent = AgentLoop(gateway=gateway, history=store, tools=registry)

    await agent.handle_message("U1", "rules?")

    for call in gateway.calls:
        assert [d.name for d in call["declarations"]] == ["getRuleData"]


async def test_persisted_turns_are_conversation_turns(store, registry):
    agent = AgentLoop(gateway=ScriptedGateway(text_response("ok")), history=store, tools=registry)
    await agent.handle_message("U1", "hi")

    for turn in await _all_turns(store, "U1"):
        assert isinstance(turn, ConversationTurn)
        assert turn.timestamp
