"""Shared fixtures: a scripted model gateway and a tmp_path-backed history store."""

from typing import Sequence

import pytest

from shiftbot.agent.tools.registry import ToolRegistry
from shiftbot.providers.base import ModelGateway, ModelResponse
from shiftbot.session.manager import JsonlHistoryStore
from shiftbot.session.turns import ConversationTurn, Part, ToolInvocationRequest


def text_response(*texts: str) -> ModelResponse:
    return ModelResponse.of(*(Part.of_text(t) for t in texts))


def tool_response(*calls: tuple[str, dict], text: str | None = None) -> ModelResponse:
    parts = [Part.of_text(text)] if text else []
    parts += [Part.of_request(ToolInvocationRequest(name=name, args=args)) for name, args in calls]
    return ModelResponse.of(*parts, finish_reason="tool_calls")


class ScriptedGateway(ModelGateway):
    """
    Returns scripted responses in order.

    Each script item is a ModelResponse, an exception instance (raised), or a
    callable taking the recorded call and returning either of those. When the
    script runs out the last item repeats.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[dict] = []

    async def converse(self, history: Sequence[ConversationTurn], tool_declarations, new_input: Sequence[Part]):
        call = {
            "history": list(history),
            "declarations": list(tool_declarations),
            "input": list(new_input),
        }
        self.calls.append(call)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if callable(item):
            item = item(call)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def history_dir(tmp_path):
    return tmp_path / "history"


@pytest.fixture
def store(history_dir):
    return JsonlHistoryStore(history_dir)


@pytest.fixture
def registry():
    return ToolRegistry()
