import asyncio
import json

import httpx
import pytest

from conftest import ScriptedGateway, text_response
from shiftbot.agent.loop import UNAVAILABLE_REPLY, AgentLoop
from shiftbot.bus.events import InboundMessage, OutboundMessage
from shiftbot.bus.queue import MessageBus
from shiftbot.channels.line import LineChannel
from shiftbot.config.schema import LineConfig
from shiftbot.errors import ModelGatewayError


async def _run_until_outbound(agent: AgentLoop, bus: MessageBus, count: int) -> list[OutboundMessage]:
    runner = asyncio.create_task(agent.run())
    try:
        return [await asyncio.wait_for(bus.consume_outbound(), timeout=5) for _ in range(count)]
    finally:
        agent.stop()
        await asyncio.wait_for(runner, timeout=5)


async def test_run_replies_through_bus(store, registry):
    bus = MessageBus()
    agent = AgentLoop(gateway=ScriptedGateway(text_response("See you tomorrow!")), history=store, tools=registry, bus=bus)

    await bus.publish_inbound(InboundMessage(
        channel="line", sender_id="U1", chat_id="U1", content="hi", metadata={"reply_token": "tok"},
    ))
    [out] = await _run_until_outbound(agent, bus, 1)

    assert out.channel == "line"
    assert out.chat_id == "U1"
    assert out.content == "See you tomorrow!"
    assert out.reply_to == "tok"


async def test_run_maps_errors_to_unavailable_reply(store, registry):
    bus = MessageBus()
    agent = AgentLoop(gateway=ScriptedGateway(ModelGatewayError("down")), history=store, tools=registry, bus=bus)

    await bus.publish_inbound(InboundMessage(channel="line", sender_id="U1", chat_id="U1", content="hi"))
    [out] = await _run_until_outbound(agent, bus, 1)

    assert out.content == UNAVAILABLE_REPLY


async def test_run_requires_bus(store, registry):
    agent = AgentLoop(gateway=ScriptedGateway(text_response("x")), history=store, tools=registry)
    with pytest.raises(RuntimeError):
        await agent.run()


async def test_dispatch_outbound_routes_by_channel():
    bus = MessageBus()
    received = []

    async def on_line(msg):
        received.append(msg)

    async def broken(msg):
        raise RuntimeError("boom")

    bus.subscribe_outbound("line", broken)
    bus.subscribe_outbound("line", on_line)
    dispatcher = asyncio.create_task(bus.dispatch_outbound())

    await bus.publish_outbound(OutboundMessage(channel="line", chat_id="C1", content="hello"))
    await bus.publish_outbound(OutboundMessage(channel="other", chat_id="C1", content="ignored"))
    for _ in range(50):
        if received and bus.outbound_size == 0:
            break
        await asyncio.sleep(0.01)
    bus.stop()
    await asyncio.wait_for(dispatcher, timeout=5)

    assert [m.content for m in received] == ["hello"]


def _line(handler, **config) -> tuple[LineChannel, MessageBus]:
    bus = MessageBus()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    cfg = LineConfig(enabled=True, channel_access_token="secret", **config)
    return LineChannel(cfg, bus, client=client), bus


async def test_line_reply_uses_reply_endpoint():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    channel, _ = _line(handler)
    await channel.send(OutboundMessage(channel="line", chat_id="U1", content="hi", reply_to="tok"))

    assert len(requests) == 1
    assert str(requests[0].url) == "https://api.line.me/v2/bot/message/reply"
    assert requests[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(requests[0].content) == {
        "replyToken": "tok",
        "messages": [{"type": "text", "text": "hi"}],
    }


async def test_line_falls_back_to_push_when_reply_fails():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        if request.url.path.endswith("/reply"):
            return httpx.Response(400, json={"message": "Invalid reply token"})
        return httpx.Response(200, json={})

    channel, _ = _line(handler)
    await channel.send(OutboundMessage(channel="line", chat_id="U1", content="hi", reply_to="expired"))

    assert paths == ["/v2/bot/message/reply", "/v2/bot/message/push"]


async def test_line_push_failure_raises():
    channel, _ = _line(lambda request: httpx.Response(500))

    with pytest.raises(httpx.HTTPStatusError):
        await channel.send(OutboundMessage(channel="line", chat_id="C1", content="broadcast"))


async def test_line_text_event_is_published():
    channel, bus = _line(lambda request: httpx.Response(200))
    event = {
        "type": "message",
        "replyToken": "tok",
        "source": {"type": "user", "userId": "U1"},
        "message": {"type": "text", "id": "m1", "text": "Can I take Friday off?"},
    }

    assert await channel.handle_text_event(event) is True
    msg = await bus.consume_inbound()
    assert msg.user_id == "U1"
    assert msg.chat_id == "U1"
    assert msg.content == "Can I take Friday off?"
    assert msg.metadata["reply_token"] == "tok"


async def test_line_group_event_replies_to_group():
    channel, bus = _line(lambda request: httpx.Response(200))
    event = {
        "type": "message",
        "source": {"type": "group", "groupId": "C9", "userId": "U1"},
        "message": {"type": "text", "text": "hi"},
    }

    await channel.handle_text_event(event)
    msg = await bus.consume_inbound()
    assert msg.sender_id == "U1"
    assert msg.chat_id == "C9"


async def test_line_ignores_non_text_and_disallowed_senders():
    channel, bus = _line(lambda request: httpx.Response(200), allow_from=["U1"])

    sticker = {"type": "message", "source": {"userId": "U1"}, "message": {"type": "sticker"}}
    follow = {"type": "follow", "source": {"userId": "U1"}}
    stranger = {"type": "message", "source": {"userId": "U7"}, "message": {"type": "text", "text": "hi"}}

    assert await channel.handle_text_event(sticker) is False
    assert await channel.handle_text_event(follow) is False
    assert await channel.handle_text_event(stranger) is False
    assert bus.inbound_size == 0


async def test_line_start_subscribes_to_bus():
    channel, bus = _line(lambda request: httpx.Response(200))
    await channel.start()

    assert channel.is_running
    assert channel.send in bus._outbound_subscribers["line"]
    await channel.stop()
    assert not channel.is_running
