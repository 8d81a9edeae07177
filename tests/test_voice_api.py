import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from main import app, get_generator, get_optional_store, get_settings, get_voice_connector
from pepai.config import Settings
from pepai.voice import ADD_PLAYER, CLEAR_PITCH, AudioChunk, ToolCall, ToolCalls, Transcript, apply_tool_call

from tests.conftest import FakeTransport, make_generator

REPLY = [
    Transcript("add a striker"),
    ToolCalls([ToolCall("c1", ADD_PLAYER, {"x": 50, "y": 80, "label": "9"})]),
    AudioChunk(b"\x01\x02"),
]


class TurnTransport(FakeTransport):
    """Answers once the coach has sent a text turn"""

    def __init__(self, events):
        super().__init__(events)
        self.spoke = asyncio.Event()

    async def send_text(self, text):
        await super().send_text(text)
        self.spoke.set()

    async def events(self):
        await self.spoke.wait()
        async for event in super().events():
            yield event


@pytest.fixture
def transports():
    return []


@pytest.fixture
def client(store, transports):
    async def connect(drill):
        transport = TurnTransport(REPLY)
        transports.append((drill, transport))
        return transport

    generator, _ = make_generator()
    app.dependency_overrides[get_settings] = lambda: Settings()
    app.dependency_overrides[get_generator] = lambda: generator
    app.dependency_overrides[get_optional_store] = lambda: store
    app.dependency_overrides[get_voice_connector] = lambda: connect
    yield TestClient(app)
    app.dependency_overrides.clear()


def receive_until_closed(ws):
    events, audio = [], []
    while True:
        message = ws.receive()
        if message.get("bytes") is not None:
            audio.append(message["bytes"])
            continue
        event = json.loads(message["text"])
        if event["event"] == "closed":
            return events, audio
        events.append(event)


def test_voice_session_forwards_edits(client, transports, store, rondo):
    with client.websocket_connect("/ws/voice", headers={"X-User-Id": "u1"}) as ws:
        ws.send_json({"drill": rondo.to_dict()})
        ws.send_json({"text": "add a striker please"})
        events, audio = receive_until_closed(ws)

    drill, transport = transports[0]
    assert drill.id == rondo.id
    assert transport.texts == ["add a striker please"]
    assert transport.closed
    assert audio == [b"\x01\x02"]
    assert {"event": "transcript", "text": "add a striker"} in events

    updated = [e["drill"] for e in events if e["event"] == "drill"]
    assert len(updated) == 1
    assert updated[0]["id"] == rondo.id
    assert updated[0]["positions"][-1]["label"] == "9"
    assert len(updated[0]["positions"]) == len(rondo.positions) + 1
    assert store.get_profile("u1").credits == 5


def test_tool_calls_use_the_editors_latest_snapshot(client, rondo):
    cleared = apply_tool_call(rondo, CLEAR_PITCH)
    with client.websocket_connect("/ws/voice") as ws:
        ws.send_json({"drill": rondo.to_dict()})
        ws.send_json({"drill": cleared.to_dict()})
        ws.send_json({"text": "add a striker"})
        events, _ = receive_until_closed(ws)

    updated = [e["drill"] for e in events if e["event"] == "drill"]
    assert [p["label"] for p in updated[0]["positions"]] == ["9"]


def test_stop_ends_the_session(client, transports, store, rondo):
    with client.websocket_connect("/ws/voice") as ws:
        ws.send_json({"drill": rondo.to_dict()})
        ws.send_json({"stop": True})
        events, audio = receive_until_closed(ws)

    assert (events, audio) == ([], [])
    assert transports[0][1].closed
    assert transports[0][1].texts == []


def test_bad_messages_are_reported_not_fatal(client, rondo):
    with client.websocket_connect("/ws/voice") as ws:
        ws.send_json({"drill": rondo.to_dict()})
        ws.send_json({"drill": {"foo": 1}})
        ws.send_text("not json")
        ws.send_json({"text": "add a striker"})
        events, _ = receive_until_closed(ws)

    errors = [e["error"] for e in events if e["event"] == "error"]
    assert errors[0] == "Invalid drill."
    assert len(errors) == 2
    assert any(e["event"] == "drill" for e in events)


def test_broke_coach_is_refused(client, transports, store, rondo):
    store.update_profile("u1", {"credits": 0})
    with client.websocket_connect("/ws/voice", headers={"X-User-Id": "u1"}) as ws:
        ws.send_json({"drill": rondo.to_dict()})
        assert ws.receive_json() == {
            "event": "error",
            "error": "Not enough credits for this action. Top up to continue.",
        }

    assert transports[0][1].closed


def test_malformed_starting_drill_is_refused(client, transports):
    with client.websocket_connect("/ws/voice") as ws:
        ws.send_json({"drill": {"foo": 1}})
        assert ws.receive_json() == {"event": "error", "error": "Invalid drill."}
    assert transports == []


def test_voice_needs_gemini_key(client, rondo):
    del app.dependency_overrides[get_voice_connector]
    with client.websocket_connect("/ws/voice") as ws:
        ws.send_json({"drill": rondo.to_dict()})
        assert ws.receive_json() == {
            "event": "error",
            "error": "The voice assistant is not configured on this server.",
        }
