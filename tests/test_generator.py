import asyncio
import json

import anthropic
import pytest

from pepai.errors import (
    ConfigurationError,
    HighDemandError,
    MalformedResponseError,
    PromptValidationError,
    UpstreamError,
)
from pepai.generator import (
    DRILL_TOOL,
    Done,
    DrillGenerator,
    Failed,
    Progress,
    Retrying,
    build_refine_prompt,
    collect,
    is_overloaded,
    validate_prompt,
)

from tests.conftest import api_status_error, make_generator
from tests.fixtures import RONDO_5V5


async def gather(events):
    return [event async for event in events]


def test_validate_prompt():
    assert validate_prompt("  rondo  ") == "rondo"
    with pytest.raises(PromptValidationError) as err:
        validate_prompt("   ")
    assert err.value.user_message == "Missing or empty prompt."
    with pytest.raises(PromptValidationError) as err:
        validate_prompt("x" * 11, max_length=10)
    assert err.value.user_message == "Prompt must be at most 10 characters."


def test_empty_prompt_rejected_before_any_request():
    generator, client = make_generator()
    with pytest.raises(PromptValidationError):
        generator.stream_generate("")
    assert client.messages.calls == []


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        DrillGenerator()


def test_stream_reports_growing_progress():
    generator, client = make_generator()
    events = asyncio.run(gather(generator.stream_generate("5v5 rondo")))

    progress = [e for e in events if isinstance(e, Progress)]
    assert len(progress) > 1
    assert all(len(a.text) < len(b.text) for a, b in zip(progress, progress[1:]))
    assert isinstance(events[-1], Done)
    assert json.loads(events[-1].text)["name"] == "5v5 Rondo"

    call = client.messages.calls[0]
    assert call["tool_choice"] == {"type": "tool", "name": DRILL_TOOL["name"]}
    assert call["stream"] is True
    assert "5v5 rondo" in call["messages"][0]["content"]


def test_overload_is_retried_then_succeeds():
    overloaded = [api_status_error(529), api_status_error(503)]
    generator, client = make_generator(failures=overloaded, max_retries=3)
    events = asyncio.run(gather(generator.stream_generate("5v5 rondo")))

    retries = [e for e in events if isinstance(e, Retrying)]
    assert [r.attempt for r in retries] == [1, 2]
    assert isinstance(events[-1], Done)
    assert len(client.messages.calls) == 3


def test_overload_exhausts_retry_budget():
    overloaded = [api_status_error(529) for _ in range(5)]
    generator, client = make_generator(failures=overloaded, max_retries=3)

    with pytest.raises(HighDemandError) as err:
        asyncio.run(generator.generate_drill("5v5 rondo"))
    assert "High Demand" in err.value.user_message
    assert len(client.messages.calls) == 3


def test_backoff_doubles():
    generator, _ = make_generator()
    assert [generator.backoff_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]


def test_sleeps_between_attempts():
    delays = []

    async def record(delay):
        delays.append(delay)

    generator, _ = make_generator(failures=[api_status_error(529), api_status_error(529)])
    generator.sleep = record
    asyncio.run(generator.generate_drill("rondo"))
    assert delays == [1.0, 2.0]


def test_other_errors_are_not_retried():
    generator, client = make_generator(failures=[api_status_error(400, anthropic.BadRequestError, "bad")])
    with pytest.raises(UpstreamError):
        asyncio.run(generator.generate_drill("rondo"))
    assert len(client.messages.calls) == 1


def test_auth_errors_mention_the_key():
    generator, _ = make_generator(failures=[api_status_error(401, anthropic.AuthenticationError, "nope")])
    with pytest.raises(UpstreamError) as err:
        asyncio.run(generator.generate_drill("rondo"))
    assert err.value.user_message == "Check your API key and try again."


def test_is_overloaded():
    assert is_overloaded(api_status_error(529))
    assert is_overloaded(api_status_error(503))
    assert not is_overloaded(api_status_error(500))
    assert not is_overloaded(ValueError("x"))


def test_generate_drill_normalizes():
    generator, _ = make_generator()
    drill = asyncio.run(generator.generate_drill("5v5 rondo"))
    assert drill.name == "5v5 Rondo"
    assert len(drill.positions) == len(RONDO_5V5["positions"])


def test_refine_keeps_drill_id(rondo):
    generator, client = make_generator()
    refined = asyncio.run(generator.refine_drill(rondo, "add a second ball"))
    assert refined.id == rondo.id
    assert "add a second ball" in client.messages.calls[0]["messages"][0]["content"]


def test_refine_prompt_carries_current_drill(rondo):
    prompt = build_refine_prompt(rondo, "make it wider")
    assert rondo.id in prompt
    assert '"make it wider"' in prompt


def test_refine_with_preview(rondo):
    generator, _ = make_generator()

    async def run():
        return [pair async for pair in generator.refine_with_preview(rondo, "narrower")]

    pairs = asyncio.run(run())
    assert pairs[0][1] is None
    event, final = pairs[-1]
    assert isinstance(event, Done)
    assert final.id == rondo.id


def test_collect():
    async def events(*items):
        for item in items:
            yield item

    assert asyncio.run(collect(events(Progress("{"), Done("{}")))) == "{}"
    with pytest.raises(MalformedResponseError):
        asyncio.run(collect(events(Progress("{"))))
    with pytest.raises(HighDemandError):
        asyncio.run(collect(events(Failed(HighDemandError(), "busy"))))
