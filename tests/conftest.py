"""
Shared fakes: an in-memory Supabase client, a scripted Claude client and a
scripted live voice transport. None of them touch the network.
"""

import copy
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from pepai.generator import DrillGenerator
from pepai.normalizer import normalize_drill
from pepai.store import DrillStore

from tests.fixtures import RONDO_5V5, as_model_text


# ============================================================
# SUPABASE
# ============================================================

class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.limit_to = None

    def select(self, *_columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def upsert(self, payload):
        self.op = "upsert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.limit_to = count
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        if self.db.fail:
            raise RuntimeError("connection refused")
        rows = self.db.tables.setdefault(self.table, [])
        payloads = self.payload if isinstance(self.payload, list) else [self.payload]

        if self.op == "insert":
            rows.extend(copy.deepcopy(p) for p in payloads)
            return SimpleNamespace(data=copy.deepcopy(payloads))

        if self.op == "upsert":
            for payload in payloads:
                existing = next((r for r in rows if r.get("id") == payload.get("id")), None)
                if existing is None:
                    rows.append(copy.deepcopy(payload))
                else:
                    existing.update(copy.deepcopy(payload))
            return SimpleNamespace(data=copy.deepcopy(payloads))

        matched = [r for r in rows if self._matches(r)]
        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        if self.limit_to is not None:
            matched = matched[:self.limit_to]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeSupabase:
    """Just enough of the supabase client for DrillStore"""

    def __init__(self):
        self.tables = {}
        self.fail = False

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.setdefault(name, [])


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def store(supabase):
    return DrillStore(supabase, share_base_url="https://pepai.test/", sleep=lambda _: None)


# ============================================================
# CLAUDE
# ============================================================

def api_status_error(status_code, cls=anthropic.APIStatusError, message="Overloaded"):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return cls(message, response=httpx.Response(status_code, request=request), body=None)


def json_delta(text):
    return SimpleNamespace(
        type="content_block_delta",
        delta=SimpleNamespace(type="input_json_delta", partial_json=text),
    )


def stream_events(text, chunk_size=40):
    events = [SimpleNamespace(type="message_start")]
    events += [json_delta(text[i:i + chunk_size]) for i in range(0, len(text), chunk_size)]
    events.append(SimpleNamespace(type="message_stop"))
    return events


class FakeMessages:
    def __init__(self, text, failures):
        self.text = text
        self.failures = list(failures)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.failures:
            raise self.failures.pop(0)
        events = stream_events(self.text)

        async def stream():
            for event in events:
                yield event

        return stream()


class FakeAnthropic:
    """Streams ``text`` as tool-input deltas after raising ``failures`` in order"""

    def __init__(self, text=None, failures=()):
        self.messages = FakeMessages(text or as_model_text(RONDO_5V5), failures)


async def no_sleep(_delay):
    return None


def make_generator(text=None, failures=(), max_retries=3):
    client = FakeAnthropic(text, failures)
    generator = DrillGenerator(client=client, max_retries=max_retries, jitter=0, sleep=no_sleep)
    return generator, client


@pytest.fixture
def rondo():
    return normalize_drill(RONDO_5V5)


# ============================================================
# VOICE
# ============================================================

class FakeTransport:
    def __init__(self, events=()):
        self._events = list(events)
        self.audio = []
        self.texts = []
        self.tool_responses = []
        self.closed = False

    async def send_audio(self, pcm):
        self.audio.append(pcm)

    async def send_text(self, text):
        self.texts.append(text)

    async def send_tool_responses(self, calls):
        self.tool_responses.append(list(calls))

    async def events(self):
        for event in self._events:
            yield event

    async def close(self):
        self.closed = True


class FakeSource:
    def __init__(self, chunks=()):
        self.chunks = list(chunks)
        self.closed = False

    async def read(self):
        if self.closed or not self.chunks:
            return None
        return self.chunks.pop(0)

    def close(self):
        self.closed = True


class FakeSink:
    def __init__(self):
        self.played = []
        self.interrupts = 0
        self.closed = False

    def play(self, pcm):
        self.played.append(pcm)

    def interrupt(self):
        self.interrupts += 1

    def close(self):
        self.closed = True
