"""
Voice Assistant Bridge - live voice coaching over the Gemini Live API.

The coach talks, the model talks back and may call three tools to edit the
current drill (addPlayer, addArrow, clearPitch). The bridge never holds a
shared reference to the editor's drill:

    bridge = VoiceBridge(transport, drill, source=mic, sink=speaker)
    bridge.inbox.put_nowait(latest_drill)     # editor -> bridge
    updated = await bridge.outbox.get()       # bridge -> editor

Tool calls are applied to the newest snapshot received through the inbox.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Union

from google import genai
from google.genai import types

from .config import DEFAULT_LIVE_MODEL
from .errors import ConfigurationError
from .schema import (
    DEFAULT_PLAYER_COLOR,
    ArrowType,
    Drill,
    DrillArrow,
    PitchPosition,
    Point,
    PositionType,
    new_id,
)

logger = logging.getLogger(__name__)


INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"
VOICE_NAME = "Zephyr"

ADD_PLAYER = "addPlayer"
ADD_ARROW = "addArrow"
CLEAR_PITCH = "clearPitch"


def _number(description: str) -> types.Schema:
    return types.Schema(type=types.Type.NUMBER, description=description)


VOICE_TOOL_DECLARATIONS = [
    types.FunctionDeclaration(
        name=ADD_PLAYER,
        description="Add a player marker to the soccer pitch.",
        parameters=types.Schema(
            type=types.Type.OBJECT,
            properties={
                "x": _number("X coordinate (0-100)"),
                "y": _number("Y coordinate (0-100)"),
                "label": types.Schema(
                    type=types.Type.STRING,
                    description='Short label for the player (e.g., "1", "GK", "ST")',
                ),
            },
            required=["x", "y", "label"],
        ),
    ),
    types.FunctionDeclaration(
        name=ADD_ARROW,
        description="Add a tactical arrow (pass, run, or dribble) to the pitch.",
        parameters=types.Schema(
            type=types.Type.OBJECT,
            properties={
                "startX": _number("Starting X coordinate (0-100)"),
                "startY": _number("Starting Y coordinate (0-100)"),
                "endX": _number("Ending X coordinate (0-100)"),
                "endY": _number("Ending Y coordinate (0-100)"),
                "type": types.Schema(
                    type=types.Type.STRING,
                    enum=[t.value for t in ArrowType],
                    description="The type of movement or action",
                ),
            },
            required=["startX", "startY", "endX", "endY", "type"],
        ),
    ),
    types.FunctionDeclaration(
        name=CLEAR_PITCH,
        description="Clear all players and arrows from the current pitch.",
    ),
]


def system_instruction(drill: Optional[Drill]) -> str:
    context = drill.model_dump_json(by_alias=True) if drill else "{}"
    return (
        "You are Pep, a tactical genius and world-class soccer coach. You are helping a coach "
        "design a drill. You can talk back and you have tools to modify the drill markers on a "
        "100x100 grid.\n"
        "IMPORTANT: only modify the markers when asked. If you add a player, it appears on the pitch.\n"
        f"Current Drill Context: {context}\n"
        "Be enthusiastic and detailed, and use tactical language such as half-spaces and positional play."
    )


# ============================================================
# TOOL APPLICATION
# ============================================================

def _coord(args: Dict[str, Any], key: str) -> float:
    value = args.get(key)
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric %s in voice tool call: %r", key, value)
        return 0.0


def apply_tool_call(drill: Drill, name: str, args: Optional[Dict[str, Any]] = None) -> Drill:
    """Return a copy of ``drill`` with one voice tool call applied"""
    args = args or {}
    updated = drill.model_copy(deep=True)

    if name == ADD_PLAYER:
        updated.positions.append(PitchPosition(
            id=new_id(),
            x=_coord(args, "x"),
            y=_coord(args, "y"),
            label=str(args.get("label") or ""),
            type=PositionType.PLAYER,
            color=DEFAULT_PLAYER_COLOR,
        ))
    elif name == ADD_ARROW:
        kind = str(args.get("type") or ArrowType.PASS.value).lower()
        updated.arrows.append(DrillArrow(
            id=new_id(),
            start=Point(x=_coord(args, "startX"), y=_coord(args, "startY")),
            end=Point(x=_coord(args, "endX"), y=_coord(args, "endY")),
            type=ArrowType(kind) if kind in {t.value for t in ArrowType} else ArrowType.PASS,
        ))
    elif name == CLEAR_PITCH:
        updated.positions = []
        updated.arrows = []
    else:
        logger.warning("Ignoring unknown voice tool: %s", name)
        return drill
    return updated


# ============================================================
# TRANSPORT EVENTS
# ============================================================

@dataclass(frozen=True)
class ToolCall:
    id: Optional[str]
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transcript:
    text: str


@dataclass(frozen=True)
class ToolCalls:
    calls: List[ToolCall]


@dataclass(frozen=True)
class AudioChunk:
    data: bytes


@dataclass(frozen=True)
class Interrupted:
    pass


LiveEvent = Union[Transcript, ToolCalls, AudioChunk, Interrupted]


class LiveTransport(Protocol):
    async def send_audio(self, pcm: bytes) -> None: ...

    async def send_text(self, text: str) -> None: ...

    async def send_tool_responses(self, calls: List[ToolCall]) -> None: ...

    def events(self) -> AsyncIterator[LiveEvent]: ...

    async def close(self) -> None: ...


class AudioSource(Protocol):
    """Microphone: 16 kHz mono PCM chunks, None once closed"""

    async def read(self) -> Optional[bytes]: ...

    def close(self) -> None: ...


class AudioSink(Protocol):
    """Speaker: 24 kHz mono PCM"""

    def play(self, pcm: bytes) -> None: ...

    def interrupt(self) -> None: ...

    def close(self) -> None: ...


class GeminiLiveTransport:
    """LiveTransport over a ``google-genai`` live session"""

    def __init__(self, session, stack: contextlib.AsyncExitStack):
        self.session = session
        self._stack = stack
        self._closed = False

    @classmethod
    async def connect(cls, drill: Optional[Drill], api_key: Optional[str],
                      model: str = DEFAULT_LIVE_MODEL) -> "GeminiLiveTransport":
        if not api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is not configured",
                user_message="The voice assistant is not configured on this server.",
            )
        client = genai.Client(api_key=api_key)
        config = types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=VOICE_NAME)
                )
            ),
            tools=[types.Tool(function_declarations=VOICE_TOOL_DECLARATIONS)],
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
            system_instruction=system_instruction(drill),
        )
        stack = contextlib.AsyncExitStack()
        session = await stack.enter_async_context(client.aio.live.connect(model=model, config=config))
        logger.info("Live session opened (%s)", model)
        return cls(session, stack)

    async def send_audio(self, pcm: bytes) -> None:
        await self.session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=INPUT_MIME_TYPE))

    async def send_text(self, text: str) -> None:
        await self.session.send_client_content(
            turns=types.Content(role="user", parts=[types.Part(text=text)]),
            turn_complete=True,
        )

    async def send_tool_responses(self, calls: List[ToolCall]) -> None:
        await self.session.send_tool_response(function_responses=[
            types.FunctionResponse(id=call.id, name=call.name, response={"result": "ok"})
            for call in calls
        ])

    async def events(self) -> AsyncIterator[LiveEvent]:
        # receive() ends after each model turn
        while not self._closed:
            received = False
            async for message in self.session.receive():
                received = True
                content = message.server_content
                if content is not None:
                    if content.input_transcription and content.input_transcription.text:
                        yield Transcript(content.input_transcription.text)
                    if content.interrupted:
                        yield Interrupted()
                if message.tool_call and message.tool_call.function_calls:
                    yield ToolCalls([
                        ToolCall(fc.id, fc.name, dict(fc.args or {}))
                        for fc in message.tool_call.function_calls
                    ])
                if message.data:
                    yield AudioChunk(message.data)
            if not received:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stack.aclose()
        logger.info("Live session closed")


# ============================================================
# BRIDGE
# ============================================================

class VoiceBridge:
    """
    Runs one live voice session against a drill.

    ``run()`` streams microphone audio out and handles model events until
    the transport ends or ``close()`` is called.
    """

    def __init__(
        self,
        transport: LiveTransport,
        drill: Drill,
        source: Optional[AudioSource] = None,
        sink: Optional[AudioSink] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
    ):
        self.transport = transport
        self.drill = drill
        self.source = source
        self.sink = sink
        self.on_transcript = on_transcript
        self.inbox: "asyncio.Queue[Drill]" = asyncio.Queue()
        self.outbox: "asyncio.Queue[Drill]" = asyncio.Queue()
        self.transcript = ""
        self.closed = False
        self._tasks: List[asyncio.Task] = []

    def _latest_drill(self) -> Drill:
        while True:
            try:
                self.drill = self.inbox.get_nowait()
            except asyncio.QueueEmpty:
                return self.drill

    async def handle_event(self, event: LiveEvent) -> None:
        if isinstance(event, Transcript):
            self.transcript += event.text
            if self.on_transcript:
                self.on_transcript(self.transcript.strip())
        elif isinstance(event, ToolCalls):
            drill = self._latest_drill()
            for call in event.calls:
                logger.info("Voice tool call: %s %s", call.name, call.args)
                drill = apply_tool_call(drill, call.name, call.args)
            self.drill = drill
            await self.transport.send_tool_responses(event.calls)
            await self.outbox.put(drill)
        elif isinstance(event, AudioChunk):
            if self.sink:
                self.sink.play(event.data)
        elif isinstance(event, Interrupted):
            if self.sink:
                self.sink.interrupt()

    async def send_transcript(self, text: Optional[str] = None) -> bool:
        """Send the (possibly edited) transcript as a text turn"""
        text = (text if text is not None else self.transcript).strip()
        if not text or self.closed:
            return False
        await self.transport.send_text(text)
        return True

    async def pump_audio(self) -> None:
        if self.source is None:
            return
        while not self.closed:
            chunk = await self.source.read()
            if chunk is None:
                return
            await self.transport.send_audio(chunk)

    async def receive(self) -> None:
        async for event in self.transport.events():
            if self.closed:
                return
            await self.handle_event(event)

    async def run(self) -> None:
        audio = asyncio.ensure_future(self.pump_audio())
        events = asyncio.ensure_future(self.receive())
        self._tasks = [audio, events]
        try:
            await events
            if audio.done() and not audio.cancelled() and audio.exception():
                raise audio.exception()
        except asyncio.CancelledError:
            if not self.closed:
                raise
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the microphone, the speaker and the live connection"""
        if self.closed:
            return
        self.closed = True
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        if self.source:
            self.source.close()
        if self.sink:
            self.sink.close()
        await self.transport.close()
        self.transcript = ""
        logger.info("Voice session closed")
