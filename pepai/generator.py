"""
Drill Generator - LLM-powered drill creation with structured output.

The model is forced to answer through the ``create_drill`` tool, whose input
schema mirrors the Drill model. The tool input arrives as a stream of JSON
fragments; callers receive the accumulated text after every fragment so a
UI can show progress while the drill is being drafted.

Streams are async iterators of events:

    Progress(text)          accumulated JSON text so far
    Retrying(attempt, delay)
                            provider overloaded, whole request will be retried
    Done(text)              final JSON text

Exhausting the retry budget raises HighDemandError.
"""

import asyncio
import json
import logging
import os
import random
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple, Union

import anthropic
from anthropic import AsyncAnthropic

from .config import DEFAULT_MODEL, MAX_PROMPT_LENGTH
from .errors import (
    ConfigurationError,
    HighDemandError,
    MalformedResponseError,
    PromptValidationError,
    UpstreamError,
)
from .normalizer import normalize_drill, try_parse_partial
from .schema import Drill

logger = logging.getLogger(__name__)


# ============================================================
# PROMPTS & SCHEMA
# ============================================================

SYSTEM_PROMPT = """You are an elite soccer coach and session designer. The coach describes a drill; you create exactly ONE drill that matches the description, including a detailed visual layout.

## COORDINATE SYSTEM (CRITICAL)

The pitch is a 0-100 grid on both axes:
- X axis: 0 = left, 100 = right
- Y axis: 0 = top, 100 = bottom

## LAYOUT
- "full" or "half": place goals at the ends
- "grid": mark out a box with cones at the corners

## MARKERS
- Types: player, cone, ball, goal
- Label players briefly ("1", "GK", "ST", "Blue")
- Use hex colours to separate teams

## ARROWS
- pass: ball movement (also shots)
- dribble: player moving with the ball
- run: player moving without the ball
- Arrows should match the instructions step by step

## RULES
1. Every coordinate stays inside 0-100
2. Provide clear step-by-step instructions
3. Include 2-4 specific coaching points
4. Choose one or more categories that describe the drill

Use the create_drill tool to return the drill."""


_POINT = {
    "type": "object",
    "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
    "required": ["x", "y"],
}

DRILL_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Catchy name for the drill"},
        "categories": {
            "type": "array",
            "items": {
                "type": "string",
                "enum": ["Technical", "Physical", "Tactical", "Situational", "Mental", "Play"],
            },
            "description": "One or more categories that best describe the drill",
        },
        "duration": {"type": "string", "description": "e.g., 15 mins"},
        "players": {"type": "string", "description": "e.g., 8+2"},
        "layout": {"type": "string", "enum": ["full", "half", "grid"]},
        "setup": {"type": "string", "description": "Brief description of the physical setup"},
        "instructions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Step by step execution guide",
        },
        "coachingPoints": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Key tactical reminders for players",
        },
        "positions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "x": {"type": "number", "minimum": 0, "maximum": 100},
                    "y": {"type": "number", "minimum": 0, "maximum": 100},
                    "label": {"type": "string"},
                    "type": {"type": "string", "enum": ["player", "cone", "ball", "goal"]},
                    "color": {"type": "string"},
                },
                "required": ["x", "y", "label", "type"],
            },
        },
        "arrows": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "start": _POINT,
                    "end": _POINT,
                    "type": {"type": "string", "enum": ["pass", "dribble", "run"]},
                    "color": {"type": "string"},
                },
                "required": ["start", "end", "type"],
            },
        },
    },
    "required": [
        "name", "categories", "duration", "players", "layout", "setup",
        "instructions", "coachingPoints", "positions", "arrows",
    ],
}

DRILL_TOOL = {
    "name": "create_drill",
    "description": "Create a complete soccer drill with diagram data and coaching content",
    "input_schema": DRILL_SCHEMA,
}


def validate_prompt(prompt: Optional[str], max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Trim a coach prompt, rejecting empty or oversized input"""
    text = prompt.strip() if isinstance(prompt, str) else ""
    if not text:
        raise PromptValidationError("Missing or empty prompt.", user_message="Missing or empty prompt.")
    if len(text) > max_length:
        message = f"Prompt must be at most {max_length} characters."
        raise PromptValidationError(message, user_message=message)
    return text


def build_prompt(prompt: str) -> str:
    """User message for a fresh drill"""
    return (
        f'Create a tactical drill for: "{prompt}".\n'
        "Pitch grid is 0-100. Provide clear instructions and high-quality tactical positioning."
    )


def build_refine_prompt(drill: Drill, instruction: str) -> str:
    """User message for updating an existing drill"""
    current = json.dumps(drill.to_dict())
    return (
        f"Update this drill: {current}\n"
        f'Modification requested: "{instruction}"\n'
        "Return the FULL updated drill. Keep coordinates precise on the 0-100 grid."
    )


# ============================================================
# STREAM EVENTS
# ============================================================

@dataclass(frozen=True)
class Progress:
    text: str


@dataclass(frozen=True)
class Retrying:
    attempt: int
    delay: float


@dataclass(frozen=True)
class Done:
    text: str


@dataclass(frozen=True)
class Failed:
    """Terminal failure, produced by consumers that turn exceptions into events"""
    error: Exception
    message: str


StreamEvent = Union[Progress, Retrying, Done, Failed]


OVERLOADED_STATUS_CODES = frozenset({503, 529})


def is_overloaded(exc: BaseException) -> bool:
    """True if the provider reported it is overwhelmed/unavailable"""
    return isinstance(exc, anthropic.APIStatusError) and exc.status_code in OVERLOADED_STATUS_CODES


def _upstream_error(exc: anthropic.APIError) -> UpstreamError:
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return UpstreamError(str(exc), user_message="Check your API key and try again.")
    return UpstreamError(str(exc))


# ============================================================
# GENERATOR
# ============================================================

class DrillGenerator:
    """
    Streams drills from Claude with retry on provider overload.

    Example:
        generator = DrillGenerator()
        async for event in generator.stream_generate("5v5 rondo"):
            ...
        drill = await generator.generate_drill("5v5 rondo")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client=None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        jitter: float = 1.0,
        max_tokens: int = 4096,
        max_prompt_length: int = MAX_PROMPT_LENGTH,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ConfigurationError(
                    "ANTHROPIC_API_KEY is not configured",
                    user_message="The drill generator is not configured. Add ANTHROPIC_API_KEY and restart.",
                )
            # Retries are ours, so the SDK must not retry on its own
            client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self.client = client
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.jitter = jitter
        self.max_tokens = max_tokens
        self.max_prompt_length = max_prompt_length
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``: doubling base plus jitter"""
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter)

    async def _stream_once(self, user_message: str) -> AsyncIterator[str]:
        stream = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            tools=[DRILL_TOOL],
            tool_choice={"type": "tool", "name": DRILL_TOOL["name"]},
            messages=[{"role": "user", "content": user_message}],
            stream=True,
        )
        async for event in stream:
            if event.type != "content_block_delta":
                continue
            delta = event.delta
            if delta.type == "input_json_delta":
                chunk = delta.partial_json
            elif delta.type == "text_delta":
                chunk = delta.text
            else:
                continue
            if chunk:
                yield chunk

    async def _stream(self, user_message: str, kind: str) -> AsyncIterator[StreamEvent]:
        for attempt in range(self.max_retries):
            text = ""
            overloaded = None
            try:
                async for chunk in self._stream_once(user_message):
                    text += chunk
                    yield Progress(text)
            except anthropic.APIError as e:
                if not is_overloaded(e):
                    logger.error("Model API error (%s, attempt %d): %s", kind, attempt + 1, e)
                    raise _upstream_error(e) from e
                overloaded = e

            if overloaded is None:
                yield Done(text)
                return

            logger.warning("Model overloaded (%s, attempt %d/%d)", kind, attempt + 1, self.max_retries)
            if attempt + 1 >= self.max_retries:
                raise HighDemandError(str(overloaded)) from overloaded

            delay = self.backoff_delay(attempt)
            logger.info("Retrying in %dms...", round(delay * 1000))
            yield Retrying(attempt=attempt + 1, delay=delay)
            await self.sleep(delay)

    def stream_generate(self, prompt: str) -> AsyncIterator[StreamEvent]:
        """Stream a new drill for a coach prompt"""
        return self._stream(build_prompt(validate_prompt(prompt, self.max_prompt_length)), "generate")

    def stream_refine(self, drill: Drill, instruction: str) -> AsyncIterator[StreamEvent]:
        """Stream the full updated version of ``drill``"""
        return self._stream(build_refine_prompt(drill, validate_prompt(instruction, self.max_prompt_length)), "refine")

    async def generate_drill(self, prompt: str) -> Drill:
        text = await collect(self.stream_generate(prompt))
        return normalize_drill(text)

    async def refine_drill(self, drill: Drill, instruction: str) -> Drill:
        """Refined drill, keeping the original drill id"""
        text = await collect(self.stream_refine(drill, instruction))
        return normalize_drill(text, existing_id=drill.id)

    async def refine_with_preview(
        self, drill: Drill, instruction: str
    ) -> AsyncIterator[Tuple[StreamEvent, Optional[Drill]]]:
        """
        Yield (event, preview) pairs while refining.

        ``preview`` is the partially streamed drill once its JSON parses,
        None until then. The Done event always carries the final drill.
        """
        async for event in self.stream_refine(drill, instruction):
            if isinstance(event, Progress):
                yield event, try_parse_partial(event.text, existing_id=drill.id)
            elif isinstance(event, Done):
                yield event, normalize_drill(event.text, existing_id=drill.id)
            else:
                yield event, None


async def collect(events: AsyncIterator[StreamEvent]) -> str:
    """Consume a stream and return the final text"""
    final = None
    async for event in events:
        if isinstance(event, Done):
            final = event.text
        elif isinstance(event, Failed):
            raise event.error
    if final is None:
        raise MalformedResponseError("Stream ended without a result")
    return final
