"""
PepAI Drill Studio

Generate, edit and share soccer training drills. Drills are produced by a
language model as structured JSON, reconciled into canonical models, edited
on a 0-100 tactical canvas and stored or shared through Supabase.

Quick Start:
    from pepai import DrillGenerator, DrillPipeline

    pipeline = DrillPipeline(DrillGenerator())
    result = await pipeline.generate("5v5 rondo")

Manual Drill Editing:
    from pepai import PitchEditor, Tool, create_empty_drill

    editor = PitchEditor(create_empty_drill())
    editor.set_tool(Tool.PLAYER)
    editor.pointer_down(30, 40)
    editor.pointer_up()

Voice Editing:
    from pepai import GeminiLiveTransport, VoiceBridge

    transport = await GeminiLiveTransport.connect(drill, api_key)
    bridge = VoiceBridge(transport, drill, source=mic, sink=speaker)
    await bridge.run()
"""

from .schema import (
    # Enums
    PositionType,
    ArrowType,
    PitchLayout,
    GoalSize,
    DrillCategory,

    # Core types
    Point,
    PitchPosition,
    DrillArrow,
    Drill,
    Session,
    BillingProfile,

    # Factories
    create_empty_drill,
    create_session,
    reuse_drill,
)

from .errors import PepAIError
from .normalizer import normalize_drill, normalize_response, restore_drill
from .editor import PitchEditor, Tool, EditorState
from .compression import compress_session, decompress_session
from .generator import DrillGenerator, Progress, Retrying, Done, Failed
from .renderer import render, render_drill
from .validator import validate_drill, ValidationResult
from .pipeline import DrillPipeline, PipelineResult
from .voice import VoiceBridge, GeminiLiveTransport, apply_tool_call

__all__ = [
    # Enums
    "PositionType",
    "ArrowType",
    "PitchLayout",
    "GoalSize",
    "DrillCategory",

    # Core types
    "Point",
    "PitchPosition",
    "DrillArrow",
    "Drill",
    "Session",
    "BillingProfile",

    # Functions
    "create_empty_drill",
    "create_session",
    "reuse_drill",
    "normalize_drill",
    "normalize_response",
    "restore_drill",
    "compress_session",
    "decompress_session",
    "render",
    "render_drill",
    "validate_drill",
    "apply_tool_call",

    # Classes
    "PepAIError",
    "PitchEditor",
    "Tool",
    "EditorState",
    "DrillGenerator",
    "Progress",
    "Retrying",
    "Done",
    "Failed",
    "DrillPipeline",
    "ValidationResult",
    "PipelineResult",
    "VoiceBridge",
    "GeminiLiveTransport",
]

__version__ = "1.0.0"
