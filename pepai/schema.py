"""
Drill Schema - Core data models using Pydantic.

This module defines the complete type system for drills, sessions and
billing profiles. Every piece of JSON that enters the system (model
responses, stored documents, share links) ends up as one of these models.

Coordinate system:
- x: 0 = left edge of the canvas, 100 = right edge
- y: 0 = top of the canvas, 100 = bottom
The same logical 0-100 space is used for every layout (full, half, grid).
"""

import uuid
import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PITCH_MIN = 0.0
PITCH_MAX = 100.0


def new_id() -> str:
    """Fresh identifier for drills, markers and arrows"""
    return str(uuid.uuid4())


def clamp(value: float) -> float:
    """Clamp a coordinate to the logical canvas"""
    return max(PITCH_MIN, min(PITCH_MAX, float(value)))


# ============================================================
# ENUMS
# ============================================================

class PositionType(str, Enum):
    PLAYER = "player"
    CONE = "cone"
    BALL = "ball"
    GOAL = "goal"


class ArrowType(str, Enum):
    PASS = "pass"
    DRIBBLE = "dribble"
    RUN = "run"


class PitchLayout(str, Enum):
    FULL = "full"
    HALF = "half"
    GRID = "grid"


class GoalSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class DrillCategory(str, Enum):
    TECHNICAL = "Technical"
    PHYSICAL = "Physical"
    TACTICAL = "Tactical"
    SITUATIONAL = "Situational"
    MENTAL = "Mental"
    PLAY = "Play"


DEFAULT_PLAYER_COLOR = "#2563eb"
DEFAULT_CONE_COLOR = "#f97316"


class WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON"""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================
# CORE TYPES
# ============================================================

class Point(WireModel):
    """A point on the logical canvas, clamped to 0-100 on both axes"""
    x: float = Field(description="X position (0=left, 100=right)")
    y: float = Field(description="Y position (0=top, 100=bottom)")

    @field_validator("x", "y")
    @classmethod
    def clamp_coordinate(cls, v):
        return clamp(v)


# ============================================================
# DIAGRAM ELEMENTS
# ============================================================

class PitchPosition(WireModel):
    """A marker on the pitch: player, cone, ball or goal"""
    id: str = Field(default_factory=new_id)
    x: float = Field(description="X coordinate 0-100")
    y: float = Field(description="Y coordinate 0-100")
    label: str = ""
    type: PositionType = PositionType.PLAYER
    color: Optional[str] = None
    size: Optional[GoalSize] = Field(default=None, description="Goal size (goals only)")

    @field_validator("x", "y")
    @classmethod
    def clamp_coordinate(cls, v):
        return clamp(v)

    @field_validator("label", mode="before")
    @classmethod
    def label_as_text(cls, v):
        return "" if v is None else str(v)

    @model_validator(mode="before")
    @classmethod
    def drop_size_for_non_goals(cls, data):
        if isinstance(data, dict) and data.get("size") is not None:
            kind = data.get("type", PositionType.PLAYER)
            if isinstance(kind, PositionType):
                kind = kind.value
            if kind != PositionType.GOAL.value:
                data = {k: v for k, v in data.items() if k != "size"}
        return data


class DrillArrow(WireModel):
    """A directional arrow: pass, dribble or run"""
    id: str = Field(default_factory=new_id)
    start: Point
    end: Point
    type: ArrowType = ArrowType.PASS
    color: Optional[str] = None

    @property
    def length(self) -> float:
        return ((self.end.x - self.start.x) ** 2 + (self.end.y - self.start.y) ** 2) ** 0.5


# ============================================================
# COMPLETE DRILL
# ============================================================

class Drill(WireModel):
    """
    Complete drill definition.

    Text content for the coach plus the tactical diagram. Marker and
    arrow ids are unique within a drill and never change once assigned.
    """
    id: str = Field(default_factory=new_id)
    name: str = Field(default="New Drill", description="Name of the drill")
    categories: List[DrillCategory] = Field(
        default_factory=lambda: [DrillCategory.TACTICAL], min_length=1
    )
    duration: str = "15m"
    players: str = "10"
    setup: str = ""
    instructions: List[str] = Field(default_factory=list)
    coaching_points: List[str] = Field(default_factory=list, alias="coachingPoints")
    layout: PitchLayout = PitchLayout.FULL

    # Diagram
    positions: List[PitchPosition] = Field(default_factory=list)
    arrows: List[DrillArrow] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self):
        """Ensure marker and arrow ids are unique within the drill"""
        seen = set()
        for element in [*self.positions, *self.arrows]:
            if element.id in seen:
                raise ValueError(f"Duplicate element id '{element.id}' in drill")
            seen.add(element.id)
        return self

    def find_position(self, position_id: str) -> Optional[PitchPosition]:
        return next((p for p in self.positions if p.id == position_id), None)

    def find_arrow(self, arrow_id: str) -> Optional[DrillArrow]:
        return next((a for a in self.arrows if a.id == arrow_id), None)

    def element_ids(self) -> set:
        return {p.id for p in self.positions} | {a.id for a in self.arrows}


# ============================================================
# SESSION
# ============================================================

class Session(WireModel):
    """An ordered collection of drills plus metadata - the unit of sharing"""
    id: str = Field(default_factory=new_id)
    title: str = "Academy Session"
    date: str = ""
    team: str = "First Team"
    drills: List[Drill] = Field(default_factory=list)
    notes: Optional[str] = None


# ============================================================
# BILLING
# ============================================================

FREE_TIER_CREDITS = 10


class BillingProfile(WireModel):
    """
    Per-user balance and capability record.

    Written only by the payment webhooks; the client reads it.
    """
    credits: int = FREE_TIER_CREDITS
    pep_points: int = Field(default=0, alias="pepPoints")
    can_save: bool = False
    can_export: bool = False
    tier: str = "free"

    @field_validator("can_save", "can_export", mode="before")
    @classmethod
    def parse_flag(cls, v):
        return v is True or v == "true"

    @field_validator("credits", "pep_points", mode="before")
    @classmethod
    def default_missing_balance(cls, v, info):
        if v is None:
            return FREE_TIER_CREDITS if info.field_name == "credits" else 0
        return v


# ============================================================
# FACTORIES
# ============================================================

def create_empty_drill() -> Drill:
    """Template used when a coach adds a drill manually"""
    return Drill(
        name="New Drill",
        categories=[DrillCategory.TACTICAL],
        duration="15m",
        players="10",
        setup="Basic area setup.",
        instructions=["Starting position..."],
        coaching_points=["Focus on..."],
        positions=[],
        arrows=[],
        layout=PitchLayout.FULL,
    )


def create_session(title: str = "Academy Session", team: str = "First Team") -> Session:
    """Empty session dated today"""
    return Session(title=title, team=team, date=datetime.date.today().isoformat(), drills=[], notes="")


def reuse_drill(drill: Drill) -> Drill:
    """Copy a history drill into the current session under a fresh id"""
    copy = drill.model_copy(deep=True)
    copy.id = new_id()
    return copy
