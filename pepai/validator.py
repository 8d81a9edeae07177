"""
Drill Validation - Structural and semantic checks for normalized drills.

This module provides:
1. Structural validation (markers, arrows, layout sanity)
2. Semantic validation (drill matches the coach's request)

Errors mean the diagram is unusable; warnings are advisory and never block.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from .editor import MIN_ARROW_LENGTH
from .schema import PITCH_MAX, PITCH_MIN, ArrowType, Drill, PitchLayout, PitchPosition, PositionType


# ============================================================
# UTILITIES
# ============================================================

def distance(p1, p2) -> float:
    """Euclidean distance between two points or markers"""
    return math.sqrt((p1.x - p2.x) ** 2 + (p1.y - p2.y) ** 2)


def in_bounds(point) -> bool:
    return PITCH_MIN <= point.x <= PITCH_MAX and PITCH_MIN <= point.y <= PITCH_MAX


def markers_of(drill: Drill, kind: PositionType) -> List[PitchPosition]:
    return [p for p in drill.positions if p.type == kind]


# ============================================================
# VALIDATION RESULT
# ============================================================

@dataclass
class ValidationIssue:
    """A single validation issue"""
    message: str
    severity: str = "error"  # "error", "warning", "info"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> dict:
        return {"message": self.message, "severity": self.severity}


@dataclass
class ValidationResult:
    """Complete validation result"""
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True if no errors (warnings are OK)"""
        return not any(issue.is_error for issue in self.issues)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def add(self, message: str, severity: str = "error"):
        self.issues.append(ValidationIssue(message, severity))

    def add_error(self, message: str):
        self.add(message, "error")

    def add_warning(self, message: str):
        self.add(message, "warning")

    def to_dict(self) -> dict:
        return {"valid": self.is_valid, "issues": [i.to_dict() for i in self.issues]}


# ============================================================
# STRUCTURAL VALIDATOR
# ============================================================

class StructuralValidator:
    """
    Validates the structural correctness of a drill.

    Checks:
    - The diagram has at least one marker
    - Element ids are unique
    - All markers and arrow ends are within bounds
    - Players have reasonable spacing
    - Arrows are long enough to see
    - Goals sit on a full/half pitch, cones outline a grid
    """

    MIN_PLAYER_SPACING = 3  # Minimum units between players
    GRID_MIN_CONES = 4

    def __init__(self, drill: Drill):
        self.drill = drill

    def validate(self) -> ValidationResult:
        """Run all structural validations"""
        result = ValidationResult()

        self._check_markers(result)
        self._check_ids(result)
        self._check_bounds(result)
        self._check_spacing(result)
        self._check_arrows(result)
        self._check_layout(result)

        return result

    def _check_markers(self, result: ValidationResult):
        if not self.drill.positions:
            result.add_error("Drill diagram has no markers")
        elif not markers_of(self.drill, PositionType.PLAYER):
            result.add_warning("Drill diagram has no players")

    def _check_ids(self, result: ValidationResult):
        # In-place edits skip model validation
        seen = set()
        for element in [*self.drill.positions, *self.drill.arrows]:
            if element.id in seen:
                result.add_error(f"Duplicate element id '{element.id}'")
            seen.add(element.id)

    def _check_bounds(self, result: ValidationResult):
        """Verify all markers and arrow ends are on the canvas"""
        for marker in self.drill.positions:
            if not in_bounds(marker):
                result.add_error(f"Marker {marker.label or marker.id} is out of bounds: ({marker.x}, {marker.y})")
        for i, arrow in enumerate(self.drill.arrows):
            if not (in_bounds(arrow.start) and in_bounds(arrow.end)):
                result.add_error(f"Arrow {i + 1} is out of bounds")

    def _check_spacing(self, result: ValidationResult):
        players = markers_of(self.drill, PositionType.PLAYER)
        for i, p1 in enumerate(players):
            for p2 in players[i + 1:]:
                dist = distance(p1, p2)
                if dist < self.MIN_PLAYER_SPACING:
                    result.add_warning(
                        f"Players {p1.label or p1.id} and {p2.label or p2.id} overlap ({dist:.1f} units)"
                    )

    def _check_arrows(self, result: ValidationResult):
        for i, arrow in enumerate(self.drill.arrows):
            if arrow.length <= MIN_ARROW_LENGTH:
                result.add_warning(f"Arrow {i + 1} is too short to see ({arrow.length:.1f} units)")

    def _check_layout(self, result: ValidationResult):
        layout = self.drill.layout
        goals = markers_of(self.drill, PositionType.GOAL)
        cones = markers_of(self.drill, PositionType.CONE)

        if layout in (PitchLayout.FULL, PitchLayout.HALF) and not goals:
            result.add_warning(f"{layout.value.title()} pitch layout has no goals")
        if layout == PitchLayout.GRID and len(cones) < self.GRID_MIN_CONES:
            result.add_warning(f"Grid layout has {len(cones)} cones; expected at least {self.GRID_MIN_CONES}")


# ============================================================
# SEMANTIC VALIDATOR
# ============================================================

class SemanticValidator:
    """
    Validates that a drill matches the coach's request.

    For example, a "passing drill" should have at least two pass arrows.
    """

    def __init__(self, drill: Drill):
        self.drill = drill

    def _arrows(self, kind: ArrowType):
        return [a for a in self.drill.arrows if a.type == kind]

    def validate_goal(self, goal: str) -> ValidationResult:
        result = ValidationResult()
        goal_lower = goal.lower()

        if any(word in goal_lower for word in ["finish", "shoot", "scoring", "strike"]):
            if not markers_of(self.drill, PositionType.GOAL):
                result.add_warning("Finishing drill has no goal")

        if any(word in goal_lower for word in ["pass", "rondo", "combination", "one-two"]):
            if len(self._arrows(ArrowType.PASS)) < 2:
                result.add_warning("Passing drill has fewer than 2 pass arrows")

        if any(word in goal_lower for word in ["dribbl", "1v1", "take on", "beat"]):
            if not self._arrows(ArrowType.DRIBBLE):
                result.add_warning("Dribbling drill has no dribble arrow")

        if any(word in goal_lower for word in ["cross", "crossing", "wide play"]):
            wide = [p for p in markers_of(self.drill, PositionType.PLAYER) if p.x < 25 or p.x > 75]
            if not wide:
                result.add_warning("Crossing drill has no wide players")

        if not self.drill.instructions:
            result.add_warning("Drill has no instructions")

        return result


# ============================================================
# COMBINED VALIDATOR
# ============================================================

def validate_drill(drill: Drill, goal: Optional[str] = None) -> ValidationResult:
    """
    Run all validations on a drill.

    Args:
        drill: The drill to validate
        goal: Optional coach prompt for semantic validation
    """
    combined = ValidationResult()
    combined.issues.extend(StructuralValidator(drill).validate().issues)
    if goal:
        combined.issues.extend(SemanticValidator(drill).validate_goal(goal).issues)
    return combined
