"""
Pitch Editor - direct-manipulation editing of a drill diagram.

The editor is a small state machine driven by pointer events expressed in
logical pitch coordinates (0-100 on both axes) and by the active tool:

    select      drag markers, drag arrows, drag arrow endpoints
    player/cone/ball/goal
                place one marker, then fall back to select
    pass/dribble/run
                press-drag-release to draw an arrow

All coordinates written to the drill are clamped to the canvas. Marker and
arrow ids are never changed by the editor, and at most one element is
selected at a time.
"""

import math
from enum import Enum
from typing import Callable, Optional, Tuple

from .schema import (
    DEFAULT_PLAYER_COLOR,
    ArrowType,
    Drill,
    DrillArrow,
    GoalSize,
    PitchPosition,
    Point,
    PositionType,
    clamp,
    new_id,
)


# ============================================================
# TOOLS & STATES
# ============================================================

class Tool(str, Enum):
    SELECT = "select"
    PLAYER = "player"
    CONE = "cone"
    BALL = "ball"
    GOAL = "goal"
    PASS = "pass"
    DRIBBLE = "dribble"
    RUN = "run"


MARKER_TOOLS = {
    Tool.PLAYER: PositionType.PLAYER,
    Tool.CONE: PositionType.CONE,
    Tool.BALL: PositionType.BALL,
    Tool.GOAL: PositionType.GOAL,
}

ARROW_TOOLS = {
    Tool.PASS: ArrowType.PASS,
    Tool.DRIBBLE: ArrowType.DRIBBLE,
    Tool.RUN: ArrowType.RUN,
}


class EditorState(str, Enum):
    IDLE = "idle"
    DRAGGING_MARKER = "dragging-marker"
    DRAGGING_ARROW_BODY = "dragging-arrow-body"
    DRAGGING_ARROW_ENDPOINT = "dragging-arrow-endpoint"
    DRAWING_ARROW = "drawing-arrow"
    PLACING_MARKER = "placing-marker"


# Logical units (the canvas is 100 wide)
MIN_ARROW_LENGTH = 1.5
MARKER_HIT_RADIUS = 4.0
HANDLE_HIT_RADIUS = 1.5
ARROW_HIT_DISTANCE = 3.0


# ============================================================
# GEOMETRY
# ============================================================

def distance(x1: float, y1: float, x2: float, y2: float) -> float:
    return math.hypot(x2 - x1, y2 - y1)


def distance_to_segment(px: float, py: float, start: Point, end: Point) -> float:
    """Shortest distance from (px, py) to the segment start-end"""
    dx, dy = end.x - start.x, end.y - start.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return distance(px, py, start.x, start.y)
    t = ((px - start.x) * dx + (py - start.y) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    return distance(px, py, start.x + t * dx, start.y + t * dy)


def canvas_to_pitch(px: float, py: float, width: float, height: float) -> Tuple[float, float]:
    """Convert a pixel offset inside the rendered canvas to clamped pitch coordinates"""
    if width <= 0 or height <= 0:
        return 0.0, 0.0
    return clamp(px / width * 100), clamp(py / height * 100)


# ============================================================
# EDITOR
# ============================================================

class PitchEditor:
    """
    Interactive editor for one drill's diagram.

    Example:
        editor = PitchEditor(drill)
        editor.set_tool(Tool.PASS)
        editor.pointer_down(20, 50)
        editor.pointer_move(40, 50)
        editor.pointer_up(40, 50)      # adds a pass arrow and selects it
    """

    def __init__(
        self,
        drill: Drill,
        tool: Tool = Tool.SELECT,
        read_only: bool = False,
        on_change: Optional[Callable[[Drill], None]] = None,
    ):
        self.drill = drill
        self.tool = Tool(tool)
        self.read_only = read_only
        self.on_change = on_change

        self.state = EditorState.IDLE
        self.selected_marker_id: Optional[str] = None
        self.selected_arrow_id: Optional[str] = None

        self._drag_id: Optional[str] = None
        self._drag_handle: Optional[str] = None  # "start" or "end"
        self._last_pointer: Optional[Tuple[float, float]] = None
        self._draft: Optional[Tuple[Point, Point]] = None

    # --------------------------------------------------------
    # Selection
    # --------------------------------------------------------

    @property
    def selection(self) -> Optional[Tuple[str, str]]:
        """("marker", id), ("arrow", id) or None"""
        if self.selected_marker_id:
            return ("marker", self.selected_marker_id)
        if self.selected_arrow_id:
            return ("arrow", self.selected_arrow_id)
        return None

    def select_marker(self, marker_id: str):
        if self.drill.find_position(marker_id) is None:
            raise KeyError(marker_id)
        self.selected_marker_id = marker_id
        self.selected_arrow_id = None

    def select_arrow(self, arrow_id: str):
        if self.drill.find_arrow(arrow_id) is None:
            raise KeyError(arrow_id)
        self.selected_arrow_id = arrow_id
        self.selected_marker_id = None

    def clear_selection(self):
        self.selected_marker_id = None
        self.selected_arrow_id = None

    def set_tool(self, tool: Tool):
        """Switch tools; any half-drawn arrow is discarded"""
        self.tool = Tool(tool)
        self._reset_gesture()

    def replace_drill(self, drill: Drill):
        """
        Swap in a refined drill (same drill id, new content).

        Selection survives if the selected element still exists.
        """
        self.drill = drill
        self._reset_gesture()
        if self.selected_marker_id and drill.find_position(self.selected_marker_id) is None:
            self.selected_marker_id = None
        if self.selected_arrow_id and drill.find_arrow(self.selected_arrow_id) is None:
            self.selected_arrow_id = None

    @property
    def preview_arrow(self) -> Optional[DrillArrow]:
        """The arrow being drawn, for live rendering"""
        if self._draft is None or self.tool not in ARROW_TOOLS:
            return None
        start, end = self._draft
        return DrillArrow(id=f"draft-{self.drill.id[:8]}", start=start, end=end, type=ARROW_TOOLS[self.tool])

    # --------------------------------------------------------
    # Pointer events
    # --------------------------------------------------------

    def pointer_down(self, x: float, y: float):
        if self.read_only:
            return
        x, y = clamp(x), clamp(y)

        if self.tool in MARKER_TOOLS:
            self._place_marker(MARKER_TOOLS[self.tool], x, y)
        elif self.tool in ARROW_TOOLS:
            self._draft = (Point(x=x, y=y), Point(x=x, y=y))
            self.state = EditorState.DRAWING_ARROW
        else:
            self._begin_select_gesture(x, y)

    def pointer_move(self, x: float, y: float):
        if self.read_only:
            return
        x, y = clamp(x), clamp(y)

        if self.state == EditorState.DRAGGING_MARKER:
            marker = self.drill.find_position(self._drag_id)
            if marker is not None:
                marker.x, marker.y = x, y
                self._changed()
        elif self.state == EditorState.DRAGGING_ARROW_ENDPOINT:
            arrow = self.drill.find_arrow(self._drag_id)
            if arrow is not None:
                setattr(arrow, self._drag_handle, Point(x=x, y=y))
                self._changed()
        elif self.state == EditorState.DRAGGING_ARROW_BODY:
            arrow = self.drill.find_arrow(self._drag_id)
            if arrow is not None and self._last_pointer is not None:
                self._translate_arrow(arrow, x - self._last_pointer[0], y - self._last_pointer[1])
                self._changed()
            self._last_pointer = (x, y)
        elif self.state == EditorState.DRAWING_ARROW and self._draft is not None:
            self._draft = (self._draft[0], Point(x=x, y=y))

    def pointer_up(self, x: Optional[float] = None, y: Optional[float] = None):
        if self.read_only:
            return
        if self.state == EditorState.DRAWING_ARROW and self._draft is not None:
            if x is not None and y is not None:
                self._draft = (self._draft[0], Point(x=x, y=y))
            self._commit_draft()
        self._reset_gesture()

    # --------------------------------------------------------
    # Edits
    # --------------------------------------------------------

    def delete(self, element_id: str) -> bool:
        """Remove a marker or arrow by id, clearing any selection of it"""
        if self.read_only:
            return False
        before = len(self.drill.positions) + len(self.drill.arrows)
        self.drill.positions = [p for p in self.drill.positions if p.id != element_id]
        self.drill.arrows = [a for a in self.drill.arrows if a.id != element_id]
        if element_id in (self.selected_marker_id, self.selected_arrow_id):
            self.clear_selection()
        if self._drag_id == element_id:
            self._reset_gesture()
        removed = before != len(self.drill.positions) + len(self.drill.arrows)
        if removed:
            self._changed()
        return removed

    def delete_selected(self) -> bool:
        selection = self.selection
        if selection is None:
            return False
        return self.delete(selection[1])

    def update_marker(
        self,
        marker_id: str,
        label: Optional[str] = None,
        color: Optional[str] = None,
        size: Optional[GoalSize] = None,
    ):
        """Edit marker properties from the side panel"""
        if self.read_only:
            return
        marker = self.drill.find_position(marker_id)
        if marker is None:
            raise KeyError(marker_id)
        if label is not None and marker.type != PositionType.GOAL:
            marker.label = label
        if color is not None:
            marker.color = color
        if size is not None and marker.type == PositionType.GOAL:
            marker.size = GoalSize(size)
        self._changed()

    def update_arrow(self, arrow_id: str, color: Optional[str] = None, arrow_type: Optional[ArrowType] = None):
        if self.read_only:
            return
        arrow = self.drill.find_arrow(arrow_id)
        if arrow is None:
            raise KeyError(arrow_id)
        if color is not None:
            arrow.color = color
        if arrow_type is not None:
            arrow.type = ArrowType(arrow_type)
        self._changed()

    # --------------------------------------------------------
    # Internals
    # --------------------------------------------------------

    def _place_marker(self, kind: PositionType, x: float, y: float):
        label = ""
        color = None
        if kind == PositionType.PLAYER:
            players = [p for p in self.drill.positions if p.type == PositionType.PLAYER]
            label = str(len(players) + 1)
            color = DEFAULT_PLAYER_COLOR
        marker = PitchPosition(id=new_id(), x=x, y=y, label=label, type=kind, color=color)
        self.drill.positions.append(marker)
        self.select_marker(marker.id)
        self.tool = Tool.SELECT
        self.state = EditorState.PLACING_MARKER
        self._changed()

    def _begin_select_gesture(self, x: float, y: float):
        # Endpoint handles exist only on the selected arrow
        if self.selected_arrow_id:
            arrow = self.drill.find_arrow(self.selected_arrow_id)
            if arrow is not None:
                for handle in ("start", "end"):
                    point = getattr(arrow, handle)
                    if distance(x, y, point.x, point.y) <= HANDLE_HIT_RADIUS:
                        self._drag_id = arrow.id
                        self._drag_handle = handle
                        self.state = EditorState.DRAGGING_ARROW_ENDPOINT
                        return

        marker = self._marker_at(x, y)
        if marker is not None:
            self.select_marker(marker.id)
            self._drag_id = marker.id
            self.state = EditorState.DRAGGING_MARKER
            return

        arrow = self._arrow_at(x, y)
        if arrow is not None:
            self.select_arrow(arrow.id)
            self._drag_id = arrow.id
            self._last_pointer = (x, y)
            self.state = EditorState.DRAGGING_ARROW_BODY
            return

        self.clear_selection()

    def _marker_at(self, x: float, y: float) -> Optional[PitchPosition]:
        # Last drawn is on top
        for marker in reversed(self.drill.positions):
            if distance(x, y, marker.x, marker.y) < MARKER_HIT_RADIUS:
                return marker
        return None

    def _arrow_at(self, x: float, y: float) -> Optional[DrillArrow]:
        for arrow in reversed(self.drill.arrows):
            if distance_to_segment(x, y, arrow.start, arrow.end) <= ARROW_HIT_DISTANCE:
                return arrow
        return None

    def _translate_arrow(self, arrow: DrillArrow, dx: float, dy: float):
        # Limit the move so neither end leaves the canvas
        xs, ys = (arrow.start.x, arrow.end.x), (arrow.start.y, arrow.end.y)
        dx = max(-min(xs), min(100 - max(xs), dx))
        dy = max(-min(ys), min(100 - max(ys), dy))
        arrow.start = Point(x=arrow.start.x + dx, y=arrow.start.y + dy)
        arrow.end = Point(x=arrow.end.x + dx, y=arrow.end.y + dy)

    def _commit_draft(self):
        start, end = self._draft
        if distance(start.x, start.y, end.x, end.y) <= MIN_ARROW_LENGTH:
            return
        arrow = DrillArrow(id=new_id(), start=start, end=end, type=ARROW_TOOLS[self.tool])
        self.drill.arrows.append(arrow)
        self.select_arrow(arrow.id)
        self._changed()

    def _reset_gesture(self):
        self.state = EditorState.IDLE
        self._drag_id = None
        self._drag_handle = None
        self._last_pointer = None
        self._draft = None

    def _changed(self):
        if self.on_change is not None:
            self.on_change(self.drill)
