"""
Drill Renderer - Generates SVG/PNG diagrams from drills.

This module renders:
- Pitch markings for the drill layout (full, half, grid)
- Players, cones, balls and goals
- Arrows styled by type (pass, dribble, run)

Coordinates use the 0-100 canvas with y pointing down, so the y axis is
inverted to keep the diagram the same way up as the editor.
"""

import io
from pathlib import Path
from typing import Tuple

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend

import matplotlib.pyplot as plt
import matplotlib.patches as patches
import numpy as np

from .schema import (
    DEFAULT_CONE_COLOR,
    DEFAULT_PLAYER_COLOR,
    ArrowType,
    Drill,
    DrillArrow,
    GoalSize,
    PitchLayout,
    PitchPosition,
    PositionType,
)


# ============================================================
# STYLING
# ============================================================

PITCH_COLOR = "#2d5a27"
GRASS_LIGHT = "#336630"
LINE_COLOR = "white"
LINE_WIDTH = 1.5

ARROW_STYLES = {
    ArrowType.PASS: {"color": "white", "linestyle": "-"},
    ArrowType.DRIBBLE: {"color": "#facc15", "linestyle": "--"},
    ArrowType.RUN: {"color": "black", "linestyle": ":"},
}

GOAL_HEIGHTS = {
    GoalSize.SMALL: 6,
    GoalSize.MEDIUM: 10,
    GoalSize.LARGE: 14,
}

SUPPORTED_FORMATS = ("svg", "png")


# ============================================================
# FIELD RENDERER
# ============================================================

class FieldRenderer:
    """Renders the pitch markings for a layout"""

    def __init__(self, ax, layout: PitchLayout):
        self.ax = ax
        self.layout = layout

    def draw(self):
        """Draw the complete pitch"""
        self.ax.set_xlim(0, 100)
        self.ax.set_ylim(100, 0)

        self._draw_grass()
        if self.layout == PitchLayout.FULL:
            self._draw_full()
        elif self.layout == PitchLayout.HALF:
            self._draw_half()
        else:
            self._draw_grid()

        self.ax.set_aspect("equal")
        self.ax.axis("off")

    def _rect(self, x, y, w, h, **kwargs):
        self.ax.add_patch(patches.Rectangle(
            (x, y), w, h, fill=False, edgecolor=LINE_COLOR, lw=LINE_WIDTH, zorder=1, **kwargs
        ))

    def _draw_grass(self):
        """Draw striped grass"""
        stripe_width = 10
        for i in range(0, 100, stripe_width):
            color = PITCH_COLOR if (i // stripe_width) % 2 == 0 else GRASS_LIGHT
            self.ax.add_patch(patches.Rectangle((i, 0), stripe_width, 100, color=color, zorder=0))

    def _draw_full(self):
        self._rect(2, 2, 96, 96)
        self.ax.plot([50, 50], [2, 98], color=LINE_COLOR, lw=LINE_WIDTH, zorder=1)
        self.ax.add_patch(patches.Circle(
            (50, 50), 8, fill=False, edgecolor=LINE_COLOR, lw=LINE_WIDTH, zorder=1
        ))
        self._rect(2, 25, 16, 50)
        self._rect(82, 25, 16, 50)

    def _draw_half(self):
        self._rect(2, 2, 96, 96)
        self._rect(2, 20, 25, 60)
        self.ax.add_patch(patches.Arc(
            (27, 50), 20, 20, theta1=-90, theta2=90, edgecolor=LINE_COLOR, lw=LINE_WIDTH, zorder=1
        ))

    def _draw_grid(self):
        self._rect(10, 10, 80, 80, linestyle="--")


# ============================================================
# ENTITY RENDERER
# ============================================================

class EntityRenderer:
    """Renders players, cones, balls and goals"""

    def __init__(self, ax):
        self.ax = ax

    def draw(self, position: PitchPosition):
        if position.type == PositionType.PLAYER:
            self.draw_player(position)
        elif position.type == PositionType.CONE:
            self.draw_cone(position)
        elif position.type == PositionType.BALL:
            self.draw_ball(position)
        else:
            self.draw_goal(position)

    def draw_player(self, player: PitchPosition):
        self.ax.scatter(
            player.x, player.y,
            s=220, c=player.color or DEFAULT_PLAYER_COLOR, edgecolors="white",
            linewidths=1.5, zorder=10
        )
        if player.label:
            self.ax.annotate(
                player.label,
                (player.x, player.y),
                ha='center',
                va='center',
                fontsize=7,
                fontweight='bold',
                color='white',
                zorder=11
            )

    def draw_cone(self, cone: PitchPosition):
        # "^" points up on screen even with the inverted axis
        self.ax.scatter(
            cone.x, cone.y, s=80, marker="^",
            c=cone.color or DEFAULT_CONE_COLOR, edgecolors="black",
            linewidths=0.8, zorder=4
        )

    def draw_ball(self, ball: PitchPosition):
        """Draw a soccer ball"""
        self.ax.scatter(
            ball.x, ball.y, s=70, c="white",
            edgecolors="black", linewidths=1.2,
            zorder=12
        )
        self.ax.scatter(ball.x, ball.y, s=18, c="black", marker='p', zorder=13)

    def draw_goal(self, goal: PitchPosition):
        height = GOAL_HEIGHTS.get(goal.size, GOAL_HEIGHTS[GoalSize.MEDIUM])
        self.ax.add_patch(patches.Rectangle(
            (goal.x - 1.5, goal.y - height / 2), 3, height,
            fill=False, edgecolor=goal.color or "white", lw=2.5, zorder=3
        ))


# ============================================================
# ARROW RENDERER
# ============================================================

class ArrowRenderer:
    """Renders movement arrows with consistent styling"""

    LINE_WIDTH = 2.0
    ARROW_HEAD_WIDTH = 1.8
    ARROW_HEAD_LENGTH = 1.5

    def __init__(self, ax):
        self.ax = ax

    def draw(self, arrow: DrillArrow):
        style = ARROW_STYLES[arrow.type]
        color = arrow.color or style["color"]

        x1, y1 = arrow.start.x, arrow.start.y
        dx = arrow.end.x - x1
        dy = arrow.end.y - y1
        dist = np.sqrt(dx**2 + dy**2)
        if dist == 0:
            return

        # Line stops where the arrowhead begins
        head = min(self.ARROW_HEAD_LENGTH, dist)
        line_end_ratio = (dist - head) / dist

        t = np.linspace(0, line_end_ratio, 50)
        self.ax.plot(
            x1 + dx * t, y1 + dy * t,
            color=color, lw=self.LINE_WIDTH, linestyle=style["linestyle"],
            zorder=4, solid_capstyle='round'
        )
        self.ax.arrow(
            x1 + dx * line_end_ratio, y1 + dy * line_end_ratio,
            dx * (1 - line_end_ratio), dy * (1 - line_end_ratio),
            head_width=self.ARROW_HEAD_WIDTH,
            head_length=head,
            fc=color, ec=color, lw=0,
            length_includes_head=True, zorder=5
        )


# ============================================================
# MAIN RENDER FUNCTIONS
# ============================================================

def _draw(drill: Drill, figsize: Tuple[float, float]):
    fig, ax = plt.subplots(figsize=figsize)
    FieldRenderer(ax, drill.layout).draw()

    arrows = ArrowRenderer(ax)
    for arrow in drill.arrows:
        arrows.draw(arrow)

    entities = EntityRenderer(ax)
    for position in drill.positions:
        entities.draw(position)
    return fig


def render_drill(
    drill: Drill,
    fmt: str = "svg",
    figsize: Tuple[float, float] = (8, 8),
    dpi: int = 100
) -> bytes:
    """
    Render a drill diagram and return the encoded image.

    Args:
        drill: The Drill to render
        fmt: "svg" or "png"
        figsize: Figure dimensions (width, height) in inches
        dpi: Resolution for raster output
    """
    fmt = fmt.lower()
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")

    fig = _draw(drill, figsize)
    buffer = io.BytesIO()
    try:
        fig.savefig(buffer, format=fmt, bbox_inches="tight", dpi=dpi)
    finally:
        plt.close(fig)
    return buffer.getvalue()


def render(drill: Drill, output_path: str, dpi: int = 100) -> str:
    """Render a drill to a file; the format follows the file extension"""
    path = Path(output_path)
    fmt = path.suffix.lstrip(".") or "svg"
    path.write_bytes(render_drill(drill, fmt=fmt, dpi=dpi))
    return str(path)
