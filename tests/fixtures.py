"""
Test Fixtures - Predefined drill documents for testing.

These drills can be used to:
1. Test normalization and rendering without API calls
2. Stand in for model output in generator tests
3. Seed the in-memory store
"""

import json

# ============================================================
# EXAMPLE DRILLS
# ============================================================

RONDO_5V5 = {
    "name": "5v5 Rondo",
    "categories": ["Tactical", "Technical"],
    "duration": "15 mins",
    "players": "10",
    "layout": "grid",
    "setup": "20x20 grid with four cones at the corners.",
    "instructions": [
        "Blues keep the ball with one-touch passes",
        "Reds press in pairs and win it back",
        "Switch roles after each win",
    ],
    "coachingPoints": ["Open body shape", "Scan before receiving"],
    "positions": [
        {"x": 20, "y": 20, "label": "", "type": "cone"},
        {"x": 80, "y": 20, "label": "", "type": "cone"},
        {"x": 20, "y": 80, "label": "", "type": "cone"},
        {"x": 80, "y": 80, "label": "", "type": "cone"},
        {"x": 25, "y": 50, "label": "1", "type": "player", "color": "#2563eb"},
        {"x": 50, "y": 25, "label": "2", "type": "player", "color": "#2563eb"},
        {"x": 75, "y": 50, "label": "3", "type": "player", "color": "#2563eb"},
        {"x": 50, "y": 75, "label": "4", "type": "player", "color": "#2563eb"},
        {"x": 50, "y": 50, "label": "5", "type": "player", "color": "#2563eb"},
        {"x": 40, "y": 40, "label": "A", "type": "player", "color": "#dc2626"},
        {"x": 60, "y": 40, "label": "B", "type": "player", "color": "#dc2626"},
        {"x": 40, "y": 60, "label": "C", "type": "player", "color": "#dc2626"},
        {"x": 60, "y": 60, "label": "D", "type": "player", "color": "#dc2626"},
        {"x": 35, "y": 50, "label": "E", "type": "player", "color": "#dc2626"},
        {"x": 26, "y": 52, "label": "", "type": "ball"},
    ],
    "arrows": [
        {"start": {"x": 25, "y": 50}, "end": {"x": 50, "y": 25}, "type": "pass"},
        {"start": {"x": 50, "y": 25}, "end": {"x": 75, "y": 50}, "type": "pass"},
        {"start": {"x": 40, "y": 40}, "end": {"x": 48, "y": 30}, "type": "run"},
    ],
}

LEGACY_FINISHING = {
    "id": "legacy-1",
    "name": "Finishing 2v1",
    "category": "Finishing",
    "duration": "20m",
    "players": "3",
    "layout": "half",
    "setup": "Half pitch, one goal.",
    "instructions": ["Attacker dribbles at the defender", "Finish first time"],
    "coachingPoints": ["Shoot across the keeper"],
    "positions": [
        {"id": "p1", "x": 50, "y": 60, "label": "ST", "type": "player"},
        {"id": "p2", "x": 50, "y": 40, "label": "CB", "type": "player", "color": "#dc2626"},
        {"id": "g1", "x": 98, "y": 50, "label": "", "type": "goal", "size": "large"},
    ],
    "arrows": [
        {"id": "a1", "start": {"x": 50, "y": 60}, "end": {"x": 70, "y": 55}, "type": "dribble"},
        {"id": "a2", "start": {"x": 70, "y": 55}, "end": {"x": 97, "y": 50}, "type": "pass"},
    ],
}

EMPTY_DIAGRAM = {
    "name": "Talk Through",
    "categories": ["Mental"],
    "layout": "full",
    "instructions": [],
    "positions": [],
    "arrows": [],
}

ALL_FIXTURES = {
    "rondo_5v5": RONDO_5V5,
    "legacy_finishing": LEGACY_FINISHING,
    "empty_diagram": EMPTY_DIAGRAM,
}


def as_model_text(drill: dict) -> str:
    """The JSON text a model would stream for ``drill``"""
    return json.dumps(drill)
