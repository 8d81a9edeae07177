"""
Drill Normalizer - turns model output into canonical Drill objects.

The model (or an old stored document) may hand us any of these shapes:

    {"drill": {...}}            wrapped single drill
    {"drills": [{...}, ...]}    several drills at once
    {...}                       bare drill object

Drill objects themselves may use the legacy singular ``category`` string,
omit ids on markers/arrows, or carry loosely typed values. Everything is
reconciled here, before any other code touches the data.
"""

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from pydantic import ValidationError

from .errors import MalformedResponseError
from .schema import (
    ArrowType,
    Drill,
    DrillCategory,
    PitchLayout,
    PositionType,
    new_id,
)

logger = logging.getLogger(__name__)


LEGACY_CATEGORY_MAP = {
    "Technical": DrillCategory.TECHNICAL,
    "Physical": DrillCategory.PHYSICAL,
    "Tactical": DrillCategory.TACTICAL,
    "Situational": DrillCategory.SITUATIONAL,
    "Mental": DrillCategory.MENTAL,
    "Warm-up": DrillCategory.TECHNICAL,
    "Possession": DrillCategory.TACTICAL,
    "Finishing": DrillCategory.TECHNICAL,
    "Transition": DrillCategory.TACTICAL,
}

DEFAULT_CATEGORY = DrillCategory.TACTICAL

_CATEGORY_BY_NAME = {c.value.lower(): c for c in DrillCategory}
_CATEGORY_VALUES = {c.value for c in DrillCategory}
_DRILL_KEYS = ("name", "positions", "instructions", "arrows")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


# ============================================================
# PAYLOAD VARIANTS
# ============================================================

@dataclass
class SingleDrillPayload:
    """One drill object, already unwrapped"""
    data: dict


@dataclass
class DrillListPayload:
    """Several drill objects from a ``drills`` wrapper"""
    items: List[dict] = field(default_factory=list)


Payload = Union[SingleDrillPayload, DrillListPayload]


@dataclass
class NormalizedResponse:
    """Result of normalizing a full model response"""
    drill: Optional[Drill] = None
    drills: Optional[List[Drill]] = None

    def to_dict(self) -> dict:
        if self.drills is not None:
            return {"drills": [d.to_dict() for d in self.drills]}
        return {"drill": self.drill.to_dict() if self.drill else None}


# ============================================================
# PARSING
# ============================================================

def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one"""
    stripped = text.strip()
    stripped = _FENCE_OPEN.sub("", stripped)
    return _FENCE_CLOSE.sub("", stripped)


def load_json(raw: Union[str, bytes, dict, list]) -> Any:
    """Parse raw model text into JSON, raising MalformedResponseError"""
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedResponseError("Empty response from the model")
    try:
        return json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"JSON decode error: {e}") from e


def parse_payload(raw: Union[str, bytes, dict, list]) -> Payload:
    """Classify a model response into one of the accepted shapes"""
    data = load_json(raw)

    if isinstance(data, dict):
        if isinstance(data.get("drill"), dict):
            return SingleDrillPayload(data["drill"])
        if isinstance(data.get("drills"), list):
            items = [d for d in data["drills"] if isinstance(d, dict)]
            if not items:
                raise MalformedResponseError("'drills' wrapper contains no drill objects")
            return DrillListPayload(items)
        if any(key in data for key in _DRILL_KEYS):
            return SingleDrillPayload(data)

    raise MalformedResponseError("Invalid drill response shape")


# ============================================================
# FIELD RECONCILIATION
# ============================================================

def map_legacy_category(value: Any) -> DrillCategory:
    """Map an old free-text category onto a drill category tag"""
    if isinstance(value, str):
        return LEGACY_CATEGORY_MAP.get(value.strip(), DEFAULT_CATEGORY)
    return DEFAULT_CATEGORY


def _coerce_categories(data: dict) -> List[DrillCategory]:
    if data.get("category") and not data.get("categories"):
        return [map_legacy_category(data["category"])]

    raw = data.get("categories")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return [DEFAULT_CATEGORY]

    categories = []
    for item in raw:
        category = _CATEGORY_BY_NAME.get(str(item).strip().lower())
        if category and category not in categories:
            categories.append(category)
    return categories or [DEFAULT_CATEGORY]


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    return [str(value)]


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_point(value: Any) -> Optional[dict]:
    if not isinstance(value, dict):
        return None
    x, y = _as_number(value.get("x")), _as_number(value.get("y"))
    if x is None or y is None:
        return None
    return {"x": x, "y": y}


def _claim_id(candidate: Any, seen: set) -> str:
    """Keep a usable id, otherwise mint a fresh one"""
    element_id = str(candidate) if candidate not in (None, "") else ""
    if not element_id or element_id in seen:
        element_id = new_id()
    seen.add(element_id)
    return element_id


def _normalize_positions(raw: Any, seen: set) -> List[dict]:
    positions = []
    valid_types = {t.value for t in PositionType}
    for i, item in enumerate(raw if isinstance(raw, list) else []):
        if not isinstance(item, dict):
            logger.warning("Dropping position %d: not an object", i)
            continue
        x, y = _as_number(item.get("x")), _as_number(item.get("y"))
        if x is None or y is None:
            logger.warning("Dropping position %d: missing coordinates", i)
            continue
        kind = str(item.get("type") or "player").strip().lower()
        position = {
            "id": _claim_id(item.get("id"), seen),
            "x": x,
            "y": y,
            "label": item.get("label") or "",
            "type": kind if kind in valid_types else PositionType.PLAYER.value,
        }
        if item.get("color"):
            position["color"] = str(item["color"])
        if item.get("size") and position["type"] == PositionType.GOAL.value:
            position["size"] = str(item["size"]).lower()
        positions.append(position)
    return positions


def _normalize_arrows(raw: Any, seen: set) -> List[dict]:
    arrows = []
    valid_types = {t.value for t in ArrowType}
    for i, item in enumerate(raw if isinstance(raw, list) else []):
        if not isinstance(item, dict):
            logger.warning("Dropping arrow %d: not an object", i)
            continue
        start, end = _as_point(item.get("start")), _as_point(item.get("end"))
        if start is None or end is None:
            logger.warning("Dropping arrow %d: missing start/end", i)
            continue
        kind = str(item.get("type") or "pass").strip().lower()
        arrow = {
            "id": _claim_id(item.get("id"), seen),
            "start": start,
            "end": end,
            "type": kind if kind in valid_types else ArrowType.PASS.value,
        }
        if item.get("color"):
            arrow["color"] = str(item["color"])
        arrows.append(arrow)
    return arrows


def _normalize_drill_data(data: dict, existing_id: Optional[str]) -> Drill:
    data = copy.deepcopy(data)
    seen: set = set()

    layout = str(data.get("layout") or PitchLayout.FULL.value).strip().lower()
    if layout not in {l.value for l in PitchLayout}:
        layout = PitchLayout.FULL.value

    coaching_points = data.get("coachingPoints")
    if coaching_points is None:
        coaching_points = data.get("coaching_points")

    drill_data = {
        "id": existing_id or data.get("id") or new_id(),
        "name": str(data.get("name") or "New Drill"),
        "categories": _coerce_categories(data),
        "duration": str(data.get("duration") or "15m"),
        "players": str(data.get("players") or ""),
        "setup": str(data.get("setup") or ""),
        "instructions": _as_text_list(data.get("instructions")),
        "coachingPoints": _as_text_list(coaching_points),
        "layout": layout,
        "positions": _normalize_positions(data.get("positions"), seen),
        "arrows": _normalize_arrows(data.get("arrows"), seen),
    }

    try:
        return Drill.model_validate(drill_data)
    except ValidationError as e:
        raise MalformedResponseError(f"Drill failed schema validation: {e}") from e


# ============================================================
# PUBLIC API
# ============================================================

def normalize_drill(raw: Union[str, bytes, dict], existing_id: Optional[str] = None) -> Drill:
    """
    Reconcile one model response (or stored document) into a Drill.

    Args:
        raw: Raw text (code fences allowed) or already-parsed JSON
        existing_id: Drill id to keep, used when refining a drill in place

    Raises:
        MalformedResponseError: the input is not a single usable drill
    """
    payload = parse_payload(raw)
    if isinstance(payload, DrillListPayload):
        if len(payload.items) != 1:
            raise MalformedResponseError(
                f"Expected a single drill, got {len(payload.items)}"
            )
        return _normalize_drill_data(payload.items[0], existing_id)
    return _normalize_drill_data(payload.data, existing_id)


def normalize_response(raw: Union[str, bytes, dict]) -> NormalizedResponse:
    """Normalize a response that may hold one drill or several"""
    payload = parse_payload(raw)
    if isinstance(payload, DrillListPayload):
        return NormalizedResponse(drills=[_normalize_drill_data(d, None) for d in payload.items])
    return NormalizedResponse(drill=_normalize_drill_data(payload.data, None))


def try_parse_partial(text: str, existing_id: Optional[str] = None) -> Optional[Drill]:
    """Normalize in-progress stream text, or None while it is still incomplete"""
    try:
        return normalize_drill(text, existing_id)
    except MalformedResponseError:
        return None


def restore_drill(data: dict) -> Drill:
    """
    Load a drill we stored or shared earlier without rewriting its text.

    Only what older documents can lack is repaired: the categories list
    (from the legacy singular ``category``) and missing or duplicate
    element ids. Empty names, durations and colors stay as they were.

    Raises:
        MalformedResponseError: the document is not a usable drill
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Stored drill is not an object")
    data = copy.deepcopy(data)

    categories = data.get("categories")
    if not isinstance(categories, list) or not categories or \
            any(str(c) not in _CATEGORY_VALUES for c in categories):
        data["categories"] = _coerce_categories(data)
    data.pop("category", None)

    seen: set = set()
    for key in ("positions", "arrows"):
        for item in data.get(key) or []:
            if isinstance(item, dict):
                item["id"] = _claim_id(item.get("id"), seen)

    try:
        return Drill.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"Stored drill failed schema validation: {e}") from e

