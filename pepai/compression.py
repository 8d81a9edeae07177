"""
Legacy share-link codec.

Older share links carried the whole session in the URL:
``/share?data=<payload>``. The payload is the session JSON with keys
shortened through KEY_MAP, coordinates rounded to two decimals, and the
result LZ-String compressed into a URL-safe string. Current links store the
session server-side instead (see store.DrillStore.share_session); this
module only keeps old links readable and can still produce them.
"""

import json
import logging
from typing import Any, Dict, Optional

from lzstring import LZString

from .errors import MalformedResponseError
from .normalizer import restore_drill
from .schema import Session

logger = logging.getLogger(__name__)


KEY_MAP: Dict[str, str] = {
    "id": "i",
    "title": "t",
    "date": "d",
    "team": "tm",
    "drills": "dr",
    "name": "n",
    "category": "c",
    "categories": "cs",
    "duration": "dur",
    "players": "p",
    "setup": "s",
    "instructions": "ins",
    "coachingPoints": "cp",
    "positions": "pos",
    "arrows": "arr",
    "x": "x",
    "y": "y",
    "label": "l",
    "type": "ty",
    "color": "co",
    "size": "sz",
    "start": "st",
    "end": "en",
    "layout": "ly",
    "notes": "nt",
}

REVERSE_KEY_MAP: Dict[str, str] = {short: full for full, short in KEY_MAP.items()}


def transform_keys(obj: Any, mapping: Dict[str, str]) -> Any:
    """Recursively rename dict keys through ``mapping``"""
    if isinstance(obj, list):
        return [transform_keys(item, mapping) for item in obj]
    if isinstance(obj, dict):
        return {mapping.get(key, key): transform_keys(value, mapping) for key, value in obj.items()}
    return obj


def _round(value: float) -> float:
    return round(float(value), 2)


def _round_coordinates(data: dict) -> dict:
    for drill in data.get("drills", []):
        for pos in drill.get("positions", []):
            pos["x"] = _round(pos["x"])
            pos["y"] = _round(pos["y"])
        for arrow in drill.get("arrows", []):
            for end in ("start", "end"):
                arrow[end]["x"] = _round(arrow[end]["x"])
                arrow[end]["y"] = _round(arrow[end]["y"])
    return data


def compress_session(session: Session) -> str:
    """Encode a session for a ``?data=`` share link"""
    data = _round_coordinates(session.to_dict())
    simplified = transform_keys(data, KEY_MAP)
    text = json.dumps(simplified, separators=(",", ":"), ensure_ascii=False)
    return LZString().compressToEncodedURIComponent(text)


def decompress_session(compressed: str) -> Optional[Session]:
    """Decode a ``?data=`` payload, or None if it cannot be read"""
    try:
        text = LZString().decompressFromEncodedURIComponent(compressed)
        if not text:
            return None
        data = transform_keys(json.loads(text), REVERSE_KEY_MAP)
        # Old links predate the categories list
        data["drills"] = [restore_drill(d).to_dict() for d in data.get("drills") or [] if isinstance(d, dict)]
        return Session.model_validate(data)
    except (ValueError, TypeError, KeyError, IndexError, AttributeError, MalformedResponseError) as e:
        logger.error("Decompression failed: %s", e)
        return None
