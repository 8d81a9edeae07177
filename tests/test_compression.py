import json

from lzstring import LZString

from pepai.compression import KEY_MAP, compress_session, decompress_session, transform_keys
from pepai.normalizer import normalize_drill
from pepai.schema import DrillCategory, Session

from tests.fixtures import LEGACY_FINISHING, RONDO_5V5


def make_session():
    rondo = normalize_drill(RONDO_5V5)
    rondo.positions[0].x = 12.34567
    return Session(title="Tuesday", date="2026-10-18", team="U14", drills=[rondo], notes="Bring bibs")


def test_round_trip_rounds_coordinates():
    session = make_session()
    restored = decompress_session(compress_session(session))

    assert restored.title == "Tuesday"
    assert restored.notes == "Bring bibs"
    assert restored.drills[0].id == session.drills[0].id
    assert restored.drills[0].positions[0].x == 12.35
    assert [p.id for p in restored.drills[0].positions] == [p.id for p in session.drills[0].positions]


def test_round_trip_keeps_everything_but_precision():
    drill = normalize_drill(RONDO_5V5)
    drill.name, drill.duration, drill.players = "", "", ""
    drill.categories = [DrillCategory.PLAY, DrillCategory.PLAY]
    drill.positions[0].color = ""
    drill.arrows[0].color = "#111827"
    session = Session(title="Tuesday", date="2026-10-18", team="U14", drills=[drill], notes="Bring bibs")

    restored = decompress_session(compress_session(session))

    assert restored.to_dict() == session.to_dict()
    assert [(a.id, a.start, a.end, a.type, a.color) for a in restored.drills[0].arrows] == \
        [(a.id, a.start, a.end, a.type, a.color) for a in drill.arrows]


def test_payload_is_url_safe():
    payload = compress_session(make_session())
    assert all(c.isalnum() or c in "+-$" for c in payload)


def test_short_keys():
    assert transform_keys({"drills": [{"coachingPoints": []}]}, KEY_MAP) == {"dr": [{"cp": []}]}


def test_old_links_with_singular_category():
    old = transform_keys({"title": "Old", "drills": [LEGACY_FINISHING]}, KEY_MAP)
    payload = LZString().compressToEncodedURIComponent(json.dumps(old))
    session = decompress_session(payload)
    assert session.title == "Old"
    assert session.drills[0].categories == [DrillCategory.TECHNICAL]


def test_invalid_payload_returns_none():
    assert decompress_session("not-a-real-payload") is None
    assert decompress_session("") is None
