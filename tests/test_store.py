import pytest

from pepai.config import Settings
from pepai.errors import ConfigurationError, NotFoundError, PersistenceError
from pepai.schema import DrillCategory, create_session
from pepai.store import DrillStore, product_id_of

from tests.fixtures import LEGACY_FINISHING


def test_from_settings_needs_credentials():
    with pytest.raises(ConfigurationError):
        DrillStore.from_settings(Settings())


def test_save_creates_new_history_rows(store, supabase, rondo):
    first = store.save_drill("u1", rondo)
    second = store.save_drill("u1", rondo)

    assert first != second
    assert rondo.id not in (first, second)
    rows = supabase.rows("drills")
    assert [r["user_id"] for r in rows] == ["u1", "u1"]
    assert rows[0]["data"]["id"] == first


def test_history_is_newest_first_and_normalized(store, supabase, rondo):
    supabase.rows("drills").extend([
        {"id": "old", "user_id": "u1", "data": LEGACY_FINISHING, "created_at": "2024-01-01T00:00:00+00:00"},
        {"id": "new", "user_id": "u1", "data": rondo.to_dict(), "created_at": "2025-01-01T00:00:00+00:00"},
        {"id": "other", "user_id": "u2", "data": rondo.to_dict(), "created_at": "2025-06-01T00:00:00+00:00"},
    ])
    drills = store.get_user_drills("u1")
    assert [d.id for d in drills] == ["new", "old"]
    assert drills[1].categories == [DrillCategory.TECHNICAL]


def test_save_drills_batch(store, supabase, rondo):
    ids = store.save_drills("u1", [rondo, rondo])
    assert len(set(ids)) == 2
    assert len(supabase.rows("drills")) == 2
    assert store.save_drills("u1", []) == []


def test_store_failures_become_persistence_errors(store, supabase, rondo):
    supabase.fail = True
    with pytest.raises(PersistenceError):
        store.save_drill("u1", rondo)
    with pytest.raises(PersistenceError):
        store.get_user_drills("u1")


def test_profile_defaults_to_free_tier(store):
    profile = store.get_profile("nobody")
    assert (profile.credits, profile.pep_points, profile.can_save, profile.tier) == (10, 0, False, "free")


def test_ensure_user_and_profile_updates(store, supabase):
    store.ensure_user_exists("u1", "coach@example.com")
    store.ensure_user_exists("u1", "other@example.com")
    assert len(supabase.rows("users")) == 1

    store.update_profile("u1", {"credits": 40, "can_save": True})
    assert store.add_pep_points("u1", 3) == 3
    profile = store.get_profile("u1")
    assert (profile.credits, profile.pep_points, profile.can_save) == (40, 3, True)
    assert supabase.rows("users")[0]["email"] == "coach@example.com"


def test_share_session_round_trip(store, rondo):
    session = create_session("Tuesday")
    session.drills.append(rondo)
    share_id = store.share_session(session)

    assert store.share_url(share_id) == f"https://pepai.test/share?id={share_id}"
    shared = store.get_shared_session(share_id)
    assert shared.title == "Tuesday"
    assert shared.drills[0].id == rondo.id


def test_shared_session_keeps_empty_text(store, rondo):
    rondo.name, rondo.duration = "", ""
    rondo.positions[0].color = ""
    session = create_session("Tuesday")
    session.drills.append(rondo)

    shared = store.get_shared_session(store.share_session(session))
    assert shared.to_dict() == session.to_dict()


def test_missing_shared_session(store):
    with pytest.raises(NotFoundError) as err:
        store.get_shared_session("nope")
    assert err.value.user_message == "Session not found."


def test_product_id_of():
    assert product_id_of({"product": "prod_1"}) == "prod_1"
    assert product_id_of({"product": {"id": "prod_2"}}) == "prod_2"
    assert product_id_of({"items": [{"price": {"product": "prod_3"}}]}) == "prod_3"
    assert product_id_of({}) is None


def test_catalogue_sorts_yearly_prices_first(store, supabase):
    supabase.rows("products").extend([
        {"id": "pro", "active": True, "name": "Pro", "metadata": {"credits": "100"}},
        {"id": "gone", "active": False, "name": "Old"},
    ])
    supabase.rows("prices").extend([
        {"id": "m", "product_id": "pro", "active": True, "type": "recurring", "interval": "month", "unit_amount": 900},
        {"id": "y", "product_id": "pro", "active": True, "type": "recurring", "interval": "year", "unit_amount": 9000},
    ])
    catalogue = store.get_active_products_with_prices()
    assert [p["id"] for p in catalogue] == ["pro"]
    assert [p["id"] for p in catalogue[0]["prices"]] == ["y", "m"]


def test_checkout_waits_for_provider_url(store, supabase):
    def provider_answers(_delay):
        supabase.rows("checkout_sessions")[0]["url"] = "https://pay.example/c/1"

    store.sleep = provider_answers
    url = store.create_checkout_session("u1", "price_1", mode="payment", metadata={"pepPoints": "5"})
    assert url == "https://pay.example/c/1"
    row = supabase.rows("checkout_sessions")[0]
    assert (row["price"], row["mode"], row["success_url"]) == ("price_1", "payment", "https://pepai.test")


def test_checkout_reports_provider_error(store, supabase):
    def provider_fails(_delay):
        supabase.rows("checkout_sessions")[0]["error"] = {"message": "No such price"}

    store.sleep = provider_fails
    with pytest.raises(PersistenceError) as err:
        store.create_checkout_session("u1", "bad")
    assert err.value.user_message == "No such price"


def test_checkout_times_out(store):
    store.checkout_timeout = 3
    with pytest.raises(PersistenceError):
        store.create_checkout_session("u1", "price_1")
