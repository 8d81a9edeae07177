import pytest

from pepai.webhooks import (
    handle_payment_success,
    handle_subscription_change,
    metadata_flag,
    metadata_int,
)


@pytest.fixture
def catalogue(supabase):
    supabase.rows("products").extend([
        {
            "id": "pro",
            "metadata": {"credits": "100", "can_save": "true", "can_export": "true", "tier": "pro"},
        },
        {"id": "points", "stripe_metadata_pepPoints": "20"},
        {"id": "points_and_credits", "metadata": {"credits": "50", "pepPoints": "10"}},
        {"id": "empty", "metadata": {}},
    ])
    return supabase


def test_metadata_reads_both_layouts():
    assert metadata_int({"metadata": {"credits": "7"}}, "credits") == 7
    assert metadata_int({"stripe_metadata_credits": "8"}, "credits") == 8
    assert metadata_int({"metadata": {"credits": "lots"}}, "credits") == 0
    assert metadata_flag({"metadata": {"can_save": "true"}}, "can_save") is True
    assert metadata_flag({"metadata": {"can_save": "yes"}}, "can_save") is False


def test_active_subscription_grants_plan(store, catalogue):
    grant = handle_subscription_change(store, "u1", "sub1", {"status": "active", "product": "pro"})
    assert grant.to_dict() == {"success": True, "type": "subscription", "amount": 100}
    profile = store.get_profile("u1")
    assert (profile.credits, profile.can_save, profile.can_export, profile.tier) == (100, True, True, "pro")


def test_subscription_adds_pep_points(store, catalogue):
    store.update_profile("u1", {"pep_points": 3})
    handle_subscription_change(
        store, "u1", "sub1",
        {"status": "trialing", "items": [{"price": {"product": "points_and_credits"}}]},
    )
    profile = store.get_profile("u1")
    assert (profile.credits, profile.pep_points, profile.tier) == (50, 13, "free")


@pytest.mark.parametrize("subscription", [
    None,
    {"status": "canceled", "product": "pro"},
    {"status": "active"},
    {"status": "active", "product": "missing"},
    {"status": "active", "product": "empty"},
])
def test_subscription_skipped(store, catalogue, subscription):
    assert handle_subscription_change(store, "u1", "sub1", subscription) is None
    assert catalogue.rows("users") == []


def test_payment_metadata_pep_points_are_added(store, catalogue):
    store.update_profile("u1", {"pep_points": 2})
    grant = handle_payment_success(store, "u1", "pay1", {"status": "succeeded", "metadata": {"pepPoints": "5"}})
    assert (grant.type, grant.amount) == ("pepPoints", 5)
    assert store.get_profile("u1").pep_points == 7


def test_payment_metadata_credits_are_set(store, catalogue):
    store.update_profile("u1", {"credits": 3})
    grant = handle_payment_success(store, "u1", "pay1", {"status": "succeeded", "metadata": {"credits": "60"}})
    assert (grant.type, grant.amount) == ("credits", 60)
    assert store.get_profile("u1").credits == 60


def test_payment_product_pep_points(store, catalogue):
    grant = handle_payment_success(store, "u1", "pay1", {"status": "succeeded", "product": "points"})
    assert (grant.type, grant.amount) == ("pepPoints", 20)


def test_payment_refills_subscription_credits(store, catalogue):
    catalogue.rows("subscriptions").append({"id": "sub1", "user_id": "u1", "status": "active", "product": "pro"})
    store.update_profile("u1", {"credits": 0})
    grant = handle_payment_success(store, "u1", "pay1", {"status": "succeeded"})
    assert (grant.type, grant.amount) == ("credits", 100)
    assert store.get_profile("u1").credits == 100


def test_payment_without_anything_to_grant(store, catalogue):
    assert handle_payment_success(store, "u1", "pay1", {"status": "succeeded"}) is None
    assert handle_payment_success(store, "u1", "pay1", {"status": "requires_payment_method"}) is None
    assert handle_payment_success(store, "u1", "pay1", None) is None
