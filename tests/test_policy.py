import pytest

from riders.policy import DispatchPolicy, default_dispatch_policy, low_supply_policy, policy_from_env


def test_defaults():
    p = default_dispatch_policy()

    assert (p.distance_weight, p.load_weight, p.performance_weight) == (0.5, 0.2, 0.3)
    assert p.max_radius_km == 10.0
    assert p.offer_timeout_seconds == 30.0
    assert p.max_offer_queue_length == 10
    assert p.location_freshness_seconds == 300.0


def test_low_supply_policy_is_valid_and_wider():
    p = low_supply_policy()

    assert p.max_radius_km > DispatchPolicy().max_radius_km
    assert p.offer_timeout_seconds < DispatchPolicy().offer_timeout_seconds


@pytest.mark.parametrize("overrides", [
    {"distance_weight": -0.1},
    {"distance_weight": 0, "load_weight": 0, "performance_weight": 0, "rating_weight": 0},
    {"max_radius_km": 0},
    {"offer_timeout_seconds": 0},
    {"max_offer_queue_length": 0},
    {"rejection_cooldown_seconds": -1},
    {"cold_start_performance": 0},
    {"default_rating": 6},
])
def test_validate_rejects_nonsense(overrides):
    with pytest.raises(ValueError):
        DispatchPolicy(**overrides).validate()


def test_policy_from_env(monkeypatch):
    monkeypatch.setenv("DISPATCH_OFFER_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("DISPATCH_MAX_OFFER_QUEUE_LENGTH", "5")
    monkeypatch.setenv("DISPATCH_MAX_RADIUS_KM", "7.5")

    p = policy_from_env()

    assert p.offer_timeout_seconds == 45.0
    assert p.max_offer_queue_length == 5
    assert isinstance(p.max_offer_queue_length, int)
    assert p.max_radius_km == 7.5
    assert p.distance_weight == 0.5


def test_policy_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("DISPATCH_MAX_RADIUS_KM", "far")

    with pytest.raises(ValueError):
        policy_from_env()


def test_policy_from_env_validates(monkeypatch):
    monkeypatch.setenv("DISPATCH_OFFER_TIMEOUT_SECONDS", "-5")

    with pytest.raises(ValueError):
        policy_from_env()
