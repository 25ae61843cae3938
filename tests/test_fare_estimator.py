from datetime import datetime

import pytest

from booking_schemas import CabProvider, Settings
from distance import estimate_distance_km
from fare_estimator import estimate_fare, in_window, parse_hhmm


def _settings(**cab):
    pricing = {"baseFare": 60, "perKm": 14, "perMin": 2, "tolls": {"enabled": True, "defaultFee": 50}}
    pricing.update(cab)
    return Settings.model_validate({"cabPricing": pricing})


MORNING = datetime(2026, 7, 1, 10, 0)


def test_known_points_distance():
    assert estimate_distance_km("Manali", "Kullu") == 42
    assert estimate_distance_km("Kullu", "Manali") == 42
    assert estimate_distance_km("Old Manali", "kullu bus stand") == 42


def test_known_points_minimum_three_km():
    assert estimate_distance_km("Manali", "Manali") == 3


def test_lexical_fallback_distance():
    # jaccard 1/3 -> 6 + 22*2/3 + 1*0.2 = 20.87
    assert estimate_distance_km("Alpha Camp", "Beta Camp") == 21
    assert estimate_distance_km("Riverside Camp", "Riverside Camp") == 6
    km = estimate_distance_km("A", "a very long and entirely unrelated place name " * 20)
    assert km == 120


def test_lexical_fallback_is_deterministic():
    first = [estimate_distance_km("Hidimba Temple", "Vashisht Baths") for _ in range(5)]
    assert len(set(first)) == 1
    assert 3 <= first[0] <= 120


def test_manali_to_kullu_example():
    fare = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING)

    assert fare.distance_km == 42
    assert fare.duration_min == 84
    assert fare.surge_multiplier == 1.0
    assert fare.is_night is False
    assert fare.toll_fee == 50
    assert fare.subtotal == 866.0
    assert fare.tax.gst_amount == 43.30
    assert fare.total == 909.30


def test_fare_is_deterministic_for_explicit_time():
    a = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING)
    b = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING)
    assert a == b


def test_explicit_distance_and_duration():
    fare = estimate_fare(_settings(), "x", "y", when=MORNING, distance_km=10, duration_min=5)
    # 60 + 140 + 10 + 50
    assert fare.duration_min == 5
    assert fare.subtotal == 260.0


def test_short_trip_has_minimum_duration():
    fare = estimate_fare(_settings(), "x", "y", when=MORNING, distance_km=3)
    assert fare.duration_min == 10


def test_night_multiplier():
    fare = estimate_fare(_settings(), "Manali", "Kullu", when=datetime(2026, 7, 1, 23, 0))
    assert fare.is_night is True
    assert fare.night_multiplier == 1.25
    assert fare.subtotal == 1070.0   # 816 * 1.25 + 50


def test_surge_rule_applies_at_trip_time():
    settings = _settings(surgeRules=[{"from": "17:00", "to": "19:00", "multiplier": 1.2}])
    fare = estimate_fare(settings, "Manali", "Kullu", when=datetime(2026, 7, 1, 18, 0))
    assert fare.surge_multiplier == 1.2
    assert fare.subtotal == 1029.2

    off_peak = estimate_fare(settings, "Manali", "Kullu", when=MORNING)
    assert off_peak.surge_multiplier == 1.0


def test_high_demand_overrides_surge_rules():
    settings = _settings(surgeRules=[{"from": "00:00", "to": "23:59", "multiplier": 1.2}])
    fare = estimate_fare(settings, "Manali", "Kullu", when=MORNING, high_demand=True)
    assert fare.surge_multiplier == 1.5


def test_toll_can_be_excluded():
    fare = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING, include_toll=False)
    assert fare.toll_fee == 0
    assert fare.subtotal == 816.0


def test_provider_price_drop():
    provider = CabProvider(id="p", price_dropped=True, price_drop_percent=10)
    fare = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING, provider=provider)
    assert fare.subtotal == 866.0
    assert fare.price_drop_amount == 86.6
    assert fare.discounted_base == 779.4
    assert fare.tax.gst_amount == 38.97
    assert fare.total == 818.37


def test_price_drop_percent_is_clamped():
    provider = CabProvider(id="p", price_dropped=True, price_drop_percent=150)
    fare = estimate_fare(_settings(), "Manali", "Kullu", when=MORNING, provider=provider)
    assert fare.discounted_base == 0
    assert fare.total == 0


@pytest.mark.parametrize("minute,start,end,expected", [
    (60, "23:00", "02:00", True),      # wraps midnight
    (23 * 60 + 30, "23:00", "02:00", True),
    (12 * 60, "23:00", "02:00", False),
    (9 * 60, "08:00", "10:00", True),
    (10 * 60, "08:00", "10:00", False),  # end is exclusive
    (9 * 60, "09:00", "09:00", False),   # empty window
    (9 * 60, "bad", "10:00", False),
])
def test_time_windows(minute, start, end, expected):
    assert in_window(minute, start, end) is expected


def test_parse_hhmm():
    assert parse_hhmm("22:30") == 22 * 60 + 30
    assert parse_hhmm("24:00") is None
    assert parse_hhmm("10") is None
