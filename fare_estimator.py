from datetime import datetime
from typing import Optional

from booking_schemas import CabPricing, CabProvider, FareEstimate, Settings
from distance import estimate_distance_km
from pricing import compute_gst, round2, round_half_up

HIGH_DEMAND_MULTIPLIER = 1.5


def parse_hhmm(value) -> Optional[int]:
    """'22:30' -> minutes since midnight, None when unparseable."""
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        h, m = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return h * 60 + m


def in_window(minute_of_day: int, start, end) -> bool:
    # windows are [start, end) and may wrap past midnight; start == end is empty
    s, e = parse_hhmm(start), parse_hhmm(end)
    if s is None or e is None or s == e:
        return False
    if s < e:
        return s <= minute_of_day < e
    return minute_of_day >= s or minute_of_day < e


def surge_multiplier(pricing: CabPricing, minute_of_day: int, high_demand: bool = False) -> float:
    if high_demand:
        return HIGH_DEMAND_MULTIPLIER
    for rule in pricing.surge_rules:
        if in_window(minute_of_day, rule.from_time, rule.to_time):
            return rule.multiplier
    return 1.0


def estimate_fare(
    settings: Settings,
    pickup: str,
    drop: str,
    when: Optional[datetime] = None,
    distance_km: Optional[float] = None,
    duration_min: Optional[int] = None,
    provider: Optional[CabProvider] = None,
    include_toll: bool = True,
    high_demand: bool = False,
) -> FareEstimate:
    """
    Cab fare quote with every intermediate exposed.
    Pure apart from `when` defaulting to now; pass it explicitly for repeatable quotes.
    """
    pricing = settings.cab_pricing
    when = when or datetime.now()
    minute_of_day = when.hour * 60 + when.minute

    km = float(distance_km) if distance_km is not None else float(estimate_distance_km(pickup, drop))
    minutes = int(duration_min) if duration_min is not None else max(10, round_half_up(km * 2))

    surge = surge_multiplier(pricing, minute_of_day, high_demand)
    night = pricing.night_charges
    is_night = in_window(minute_of_day, night.start, night.end)
    night_mult = night.multiplier if is_night else 1.0

    toll_fee = pricing.tolls.default_fee if (pricing.tolls.enabled and include_toll) else 0.0

    distance_charge = km * pricing.per_km
    time_charge = minutes * pricing.per_min
    raw_base = round2((pricing.base_fare + distance_charge + time_charge) * surge * night_mult + toll_fee)

    drop_amount = 0.0
    if provider is not None and provider.price_dropped:
        pct = min(100.0, max(0.0, provider.price_drop_percent))
        drop_amount = round2(raw_base * pct / 100)
    discounted = round2(raw_base - drop_amount)

    tax = compute_gst(discounted, settings.tax_rules.cab.gst)
    return FareEstimate(
        distance_km=km,
        duration_min=minutes,
        base_fare=round2(pricing.base_fare),
        distance_charge=round2(distance_charge),
        time_charge=round2(time_charge),
        surge_multiplier=surge,
        night_multiplier=night_mult,
        is_night=is_night,
        multiplier=round2(surge * night_mult),
        toll_fee=round2(toll_fee),
        subtotal=raw_base,
        price_drop_amount=drop_amount,
        discounted_base=discounted,
        tax=tax,
        total=round2(discounted + tax.gst_amount),
    )
