from datetime import datetime, timezone

import pytest

from auth_context import AuthIdentity, use_identity
from booking_orchestrator import BookingOrchestrator
from persistence.crud import SqlRowStore
from persistence.db import make_engine
from persistence.store import seed_store
from request_router import RequestRouter

FIXED_NOW = datetime(2026, 6, 1, 10, 0, tzinfo=timezone.utc)
GUEST_PHONE = "9876543210"


def sample_catalog():
    return {
        "ev_settings": [{
            "id": "main",
            "currency": "INR",
            "cabPricing": {
                "baseFare": 60,
                "perKm": 14,
                "perMin": 2,
                "surgeRules": [{"from": "17:00", "to": "19:00", "multiplier": 1.2}],
                "tolls": {"enabled": True, "defaultFee": 50},
            },
        }],
        "ev_hotels": [
            {
                "id": "hotel-1",
                "name": "Snow View",
                "pricePerNight": 2000,
                "roomTypes": [{"type": "Deluxe", "price": 2000, "capacity": 2},
                              {"type": "Suite", "price": 8000, "capacity": 4}],
                "availability": {"closedDates": ["2026-07-10"], "roomsByType": {"Deluxe": 1}},
                "minNights": 1,
                "maxNights": 10,
            },
            {"id": "hotel-closed", "name": "Shut Inn", "pricePerNight": 900, "available": False},
        ],
        "ev_tours": [
            {
                "id": "tour-1",
                "title": "Solang Day Trip",
                "price": 1500,
                "maxGuests": 6,
                "availability": {"closedDates": ["2026-07-05"], "capacityByDate": {"2026-07-01": 2}},
            },
            {"id": "tour-drop", "title": "Rohtang Pass", "price": 2000, "priceDropped": True,
             "priceDropPercent": 25},
        ],
        "ev_restaurants": [{"id": "r1", "name": "Cafe 1947"}, {"id": "r2", "name": "Johnson's"}],
        "ev_menu_items": [
            {"id": "m1", "restaurantId": "r1", "name": "Thukpa", "price": 120},
            {"id": "m2", "restaurantId": "r1", "name": "Veg Momos", "price": 80},
            {"id": "m3", "restaurantId": "r1", "name": "Trout", "price": 450, "available": False},
            {"id": "m4", "restaurantId": "r2", "name": "Pasta", "price": 50},
        ],
        "ev_cab_providers": [
            {"id": "cab-sedan", "name": "Valley Sedans", "vehicleType": "Sedan", "capacity": 4,
             "vendorMobile": "9000000001"},
            {"id": "cab-suv", "name": "Peak SUVs", "vehicleType": "SUV", "capacity": 6,
             "priceDropped": True, "priceDropPercent": 10, "vendorMobile": "9000000002"},
            {"id": "cab-off", "name": "Retired Cabs", "capacity": 4, "active": False},
        ],
        "ev_service_areas": [
            {"id": "area-kullu", "name": "Kullu Valley", "enabled": True, "locations": ["Manali", "Kullu"]},
            {"id": "area-spiti", "name": "Spiti", "enabled": False, "locations": ["Kaza"]},
        ],
        "ev_coupons": [
            {"id": "coupon-welcome", "code": "WELCOME100", "type": "flat", "amount": 100, "minCart": 500, "category": "all",
             "expiry": "2099-12-31"},
            {"id": "coupon-tour", "code": "TOUR10", "type": "percent", "amount": 10, "category": "tour"},
            {"id": "coupon-old", "code": "OLD50", "type": "flat", "amount": 50, "expiry": "2020-01-01"},
        ],
        "ev_buses": [
            {"id": "bus-1", "operatorName": "HRTC", "fromCity": "Manali", "toCity": "Kullu", "fare": 150,
             "totalSeats": 8, "seatsBookedByDate": {"2026-07-01": ["B2"]}},
            {"id": "bus-2", "operatorName": "Volvo Travels", "fromCity": "Manali", "toCity": "Kullu",
             "fare": 120, "totalSeats": 8, "serviceDates": ["2026-07-02"]},
            {"id": "bus-off", "operatorName": "Old Line", "fromCity": "Mandi", "toCity": "Kullu",
             "fare": 90, "active": False},
        ],
        "ev_bike_rentals": [
            {"id": "bike-1", "name": "Classic 350", "location": "Manali", "pricePerDay": 500,
             "availableQty": 2, "maxDays": 5},
        ],
        "ev_rental_vehicles": [
            {"id": "rv-1", "name": "Himalayan 411", "category": "bike", "max_days": 3,
             "pricing": {"perDay": 700}, "availability_rates": {"available_qty": 1},
             "vendor_details": {"location": "Kullu"}},
        ],
    }


@pytest.fixture
def store():
    s = SqlRowStore(make_engine("sqlite://"))
    seed_store(s, sample_catalog())
    return s


@pytest.fixture
def orchestrator(store):
    return BookingOrchestrator(store, clock=lambda: FIXED_NOW)


@pytest.fixture
def router(orchestrator):
    return RequestRouter(orchestrator)


@pytest.fixture
def guest():
    return AuthIdentity(id="user-1", email="asha@example.com", phone=GUEST_PHONE, name="Asha")


@pytest.fixture
def as_guest(guest):
    with use_identity(guest):
        yield guest


@pytest.fixture
def contact():
    return {"userName": "Asha", "phone": GUEST_PHONE, "email": "asha@example.com"}
