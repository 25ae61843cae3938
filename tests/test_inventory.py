import pytest

from auth_context import AuthIdentity, use_identity
from booking_errors import BookingError, StoreError
from booking_orchestrator import BookingOrchestrator, default_seat_layout
from persistence.crud import SqlRowStore
from persistence.db import make_engine
from persistence.store import ConcurrencyConflict, seed_store

from conftest import FIXED_NOW, GUEST_PHONE, sample_catalog


def _bus(**overrides):
    body = {"routeId": "bus-1", "journeyDate": "2026-07-01", "seats": ["A1", "C1"],
            "userName": "Asha", "phone": GUEST_PHONE}
    body.update(overrides)
    return body


def _bike(**overrides):
    body = {"bikeRentalId": "bike-1", "userName": "Asha", "phone": GUEST_PHONE,
            "startDateTime": "2026-07-01T09:00:00Z", "days": 3, "qty": 2}
    body.update(overrides)
    return body


def _booked(store, route_id="bus-1", day="2026-07-01"):
    return store.get("ev_buses", route_id)["seatsBookedByDate"].get(day, [])


# ---------------------------------------------------------------- bus

def test_default_seat_layout_is_four_abreast():
    assert [s.code for s in default_seat_layout(6)] == ["A1", "B1", "C1", "D1", "A2", "B2"]


def test_bus_seats_lists_layout_and_booked(orchestrator):
    res = orchestrator.bus_seats("bus-1", "2026-07-01")
    assert res["totalSeats"] == 8
    assert res["bookedSeats"] == ["B2"]
    assert len(res["seatLayout"]) == 8
    assert res["seatLayout"][0] == {"code": "A1", "seatType": "regular"}


def test_bus_seats_errors(orchestrator):
    with pytest.raises(BookingError) as exc:
        orchestrator.bus_seats("bus-1", "")
    assert exc.value.code == "ROUTE_DATE_REQUIRED"
    with pytest.raises(BookingError) as exc:
        orchestrator.bus_seats("bus-404", "2026-07-01")
    assert exc.value.code == "ROUTE_NOT_FOUND"


def test_book_bus_appends_seats(orchestrator, store):
    res = orchestrator.book_bus(_bus())
    assert res["success"] is True

    assert _booked(store) == ["B2", "A1", "C1"]
    booking = store.get("ev_bus_bookings", res["id"])
    assert booking["seats"] == ["A1", "C1"]
    assert booking["farePerSeat"] == 150.0
    assert booking["totalFare"] == 300.0
    assert booking["fromCity"] == "Manali"


def test_same_seat_twice_is_rejected(orchestrator, store):
    orchestrator.book_bus(_bus(seats=["A1"]))
    with pytest.raises(BookingError) as exc:
        orchestrator.book_bus(_bus(seats=["A1"], userName="Ravi", phone="9123456780"))
    assert exc.value.code == "SEAT_ALREADY_BOOKED"
    assert _booked(store) == ["B2", "A1"]
    assert len(store.select("ev_bus_bookings")) == 1


@pytest.mark.parametrize("overrides,code", [
    ({"seats": ["B2"]}, "SEAT_ALREADY_BOOKED"),
    ({"seats": ["A1", "B2"]}, "SEAT_ALREADY_BOOKED"),
    ({"seats": ["Z9"]}, "INVALID_SEAT_SELECTION"),
    ({"seats": ["A1", "A1"]}, "INVALID_SEAT_SELECTION"),
    ({"seats": []}, "INVALID_INPUT"),
    ({"journeyDate": ""}, "INVALID_INPUT"),
    ({"routeId": "bus-404"}, "ROUTE_NOT_FOUND"),
    ({"routeId": "bus-off"}, "ROUTE_NOT_FOUND"),
])
def test_bus_rejections_leave_seat_map_alone(orchestrator, store, overrides, code):
    with pytest.raises(BookingError) as exc:
        orchestrator.book_bus(_bus(**overrides))
    assert exc.value.code == code
    assert _booked(store) == ["B2"]
    assert store.select("ev_bus_bookings") == []


def test_bus_identity_phone_must_match(orchestrator):
    with use_identity(AuthIdentity(id="user-2", phone="9000000000")):
        with pytest.raises(BookingError) as exc:
            orchestrator.book_bus(_bus())
    assert exc.value.code == "AUTH_IDENTITY_MISMATCH"


class RacingStore(SqlRowStore):
    """Runs a rival booking between our read of the route and our write."""

    def __init__(self, engine):
        super().__init__(engine)
        self.rival = None
        self.rival_result = None

    def update(self, collection, row_id, patch, expected_version=None):
        if self.rival is not None and collection == "ev_buses":
            rival, self.rival = self.rival, None
            self.rival_result = rival()
        return super().update(collection, row_id, patch, expected_version)


def test_concurrent_bookings_of_one_seat_yield_one_success():
    store = RacingStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    first = BookingOrchestrator(store, clock=lambda: FIXED_NOW)
    second = BookingOrchestrator(store, clock=lambda: FIXED_NOW)
    store.rival = lambda: second.book_bus(_bus(seats=["A1"], userName="Ravi", phone="9123456780"))

    with pytest.raises(BookingError) as exc:
        first.book_bus(_bus(seats=["A1"]))

    assert exc.value.code == "SEAT_ALREADY_BOOKED"
    assert store.rival_result["success"] is True
    assert _booked(store) == ["B2", "A1"]
    bookings = store.select("ev_bus_bookings")
    assert len(bookings) == 1
    assert bookings[0]["userName"] == "Ravi"


def test_concurrent_bookings_of_different_seats_both_land():
    store = RacingStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    first = BookingOrchestrator(store, clock=lambda: FIXED_NOW)
    second = BookingOrchestrator(store, clock=lambda: FIXED_NOW)
    store.rival = lambda: second.book_bus(_bus(seats=["D1"], userName="Ravi", phone="9123456780"))

    first.book_bus(_bus(seats=["A1"]))

    # no lost update: the retry re-read the rival's seat before writing
    assert _booked(store) == ["B2", "D1", "A1"]
    assert len(store.select("ev_bus_bookings")) == 2


class AlwaysConflictingStore(SqlRowStore):
    def update(self, collection, row_id, patch, expected_version=None):
        if collection == "ev_buses":
            raise ConcurrencyConflict(collection, row_id, expected_version)
        return super().update(collection, row_id, patch, expected_version)


def test_persistent_contention_reports_inventory_busy():
    store = AlwaysConflictingStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    orchestrator = BookingOrchestrator(store, max_attempts=2)

    with pytest.raises(BookingError) as exc:
        orchestrator.book_bus(_bus())
    assert exc.value.code == "INVENTORY_BUSY"
    assert exc.value.status == 409
    assert store.select("ev_bus_bookings") == []


class FailingBookingInsertStore(SqlRowStore):
    def insert(self, collection, row):
        if collection in ("ev_bus_bookings", "ev_bike_bookings"):
            raise StoreError("Server is temporarily unavailable (HTTP 503)", 503)
        return super().insert(collection, row)


def test_failed_booking_insert_releases_seats():
    store = FailingBookingInsertStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    orchestrator = BookingOrchestrator(store)

    with pytest.raises(StoreError):
        orchestrator.book_bus(_bus())
    assert _booked(store) == ["B2"]


def test_failed_booking_insert_returns_bike_stock(guest):
    store = FailingBookingInsertStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    orchestrator = BookingOrchestrator(store)

    with use_identity(guest):
        with pytest.raises(StoreError):
            orchestrator.book_bike(_bike(qty=1))
    assert store.get("ev_bike_rentals", "bike-1")["availableQty"] == 2


# ---------------------------------------------------------------- bike

def test_bike_requires_authentication(orchestrator):
    with pytest.raises(BookingError) as exc:
        orchestrator.book_bike(_bike())
    assert exc.value.code == "AUTH_REQUIRED"


def test_bike_identity_phone_must_match(orchestrator):
    with use_identity(AuthIdentity(id="user-2", phone="+91 90000 00000")):
        with pytest.raises(BookingError) as exc:
            orchestrator.book_bike(_bike())
    assert exc.value.code == "AUTH_IDENTITY_MISMATCH"


def test_bike_booking_decrements_stock(orchestrator, store, as_guest):
    res = orchestrator.book_bike(_bike())

    booking = store.get("ev_bike_bookings", res["id"])
    assert booking["days"] == 3
    assert booking["hours"] == 72
    assert booking["qty"] == 2
    assert booking["totalFare"] == 3000.0
    assert store.get("ev_bike_rentals", "bike-1")["availableQty"] == 0


@pytest.mark.parametrize("overrides,code", [
    ({"qty": 3}, "INSUFFICIENT_BIKE_STOCK"),
    ({"qty": 3, "days": 9}, "INSUFFICIENT_BIKE_STOCK"),
    ({"days": 6}, "MAX_DAYS_EXCEEDED"),
    ({"bikeRentalId": "bike-404"}, "BIKE_NOT_FOUND"),
    ({"days": 0}, "INVALID_INPUT"),
    ({"startDateTime": ""}, "INVALID_INPUT"),
])
def test_bike_rejections_do_not_touch_stock(orchestrator, store, as_guest, overrides, code):
    with pytest.raises(BookingError) as exc:
        orchestrator.book_bike(_bike(**overrides))
    assert exc.value.code == code
    assert store.get("ev_bike_rentals", "bike-1")["availableQty"] == 2
    assert store.select("ev_bike_bookings") == []


def test_bike_booking_from_rental_vehicles_table(orchestrator, store, as_guest):
    res = orchestrator.book_bike(_bike(bikeRentalId="rv-1", days=2, qty=1))

    booking = store.get("ev_bike_bookings", res["id"])
    assert booking["source"] == "ev_rental_vehicles"
    assert booking["totalFare"] == 1400.0
    assert store.get("ev_rental_vehicles", "rv-1")["availability_rates"]["available_qty"] == 0

    with pytest.raises(BookingError) as exc:
        orchestrator.book_bike(_bike(bikeRentalId="rv-1", days=1, qty=1))
    assert exc.value.code == "INSUFFICIENT_BIKE_STOCK"


def test_bike_hours_fall_back_to_days(orchestrator, store, as_guest):
    res = orchestrator.book_bike(_bike(days=None, hours=48, qty=1))
    assert store.get("ev_bike_bookings", res["id"])["days"] == 2


def _camel_stock_vehicle(store):
    store.insert("ev_rental_vehicles", {
        "id": "rv-camel", "name": "Pulsar 220", "category": "bike",
        "pricing": {"perDay": 600}, "availability_rates": {"availableQty": 1, "perDay": 600},
        "vendor_details": {"location": "Manali"}})


def test_camel_case_vehicle_stock_cannot_be_oversold(orchestrator, store, as_guest):
    _camel_stock_vehicle(store)

    orchestrator.book_bike(_bike(bikeRentalId="rv-camel", days=1, qty=1))
    rates = store.get("ev_rental_vehicles", "rv-camel")["availability_rates"]
    assert rates == {"available_qty": 0, "perDay": 600}

    with pytest.raises(BookingError) as exc:
        orchestrator.book_bike(_bike(bikeRentalId="rv-camel", days=1, qty=1))
    assert exc.value.code == "INSUFFICIENT_BIKE_STOCK"
    assert len(store.select("ev_bike_bookings")) == 1


def test_failed_insert_returns_camel_case_vehicle_stock(guest):
    store = FailingBookingInsertStore(make_engine("sqlite://"))
    seed_store(store, sample_catalog())
    _camel_stock_vehicle(store)
    orchestrator = BookingOrchestrator(store)

    with use_identity(guest):
        with pytest.raises(StoreError):
            orchestrator.book_bike(_bike(bikeRentalId="rv-camel", days=1, qty=1))
    assert store.get("ev_rental_vehicles", "rv-camel")["availability_rates"]["available_qty"] == 1
    assert "availableQty" not in store.get("ev_rental_vehicles", "rv-camel")["availability_rates"]


@pytest.mark.parametrize("overrides", [{"days": "inf"}, {"qty": float("inf")}, {"days": None, "hours": 1e400}])
def test_bike_overflowing_numbers_are_invalid_input(orchestrator, store, as_guest, overrides):
    with pytest.raises(BookingError) as exc:
        orchestrator.book_bike(_bike(**overrides))
    assert exc.value.code == "INVALID_INPUT"
    assert store.get("ev_bike_rentals", "bike-1")["availableQty"] == 2
