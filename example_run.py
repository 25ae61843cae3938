"""
Run this script to see every booking flow against an in-memory store:
 - seed a small catalog (settings, hotel, tour, menu, cab provider, bus, bike)
 - wire orchestrator -> router -> dispatcher (no remote backend, so every call falls back locally)
 - create one booking of each kind and print the frozen pricing snapshots
"""

from auth_context import AuthIdentity, use_identity
from booking_config import configure_logging
from booking_errors import BookingError
from booking_orchestrator import BookingOrchestrator
from dispatcher import Dispatcher
from persistence.crud import SqlRowStore
from persistence.db import make_engine
from persistence.store import seed_store
from request_router import RequestRouter


def demo_catalog():
    return {
        "ev_settings": [{
            "id": "main",
            "currency": "INR",
            "cabPricing": {"baseFare": 60, "perKm": 14, "perMin": 2,
                           "tolls": {"enabled": True, "defaultFee": 50}},
        }],
        "ev_hotels": [{
            "id": "hotel-snow-view",
            "name": "Snow View Cottage",
            "location": "Manali",
            "pricePerNight": 2400,
            "roomTypes": [{"type": "Deluxe", "price": 2400, "capacity": 2},
                          {"type": "Suite", "price": 8200, "capacity": 4}],
        }],
        "ev_tours": [{
            "id": "tour-solang",
            "title": "Solang Valley Day Trip",
            "price": 1800,
            "priceDropped": True,
            "priceDropPercent": 10,
            "maxGuests": 8,
        }],
        "ev_restaurants": [{"id": "rest-cafe-1947", "name": "Cafe 1947"}],
        "ev_menu_items": [
            {"id": "menu-thukpa", "restaurantId": "rest-cafe-1947", "name": "Thukpa", "price": 120},
            {"id": "menu-momos", "restaurantId": "rest-cafe-1947", "name": "Veg Momos", "price": 80},
        ],
        "ev_cab_providers": [{"id": "cab-himalayan", "name": "Himalayan Cabs", "vehicleType": "SUV",
                              "capacity": 6, "vendorMobile": "9800000000"}],
        "ev_buses": [{"id": "bus-manali-kullu", "operatorName": "HRTC", "fromCity": "Manali",
                      "toCity": "Kullu", "fare": 150, "totalSeats": 20}],
        "ev_bike_rentals": [{"id": "bike-classic-350", "name": "Classic 350", "location": "Manali",
                             "pricePerDay": 1200, "availableQty": 3, "maxDays": 7}],
    }


def main():
    configure_logging("WARNING")

    store = SqlRowStore(make_engine("sqlite://"))
    seed_store(store, demo_catalog())
    orchestrator = BookingOrchestrator(store)
    client = Dispatcher(RequestRouter(orchestrator))

    guest = AuthIdentity(id="user_123", phone="9876543210", name="Asha")
    contact = {"userName": "Asha", "phone": "9876543210", "email": "asha@example.com"}

    with client, use_identity(guest):
        results = {
            "hotel": client.post("/api/bookings", {**contact, "type": "hotel", "itemId": "hotel-snow-view",
                                                   "checkIn": "2026-12-20", "checkOut": "2026-12-23",
                                                   "roomType": "Deluxe", "numRooms": 1, "guests": 2}),
            "tour": client.post("/api/bookings", {**contact, "type": "tour", "itemId": "tour-solang",
                                                  "tourDate": "2026-12-21", "guests": 2}),
            "food": client.post("/api/orders", {**contact, "restaurantId": "rest-cafe-1947",
                                                "deliveryAddress": "Old Manali Road",
                                                "items": [{"menuItemId": "menu-thukpa", "quantity": 2},
                                                          {"menuItemId": "menu-momos", "quantity": 1}]}),
            "cab": client.post("/api/cab-bookings", {**contact, "pickupLocation": "Manali",
                                                     "dropLocation": "Kullu", "providerId": "cab-himalayan",
                                                     "datetime": "2026-12-21T10:00:00"}),
            "bus": client.post("/api/bus-bookings/book", {**contact, "routeId": "bus-manali-kullu",
                                                          "journeyDate": "2026-12-22", "seats": ["A1", "B1"]}),
            "bike": client.post("/api/bike-bookings/book", {**contact, "bikeRentalId": "bike-classic-350",
                                                            "startDateTime": "2026-12-22T09:00:00Z",
                                                            "days": 2, "qty": 1}),
        }

        print("=== Bookings ===")
        for kind, res in results.items():
            print(f"- {kind}: {res['id']}")

        print("\n=== Pricing snapshots ===")
        for collection in ("ev_bookings", "ev_food_orders", "ev_cab_bookings"):
            for row in store.select(collection):
                pricing = row["pricing"]
                print(f"- {row['id']}: base={pricing['baseAmount']} gst={pricing['tax']['gstAmount']} "
                      f"total={pricing['totalAmount']}")
        for collection in ("ev_bus_bookings", "ev_bike_bookings"):
            for row in store.select(collection):
                print(f"- {row['id']}: totalFare={row['totalFare']}")

        print("\n=== Double booking ===")
        try:
            client.post("/api/bus-bookings/book", {**contact, "routeId": "bus-manali-kullu",
                                                   "journeyDate": "2026-12-22", "seats": ["A1"]})
        except BookingError as e:
            print("Second booking of A1 rejected:", e)

        seats = client.get("/api/buses/bus-manali-kullu/seats", {"journeyDate": "2026-12-22"})
        print("Booked seats:", seats["bookedSeats"])


if __name__ == "__main__":
    main()
