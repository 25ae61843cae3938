import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from auth_context import AuthIdentity, ContextAuth, normalize_phone
from booking_errors import BookingError, StoreError
from booking_schemas import (
    BikeBooking,
    BikeRental,
    Booking,
    BusBooking,
    BusRoute,
    BusSeat,
    CabBooking,
    CabProvider,
    Coupon,
    FoodOrder,
    FoodOrderItem,
    Hotel,
    MenuItem,
    PricingSnapshot,
    Settings,
    Tour,
    is_available,
)
from fare_estimator import estimate_fare
from persistence.store import (
    AUDIT_LOG,
    BIKE_BOOKINGS,
    BIKE_RENTALS,
    BOOKINGS,
    BUS_BOOKINGS,
    BUSES,
    CAB_BOOKINGS,
    CAB_PROVIDERS,
    COUPONS,
    FOOD_ORDERS,
    HOTELS,
    MENU_ITEMS,
    RENTAL_VEHICLES,
    SERVICE_AREAS,
    SETTINGS,
    TOURS,
    RowStore,
    available,
    in_,
)
from pricing import (
    compute_gst,
    coupon_discount,
    hotel_gst_rate,
    nights_between,
    parse_day,
    round2,
    tier_multiplier,
)
from txn_manager import TransactionManager

logger = logging.getLogger(__name__)

SEAT_COLUMNS = ("A", "B", "C", "D")
DEFAULT_BUS_SEATS = 20
# stock keys seen in ev_rental_vehicles.availability_rates, in read priority order
STOCK_KEYS = ("availableQty", "available_qty", "qty", "stock")
# never shown to customers
PROVIDER_INTERNAL_FIELDS = ("vendorMobile", "additionalComments", "version")


def make_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _same(a, b) -> bool:
    return _text(a).lower() == _text(b).lower()


def _int(value, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise BookingError("INVALID_INPUT", f"Not a number: {value!r}")


def _parse_datetime(value) -> Optional[datetime]:
    text = _text(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _public(row: Dict[str, Any], hidden=("version",)) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in hidden}


def default_seat_layout(total_seats: int) -> List[BusSeat]:
    rows = max(1, math.ceil(total_seats / len(SEAT_COLUMNS)))
    seats = [BusSeat(code=f"{col}{r}") for r in range(1, rows + 1) for col in SEAT_COLUMNS]
    return seats[:total_seats]


def seat_layout_for(route: BusRoute) -> List[BusSeat]:
    if route.seat_layout:
        return route.seat_layout
    return default_seat_layout(max(1, route.total_seats or DEFAULT_BUS_SEATS))


def with_stock(rates: Dict[str, Any], qty: int) -> Dict[str, Any]:
    # every stock alias collapses into available_qty so the next read sees this value
    out = {k: v for k, v in (rates or {}).items() if k not in STOCK_KEYS}
    out["available_qty"] = qty
    return out


def bike_from_vehicle(row: Dict[str, Any]) -> BikeRental:
    """Map an ev_rental_vehicles row (snake_case, nested rates) onto BikeRental."""
    rates = row.get("availability_rates") or {}
    vendor = row.get("vendor_details") or {}
    pricing = row.get("pricing") or {}

    per_day = next((v for v in (pricing.get("perDay"), pricing.get("per_day"), rates.get("perDay"), rates.get("per_day"))
                    if v not in (None, "")), 0)
    qty = next((rates.get(k) for k in STOCK_KEYS if rates.get(k) not in (None, "")), None)
    if qty is None:
        qty = 0 if row.get("available") is False else 1

    return BikeRental(
        id=_text(row.get("id")),
        name=_text(row.get("name")),
        location=_text(vendor.get("location") or vendor.get("city") or row.get("location") or "Unknown"),
        bike_type=_text(row.get("bike_model") or row.get("category") or "Bike"),
        price_per_day=max(0.0, float(per_day or 0)),
        available_qty=max(0, int(float(qty))),
        max_days=max(0, int(float(row.get("max_days") or row.get("maxDays") or 0))),
        active=row.get("available") is not False,
    )


def owns(identity: AuthIdentity, row: Dict[str, Any]) -> bool:
    if identity.id and identity.id == _text(row.get("userId")):
        return True
    if identity.phone and normalize_phone(identity.phone) == normalize_phone(row.get("phone")):
        return True
    if identity.email and _same(identity.email, row.get("email")) and _text(row.get("email")):
        return True
    return False


class BookingOrchestrator:
    """
    One entry point per booking type. Every create validates first (raising
    BookingError before anything is written), prices via pricing/fare_estimator,
    mutates inventory through TransactionManager where the booking consumes stock,
    then persists the booking row and an audit entry.
    """

    def __init__(self, store: RowStore, auth: Optional[ContextAuth] = None, max_attempts: int = 3,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.auth = auth or ContextAuth()
        self.txn = TransactionManager(store, max_attempts=max_attempts)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------ helpers

    def _now_iso(self) -> str:
        return self.clock().isoformat()

    def load_settings(self) -> Settings:
        rows = self.store.select(SETTINGS, limit=1)
        return Settings.model_validate(rows[0]) if rows else Settings()

    def _coupons(self) -> List[Coupon]:
        return [Coupon.model_validate(r) for r in self.store.select(COUPONS)]

    def _audit(self, action: str, entity: str, entity_id: str, **extra):
        entry = {"id": make_id("audit"), "at": self._now_iso(), "action": action,
                 "entity": entity, "entityId": entity_id, **extra}
        try:
            self.store.insert(AUDIT_LOG, entry)
        except StoreError:
            # the booking itself is already saved
            logger.error(f"Audit write failed for {action} {entity_id}", exc_info=True)

    def _require_identity(self) -> AuthIdentity:
        identity = self.auth.current_user()
        if identity is None:
            raise BookingError("AUTH_REQUIRED")
        return identity

    def _check_identity_phone(self, phone: str):
        identity = self.auth.current_user()
        if identity and identity.phone and normalize_phone(identity.phone) != normalize_phone(phone):
            raise BookingError("AUTH_IDENTITY_MISMATCH")

    @staticmethod
    def _contact(data: Dict[str, Any]) -> Tuple[str, str]:
        user_name, phone = _text(data.get("userName")), _text(data.get("phone"))
        if not user_name:
            raise BookingError("INVALID_INPUT", "userName is required")
        if not phone:
            raise BookingError("PHONE_REQUIRED")
        return user_name, phone

    # ------------------------------------------------------------ meta / search

    def meta(self) -> Dict[str, Any]:
        settings = self.load_settings()
        providers = [_public(r, PROVIDER_INTERNAL_FIELDS) for r in self.store.select(CAB_PROVIDERS, [available("active")])]
        areas = [_public(r) for r in self.store.select(SERVICE_AREAS, [available("enabled")])]
        buses = self.store.select(BUSES, [available("active")])
        bikes = [b for b in self._bike_catalog() if is_available(b.active)]

        cab_locations = set()
        for area in areas:
            cab_locations.update(_text(x) for x in area.get("locations") or [])
            if _text(area.get("name")):
                cab_locations.add(_text(area.get("name")))

        bus_locations = {_text(r.get(k)) for r in buses for k in ("fromCity", "toCity")}
        return {
            "settings": {
                "currency": settings.currency,
                "taxRules": settings.tax_rules.to_row(),
                "pricingTiers": [t.to_row() for t in settings.pricing_tiers],
            },
            "cabPricing": settings.cab_pricing.to_row(),
            "cabProviders": providers,
            "serviceAreas": areas,
            "cabLocations": sorted(x for x in cab_locations if x),
            "busLocations": sorted(x for x in bus_locations if x),
            "bikeLocations": sorted({b.location for b in bikes if b.location}),
            "bikeRentals": [b.to_row() for b in bikes],
            "coupons": [c.to_row() for c in self._coupons()],
        }

    def _bike_catalog(self) -> List[BikeRental]:
        vehicles = [bike_from_vehicle(r) for r in self.store.select(RENTAL_VEHICLES)
                    if _same(r.get("category"), "bike")]
        rentals = [BikeRental.model_validate(r) for r in self.store.select(BIKE_RENTALS)]
        seen = {b.id for b in vehicles}
        return vehicles + [b for b in rentals if b.id not in seen]

    def search_cabs(self, pickup, drop, passengers=1, service_area_id=None, when=None) -> Dict[str, Any]:
        pickup, drop = _text(pickup), _text(drop)
        if not pickup or not drop:
            raise BookingError("PICKUP_DROP_REQUIRED")
        if _same(pickup, drop):
            raise BookingError("INVALID_TRIP")
        passengers = max(1, _int(passengers, 1))
        trip_time = _parse_datetime(when) if when else None

        settings = self.load_settings()
        results = []
        for row in self.store.select(CAB_PROVIDERS, [available("active")]):
            provider = CabProvider.model_validate(row)
            if provider.capacity < passengers:
                continue
            if service_area_id and provider.service_area_id and provider.service_area_id != service_area_id:
                continue
            fare = estimate_fare(settings, pickup, drop, when=trip_time, provider=provider)
            results.append({
                "providerId": provider.id,
                "providerName": provider.name,
                "vehicleType": provider.vehicle_type,
                "capacity": provider.capacity,
                "distanceKm": fare.distance_km,
                "durationMin": fare.duration_min,
                "priceDropped": provider.price_dropped,
                "estimatedFare": fare.discounted_base,
                "totalAmount": fare.total,
                "fare": fare.to_row(),
            })
        results.sort(key=lambda r: r["totalAmount"])
        return {"success": True, "count": len(results), "results": results}

    def search_buses(self, from_city, to_city, journey_date, passengers=1) -> Dict[str, Any]:
        from_city, to_city, journey_date = _text(from_city), _text(to_city), _text(journey_date)
        if not from_city or not to_city or not journey_date:
            raise BookingError("FROM_TO_DATE_REQUIRED")
        if _same(from_city, to_city):
            raise BookingError("INVALID_ROUTE")
        passengers = max(1, _int(passengers, 1))

        matches = []
        for row in self.store.select(BUSES, [available("active")]):
            route = BusRoute.model_validate(row)
            if not (_same(route.from_city, from_city) and _same(route.to_city, to_city)):
                continue
            if route.service_dates and journey_date not in route.service_dates:
                continue
            total = max(1, route.total_seats or DEFAULT_BUS_SEATS)
            left = max(0, total - len(route.seats_booked_by_date.get(journey_date, [])))
            matches.append({
                "id": route.id,
                "operatorName": route.operator_name,
                "fromCity": route.from_city,
                "toCity": route.to_city,
                "departureTime": route.departure_time,
                "arrivalTime": route.arrival_time,
                "busType": route.bus_type,
                "fare": route.fare,
                "totalSeats": total,
                "availableSeats": left,
                "seatsLabel": f"{left}/{total}",
                "canBook": left >= passengers,
            })
        matches.sort(key=lambda r: r["fare"])
        return {"success": True, "count": len(matches), "routes": matches}

    def bus_seats(self, route_id, journey_date) -> Dict[str, Any]:
        route_id, journey_date = _text(route_id), _text(journey_date)
        if not route_id or not journey_date:
            raise BookingError("ROUTE_DATE_REQUIRED")
        row = self.store.get(BUSES, route_id)
        if row is None:
            raise BookingError("ROUTE_NOT_FOUND")
        route = BusRoute.model_validate(row)
        return {
            "success": True,
            "routeId": route.id,
            "journeyDate": journey_date,
            "fare": route.fare,
            "totalSeats": max(1, route.total_seats or DEFAULT_BUS_SEATS),
            "bookedSeats": list(route.seats_booked_by_date.get(journey_date, [])),
            "seatLayout": [s.to_row() for s in seat_layout_for(route)],
        }

    # ------------------------------------------------------------ hotel / tour

    def _price_hotel(self, data: Dict[str, Any], settings: Settings):
        item_id = _text(data.get("itemId"))
        if not item_id:
            raise BookingError("INVALID_INPUT", "itemId is required")
        row = self.store.get(HOTELS, item_id)
        if row is None or not is_available(row.get("available")):
            raise BookingError("HOTEL_NOT_FOUND")
        hotel = Hotel.model_validate(row)

        check_in, check_out = parse_day(data.get("checkIn")), parse_day(data.get("checkOut"))
        if check_in is None or check_out is None:
            raise BookingError("INVALID_STAY_RANGE")
        nights = nights_between(check_in, check_out)
        if nights <= 0:
            raise BookingError("INVALID_STAY_RANGE")

        room_type = _text(data.get("roomType"))
        num_rooms = _int(data.get("numRooms"), 1)
        guests = _int(data.get("guests"), 1)
        if not room_type or num_rooms < 1 or guests < 1:
            raise BookingError("INVALID_INPUT", "roomType, numRooms and guests are required")

        per_night = hotel.price_per_night
        if hotel.room_types:
            match = next((rt for rt in hotel.room_types if _same(rt.type, room_type)), None)
            if match is None:
                raise BookingError("INVALID_ROOM_TYPE")
            per_night = match.price

        closed = set(hotel.availability.closed_dates)
        stay = [(check_in + timedelta(days=i)).isoformat() for i in range(nights)]
        if any(d in closed for d in stay):
            raise BookingError("DATE_UNAVAILABLE")
        if nights < hotel.min_nights or nights > hotel.max_nights:
            raise BookingError("INVALID_STAY_LENGTH")

        # roomsByType is a display hint only; numRooms is not checked against it
        base = round2(per_night * nights * num_rooms)
        rate = hotel_gst_rate(per_night, settings)
        return {
            "hotel": hotel, "check_in": check_in.isoformat(), "check_out": check_out.isoformat(),
            "nights": nights, "room_type": room_type, "num_rooms": num_rooms, "guests": guests,
            "per_night": per_night, "base": base, "rate": rate,
        }

    def _price_tour(self, data: Dict[str, Any], settings: Settings):
        item_id = _text(data.get("itemId"))
        if not item_id:
            raise BookingError("INVALID_INPUT", "itemId is required")
        row = self.store.get(TOURS, item_id)
        if row is None or not is_available(row.get("available")):
            raise BookingError("TOUR_NOT_FOUND")
        tour = Tour.model_validate(row)

        tour_day = parse_day(data.get("tourDate")) if _text(data.get("tourDate")) else None
        if tour_day is None:
            raise BookingError("INVALID_TOUR_DATE")
        tour_date = tour_day.isoformat()
        if tour_date in tour.availability.closed_dates:
            raise BookingError("INVALID_TOUR_DATE")

        guests = _int(data.get("guests"), 1)
        if guests < 1:
            raise BookingError("INVALID_INPUT", "guests must be at least 1")
        if tour.max_guests and guests > tour.max_guests:
            raise BookingError("MAX_GUESTS_EXCEEDED")
        capacity = tour.availability.capacity_by_date.get(tour_date)
        if capacity is not None and guests > capacity:
            raise BookingError("SOLD_OUT")

        base = tour.price
        if tour.price_dropped:
            base = tour.price - tour.price * min(100.0, max(0.0, tour.price_drop_percent)) / 100
        return {"tour": tour, "tour_date": tour_date, "guests": guests, "base": round2(base),
                "rate": settings.tax_rules.tour.gst}

    def create_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        kind = _text(data.get("type")).lower()
        if kind not in ("hotel", "tour"):
            raise BookingError("INVALID_INPUT", "type must be hotel or tour")
        user_name, phone = self._contact(data)
        settings = self.load_settings()

        if kind == "hotel":
            q = self._price_hotel(data, settings)
            details = dict(check_in=q["check_in"], check_out=q["check_out"], room_type=q["room_type"],
                           num_rooms=q["num_rooms"], nights=q["nights"])
            item_id = q["hotel"].id
        else:
            q = self._price_tour(data, settings)
            details = dict(tour_date=q["tour_date"])
            item_id = q["tour"].id

        tax = compute_gst(q["base"], q["rate"])
        booking = Booking(
            id=make_id("booking"),
            type=kind,
            item_id=item_id,
            user_name=user_name,
            email=_text(data.get("email")),
            phone=phone,
            guests=q["guests"],
            special_requests=_text(data.get("specialRequests")),
            pricing=PricingSnapshot(base_amount=q["base"], tax=tax, total_amount=round2(q["base"] + tax.gst_amount)),
            status="pending",
            booking_date=self._now_iso(),
            **details,
        )
        self.store.insert(BOOKINGS, booking.to_row())
        self._audit("CREATE_BOOKING", kind, booking.id)
        logger.info(f"Created {kind} booking {booking.id} for {item_id}: total {booking.pricing.total_amount}")
        return {"success": True, "id": booking.id}

    def _quote(self, category: str, base: float, data: Dict[str, Any], settings: Settings, rate: float) -> Dict[str, Any]:
        multiplier = tier_multiplier(settings, data.get("tier"))
        subtotal = round2(base * multiplier)
        discount = coupon_discount(self._coupons(), data.get("couponCode"), category, subtotal,
                                   today=self.clock().date())
        taxable = round2(subtotal - discount)
        tax = compute_gst(taxable, rate)
        return {
            "currency": settings.currency,
            "baseAmount": base,
            "tierMultiplier": multiplier,
            "subtotal": subtotal,
            "discount": discount,
            "tax": tax.to_row(),
            "totalAmount": round2(taxable + tax.gst_amount),
        }

    def quote_hotel(self, data: Dict[str, Any]) -> Dict[str, Any]:
        settings = self.load_settings()
        q = self._price_hotel(data, settings)
        quote = self._quote("hotel", q["base"], data, settings, q["rate"])
        quote.update({"nights": q["nights"], "perNight": q["per_night"]})
        return {"success": True, "quote": quote}

    def quote_tour(self, data: Dict[str, Any]) -> Dict[str, Any]:
        settings = self.load_settings()
        q = self._price_tour(data, settings)
        quote = self._quote("tour", q["base"], data, settings, q["rate"])
        quote.update({"tourDate": q["tour_date"], "guests": q["guests"]})
        return {"success": True, "quote": quote}

    # ------------------------------------------------------------ food

    def create_food_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        restaurant_id = _text(data.get("restaurantId"))
        if not restaurant_id:
            raise BookingError("RESTAURANT_ID_REQUIRED")
        phone = _text(data.get("phone"))
        if not phone:
            raise BookingError("PHONE_REQUIRED")
        address = _text(data.get("deliveryAddress"))
        if not address:
            raise BookingError("INVALID_INPUT", "deliveryAddress is required")
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise BookingError("ITEMS_REQUIRED")

        wanted: Dict[str, int] = {}
        for it in raw_items:
            if not isinstance(it, dict):
                raise BookingError("INVALID_MENU_ITEM")
            item_id = _text(it.get("menuItemId") or it.get("id"))
            quantity = _int(it.get("quantity"), 1)
            if not item_id:
                raise BookingError("INVALID_MENU_ITEM")
            if quantity < 1:
                raise BookingError("INVALID_INPUT", "quantity must be at least 1")
            wanted[item_id] = wanted.get(item_id, 0) + quantity

        menu = {r["id"]: r for r in self.store.select(MENU_ITEMS, [in_("id", list(wanted))])}
        lines = []
        for item_id, quantity in wanted.items():
            row = menu.get(item_id)
            if row is None or _text(row.get("restaurantId")) != restaurant_id:
                raise BookingError("INVALID_MENU_ITEM")
            item = MenuItem.model_validate(row)
            if not is_available(item.available):
                raise BookingError("ITEM_NOT_AVAILABLE")
            if quantity > item.max_per_order:
                raise BookingError("QUANTITY_EXCEEDS_MAX_PER_ORDER")
            lines.append(FoodOrderItem(menu_item_id=item.id, restaurant_id=restaurant_id,
                                       name=item.name, price=item.price, quantity=quantity))

        settings = self.load_settings()
        base = round2(sum(line.price * line.quantity for line in lines))
        tax = compute_gst(base, settings.tax_rules.food.gst)
        identity = self.auth.current_user()
        order = FoodOrder(
            id=make_id("food"),
            user_id=identity.id if identity else "",
            restaurant_id=restaurant_id,
            user_name=_text(data.get("userName")),
            phone=phone,
            items=lines,
            delivery_address=address,
            special_instructions=_text(data.get("specialInstructions")),
            pricing=PricingSnapshot(base_amount=base, tax=tax, total_amount=round2(base + tax.gst_amount)),
            status="pending",
            order_time=self._now_iso(),
        )
        saved = self.store.insert(FOOD_ORDERS, order.to_row())
        self._audit("CREATE_FOOD_ORDER", "food", order.id)
        logger.info(f"Created food order {order.id} at {restaurant_id}: total {order.pricing.total_amount}")
        return {"success": True, "id": order.id, "order": _public(saved)}

    # ------------------------------------------------------------ cab

    def create_cab_booking(self, data: Dict[str, Any]) -> Dict[str, Any]:
        user_name, phone = self._contact(data)
        pickup, drop = _text(data.get("pickupLocation")), _text(data.get("dropLocation"))
        if not pickup or not drop:
            raise BookingError("PICKUP_DROP_REQUIRED")
        if _same(pickup, drop):
            raise BookingError("INVALID_TRIP")
        when = _parse_datetime(data.get("datetime"))
        if when is None:
            raise BookingError("INVALID_INPUT", "datetime is required")
        passengers = max(1, _int(data.get("passengers"), 1))

        provider = None
        provider_id = _text(data.get("providerId"))
        if provider_id:
            row = self.store.get(CAB_PROVIDERS, provider_id)
            if row is None or not is_available(row.get("active")):
                raise BookingError("PROVIDER_NOT_FOUND")
            provider = CabProvider.model_validate(row)

        settings = self.load_settings()
        fare = estimate_fare(
            settings, pickup, drop, when=when, provider=provider,
            include_toll=data.get("includeToll") is not False,
            high_demand=bool(data.get("highDemand")),
        )
        booking = CabBooking(
            id=make_id("cab"),
            user_name=user_name,
            phone=phone,
            pickup_location=pickup,
            drop_location=drop,
            datetime=when.isoformat(),
            passengers=passengers,
            vehicle_type=provider.vehicle_type if provider else _text(data.get("vehicleType")),
            provider_id=provider.id if provider else None,
            service_area_id=_text(data.get("serviceAreaId")) or (provider.service_area_id if provider else None),
            estimated_fare=fare.discounted_base,
            fare=fare,
            pricing=PricingSnapshot(base_amount=fare.discounted_base, tax=fare.tax, total_amount=fare.total),
            status="pending",
            created_at=self._now_iso(),
        )
        self.store.insert(CAB_BOOKINGS, booking.to_row())
        self._audit("CREATE_CAB_BOOKING", "cab", booking.id)
        logger.info(f"Created cab booking {booking.id} {pickup} -> {drop}: total {fare.total}")
        return {"success": True, "id": booking.id}

    # ------------------------------------------------------------ bus

    def book_bus(self, data: Dict[str, Any]) -> Dict[str, Any]:
        route_id = _text(data.get("routeId"))
        journey_date = _text(data.get("journeyDate"))
        raw_seats = data.get("seats") if isinstance(data.get("seats"), list) else []
        seats = [s for s in (_text(x) for x in raw_seats) if s]
        user_name, phone = _text(data.get("userName")), _text(data.get("phone"))
        if not route_id or not journey_date or not user_name or not phone or not seats:
            raise BookingError("INVALID_INPUT")
        if len(set(seats)) != len(seats):
            raise BookingError("INVALID_SEAT_SELECTION")
        self._check_identity_phone(phone)

        resolved: Dict[str, BusRoute] = {}

        def take_seats(row):
            if not is_available(row.get("active")):
                raise BookingError("ROUTE_NOT_FOUND")
            route = BusRoute.model_validate(row)
            valid = {s.code for s in seat_layout_for(route)}
            if any(s not in valid for s in seats):
                raise BookingError("INVALID_SEAT_SELECTION")
            booked = list(route.seats_booked_by_date.get(journey_date, []))
            if any(s in booked for s in seats):
                raise BookingError("SEAT_ALREADY_BOOKED")
            resolved["route"] = route
            by_date = dict(row.get("seatsBookedByDate") or {})
            by_date[journey_date] = booked + seats
            return {"seatsBookedByDate": by_date}

        def release_seats(row):
            by_date = dict(row.get("seatsBookedByDate") or {})
            by_date[journey_date] = [s for s in by_date.get(journey_date, []) if s not in seats]
            return {"seatsBookedByDate": by_date}

        reservation = self.txn.reserve(BUSES, route_id, take_seats, release_seats, not_found="ROUTE_NOT_FOUND")
        route = resolved["route"]
        booking = BusBooking(
            id=make_id("bus"),
            route_id=route.id,
            user_name=user_name,
            phone=phone,
            from_city=route.from_city,
            to_city=route.to_city,
            travel_date=journey_date,
            seats=seats,
            fare_per_seat=route.fare,
            total_fare=round2(route.fare * len(seats)),
            status="pending",
            created_at=self._now_iso(),
        )
        self.txn.confirm(reservation, BUS_BOOKINGS, booking.to_row())
        self._audit("CREATE_BUS_BOOKING", "bus", booking.id)
        logger.info(f"Created bus booking {booking.id} on {route.id} {journey_date} seats {seats}")
        return {"success": True, "id": booking.id}

    # ------------------------------------------------------------ bike

    def book_bike(self, data: Dict[str, Any]) -> Dict[str, Any]:
        identity = self._require_identity()
        bike_id = _text(data.get("bikeRentalId"))
        user_name, phone = _text(data.get("userName")), _text(data.get("phone"))
        start = _text(data.get("startDateTime"))
        if not bike_id or not user_name or not phone or not start:
            raise BookingError("INVALID_INPUT")
        hours = _int(data.get("hours"))
        days = _int(data.get("days"), max(1, hours // 24) if hours else 1)
        qty = _int(data.get("qty"), 1)
        if days < 1 or qty < 1:
            raise BookingError("INVALID_INPUT", "days and qty must be at least 1")
        if identity.phone and normalize_phone(identity.phone) != normalize_phone(phone):
            raise BookingError("AUTH_IDENTITY_MISMATCH")

        vehicle = self.store.get(RENTAL_VEHICLES, bike_id)
        if vehicle is not None and _same(vehicle.get("category"), "bike"):
            source = RENTAL_VEHICLES
        elif self.store.get(BIKE_RENTALS, bike_id) is not None:
            source = BIKE_RENTALS
        else:
            raise BookingError("BIKE_NOT_FOUND")

        resolved: Dict[str, BikeRental] = {}

        def check_stock(bike: BikeRental):
            if not is_available(bike.active):
                raise BookingError("BIKE_NOT_FOUND")
            if bike.available_qty < qty:
                raise BookingError("INSUFFICIENT_BIKE_STOCK")
            if bike.max_days > 0 and days > bike.max_days:
                raise BookingError("MAX_DAYS_EXCEEDED")
            resolved["bike"] = bike

        if source == RENTAL_VEHICLES:
            def take_stock(row):
                bike = bike_from_vehicle(row)
                check_stock(bike)
                rates = with_stock(row.get("availability_rates"), bike.available_qty - qty)
                return {"availability_rates": rates, "updated_at": self._now_iso()}

            def return_stock(row):
                rates = with_stock(row.get("availability_rates"), bike_from_vehicle(row).available_qty + qty)
                return {"availability_rates": rates}
        else:
            def take_stock(row):
                bike = BikeRental.model_validate(row)
                check_stock(bike)
                return {"availableQty": bike.available_qty - qty}

            def return_stock(row):
                return {"availableQty": BikeRental.model_validate(row).available_qty + qty}

        reservation = self.txn.reserve(source, bike_id, take_stock, return_stock, not_found="BIKE_NOT_FOUND")
        bike = resolved["bike"]
        booking = BikeBooking(
            id=make_id("bike"),
            bike_rental_id=bike.id,
            source=source,
            user_name=user_name,
            phone=phone,
            start_date_time=start,
            days=days,
            hours=days * 24,
            qty=qty,
            price_per_day=bike.price_per_day,
            total_fare=round2(days * bike.price_per_day * qty),
            status="pending",
            created_at=self._now_iso(),
        )
        self.txn.confirm(reservation, BIKE_BOOKINGS, booking.to_row())
        self._audit("CREATE_BIKE_BOOKING", "bike", booking.id)
        logger.info(f"Created bike booking {booking.id} for {bike.id} x{qty}, {days} day(s)")
        return {"success": True, "id": booking.id}

    # ------------------------------------------------------------ orders

    def order_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        identity = self._require_identity()
        wanted = {
            "bookings": BOOKINGS,
            "cabBookings": CAB_BOOKINGS,
            "foodOrders": FOOD_ORDERS,
            "busBookings": BUS_BOOKINGS,
            "bikeBookings": BIKE_BOOKINGS,
        }
        out = {}
        for key, collection in wanted.items():
            ids = [_text(x) for x in data.get(key) or [] if _text(x)]
            rows = self.store.select(collection, [in_("id", ids)]) if ids else []
            out[key] = [{"id": r["id"], "status": r.get("status", "pending")} for r in rows if owns(identity, r)]
        return out

    def request_refund(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record a refund request against one of the caller's orders.
        Nothing is paid out here; fulfilment picks the request up from the audit log.
        """
        identity = self._require_identity()
        order_id = _text(data.get("orderId"))
        if not order_id:
            raise BookingError("INVALID_INPUT", "orderId is required")

        order = None
        for collection in (BOOKINGS, FOOD_ORDERS, CAB_BOOKINGS):
            order = self.store.get(collection, order_id)
            if order is not None:
                break
        if order is None:
            raise BookingError("ORDER_NOT_FOUND")
        if not owns(identity, order):
            raise BookingError("NOT_YOUR_ORDER")

        pricing = order.get("pricing") or {}
        amount = round2(pricing.get("totalAmount") or order.get("estimatedFare") or 0)
        refund_id = make_id("refund")
        self._audit("REFUND_REQUESTED", "refund", order_id, refundId=refund_id,
                    reason=_text(data.get("reason")), amount=amount)
        logger.info(f"Refund {refund_id} requested for {order_id} ({amount})")
        return {"ok": True, "refundId": refund_id, "orderId": order_id, "amount": amount, "status": "requested"}
