"""
Request Router

Maps (method, path, body, query) onto one command object per route and runs it
through a 1:1 command -> handler table backed by the BookingOrchestrator.
This is the in-process "server" used whenever no real backend answers.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Type, Union
from urllib.parse import parse_qsl, urlsplit

from booking_errors import BookingError
from booking_orchestrator import BookingOrchestrator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------- commands

@dataclass(frozen=True)
class GetMeta:
    pass


@dataclass(frozen=True)
class CreateBooking:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CreateFoodOrder:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CreateCabBooking:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchCabs:
    pickup_location: str = ""
    drop_location: str = ""
    passengers: Any = 1
    service_area_id: str = ""
    datetime: str = ""


@dataclass(frozen=True)
class BookBus:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchBuses:
    from_city: str = ""
    to_city: str = ""
    journey_date: str = ""
    passengers: Any = 1


@dataclass(frozen=True)
class GetBusSeats:
    route_id: str
    journey_date: str = ""


@dataclass(frozen=True)
class BookBike:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestRefund:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuoteHotel:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuoteTour:
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderStatus:
    body: Dict[str, Any] = field(default_factory=dict)


Command = Union[
    GetMeta, CreateBooking, CreateFoodOrder, CreateCabBooking, SearchCabs, BookBus, SearchBuses,
    GetBusSeats, BookBike, RequestRefund, QuoteHotel, QuoteTour, OrderStatus,
]
ALL_COMMANDS: Tuple[Type, ...] = Command.__args__


# ---------------------------------------------------------------- parsing

def _first(query: Dict[str, Any], *keys: str, default: Any = "") -> Any:
    for key in keys:
        value = query.get(key)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if value not in (None, ""):
            return value
    return default


_Factory = Callable[[Dict[str, str], Dict[str, Any], Dict[str, Any]], Command]

ROUTES: Tuple[Tuple[str, "re.Pattern", _Factory], ...] = (
    ("GET", re.compile(r"^/api/meta$"), lambda p, b, q: GetMeta()),
    ("POST", re.compile(r"^/api/bookings$"), lambda p, b, q: CreateBooking(b)),
    ("POST", re.compile(r"^/api/orders$"), lambda p, b, q: CreateFoodOrder(b)),
    ("POST", re.compile(r"^/api/orders/status$"), lambda p, b, q: OrderStatus(b)),
    ("POST", re.compile(r"^/api/cab-bookings$"), lambda p, b, q: CreateCabBooking(b)),
    ("GET", re.compile(r"^/api/cab-bookings/search$"), lambda p, b, q: SearchCabs(
        pickup_location=_first(q, "pickupLocation", "pickup"),
        drop_location=_first(q, "dropLocation", "drop"),
        passengers=_first(q, "passengers", default=1),
        service_area_id=_first(q, "serviceAreaId"),
        datetime=_first(q, "datetime"),
    )),
    ("POST", re.compile(r"^/api/bus-bookings/book$"), lambda p, b, q: BookBus(b)),
    ("GET", re.compile(r"^/api/buses/search$"), lambda p, b, q: SearchBuses(
        from_city=_first(q, "from", "fromCity"),
        to_city=_first(q, "to", "toCity"),
        journey_date=_first(q, "journeyDate", "date"),
        passengers=_first(q, "passengers", default=1),
    )),
    ("GET", re.compile(r"^/api/buses/(?P<route_id>[^/]+)/seats$"), lambda p, b, q: GetBusSeats(
        route_id=p["route_id"],
        journey_date=_first(q, "journeyDate", "date"),
    )),
    ("POST", re.compile(r"^/api/bike-bookings/book$"), lambda p, b, q: BookBike(b)),
    ("POST", re.compile(r"^/api/refunds/request$"), lambda p, b, q: RequestRefund(b)),
    ("POST", re.compile(r"^/api/hotels/quote$"), lambda p, b, q: QuoteHotel(b)),
    ("POST", re.compile(r"^/api/tours/quote$"), lambda p, b, q: QuoteTour(b)),
)


def parse_request(method: str, path: str, body: Optional[Dict[str, Any]] = None,
                  query: Optional[Dict[str, Any]] = None) -> Command:
    """
    Turn a raw request into its command.
    Unknown (method, path) pairs raise UNSUPPORTED_ENDPOINT:<path>.
    """
    parts = urlsplit(path)
    clean_path = parts.path.rstrip("/") or "/"
    merged_query = dict(parse_qsl(parts.query))
    merged_query.update(query or {})
    body = body if isinstance(body, dict) else {}

    for route_method, pattern, factory in ROUTES:
        if route_method != method.upper():
            continue
        match = pattern.match(clean_path)
        if match:
            return factory(match.groupdict(), body, merged_query)
    raise BookingError(f"UNSUPPORTED_ENDPOINT:{clean_path}")


# ---------------------------------------------------------------- router

class RequestRouter:
    """
    Commands: exactly one handler per command type, all of them registered up front.
    """

    def __init__(self, orchestrator: BookingOrchestrator):
        self.orchestrator = orchestrator
        self._handlers: Dict[Type, Callable[[Any], Any]] = {}

        o = orchestrator
        self.register(GetMeta, lambda c: o.meta())
        self.register(CreateBooking, lambda c: o.create_booking(c.body))
        self.register(CreateFoodOrder, lambda c: o.create_food_order(c.body))
        self.register(CreateCabBooking, lambda c: o.create_cab_booking(c.body))
        self.register(SearchCabs, lambda c: o.search_cabs(
            c.pickup_location, c.drop_location, c.passengers, c.service_area_id or None, c.datetime or None))
        self.register(BookBus, lambda c: o.book_bus(c.body))
        self.register(SearchBuses, lambda c: o.search_buses(c.from_city, c.to_city, c.journey_date, c.passengers))
        self.register(GetBusSeats, lambda c: o.bus_seats(c.route_id, c.journey_date))
        self.register(BookBike, lambda c: o.book_bike(c.body))
        self.register(RequestRefund, lambda c: o.request_refund(c.body))
        self.register(QuoteHotel, lambda c: o.quote_hotel(c.body))
        self.register(QuoteTour, lambda c: o.quote_tour(c.body))
        self.register(OrderStatus, lambda c: o.order_status(c.body))

        missing = [c.__name__ for c in ALL_COMMANDS if c not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for: {', '.join(missing)}")

    def register(self, command_type: Type, handler: Callable[[Any], Any]):
        if command_type in self._handlers:
            raise ValueError(
                f"Handler for {command_type.__name__} is already registered. "
                "Commands can have only one handler."
            )
        self._handlers[command_type] = handler

    def handle(self, command: Command) -> Any:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValueError(f"No handler registered for command {type(command).__name__}")
        logger.debug(f"Handling command: {type(command).__name__}")
        return handler(command)

    def handle_request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                       query: Optional[Dict[str, Any]] = None) -> Any:
        return self.handle(parse_request(method, path, body, query))
