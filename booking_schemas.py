from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Literal, Optional


BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]


class WireModel(BaseModel):
    # snake_case in Python, camelCase on the wire (the UI depends on exact field names)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_row(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def is_available(flag: Optional[bool]) -> bool:
    # missing "available"/"active" flags count as available
    return flag is not False


# ---------------------------------------------------------------- settings

class TaxSlab(WireModel):
    min_price: float = Field(0.0, alias="min")
    max_price: Optional[float] = Field(None, alias="max")
    gst: float = 0.0


def _default_hotel_slabs() -> List[TaxSlab]:
    return [
        TaxSlab(min_price=0, max_price=1000, gst=0.0),
        TaxSlab(min_price=1000.01, max_price=7500, gst=0.12),
        TaxSlab(min_price=7500.01, max_price=None, gst=0.18),
    ]


class HotelTaxRule(WireModel):
    slabs: List[TaxSlab] = Field(default_factory=_default_hotel_slabs)


class FlatTaxRule(WireModel):
    gst: float = Field(0.05, ge=0, le=1)
    mode: str = "DEFAULT"


class TaxRules(WireModel):
    hotel: HotelTaxRule = Field(default_factory=HotelTaxRule)
    tour: FlatTaxRule = Field(default_factory=FlatTaxRule)
    food: FlatTaxRule = Field(default_factory=FlatTaxRule)
    cab: FlatTaxRule = Field(default_factory=FlatTaxRule)


class PricingTier(WireModel):
    name: str
    multiplier: float = Field(1.0, gt=0)


def _default_tiers() -> List[PricingTier]:
    return [
        PricingTier(name="Economic", multiplier=0.85),
        PricingTier(name="Premium", multiplier=1.15),
        PricingTier(name="Luxury", multiplier=1.4),
    ]


class SurgeRule(WireModel):
    from_time: str = Field(alias="from")   # "HH:MM"
    to_time: str = Field(alias="to")
    multiplier: float = Field(1.0, gt=0)


class NightCharges(WireModel):
    start: str = "22:00"
    end: str = "06:00"
    multiplier: float = Field(1.25, gt=0)


class TollPolicy(WireModel):
    enabled: bool = False
    default_fee: float = Field(0.0, ge=0)


class CabPricing(WireModel):
    base_fare: float = Field(120.0, ge=0)
    per_km: float = Field(14.0, ge=0)
    per_min: float = Field(2.0, ge=0)
    surge_rules: List[SurgeRule] = Field(default_factory=list)
    night_charges: NightCharges = Field(default_factory=NightCharges)
    tolls: TollPolicy = Field(default_factory=TollPolicy)


class Settings(WireModel):
    """
    Singleton row of ev_settings. Written only by the admin surface.
    """
    currency: str = "INR"
    tax_rules: TaxRules = Field(default_factory=TaxRules)
    pricing_tiers: List[PricingTier] = Field(default_factory=_default_tiers)
    cab_pricing: CabPricing = Field(default_factory=CabPricing)


# ---------------------------------------------------------------- catalog

class CatalogAvailability(WireModel):
    closed_dates: List[str] = Field(default_factory=list)
    capacity_by_date: Dict[str, int] = Field(default_factory=dict)
    rooms_by_type: Dict[str, int] = Field(default_factory=dict)


class HotelRoomType(WireModel):
    type: str
    price: float = Field(0.0, ge=0)
    capacity: int = 2


class Hotel(WireModel):
    id: str
    name: str = ""
    location: str = ""
    price_per_night: float = Field(0.0, ge=0)
    room_types: List[HotelRoomType] = Field(default_factory=list)
    availability: CatalogAvailability = Field(default_factory=CatalogAvailability)
    min_nights: int = 1
    max_nights: int = 30
    available: Optional[bool] = None


class Tour(WireModel):
    id: str
    title: str = ""
    price: float = Field(0.0, ge=0)
    price_dropped: bool = False
    price_drop_percent: float = 0.0
    max_guests: int = 20
    availability: CatalogAvailability = Field(default_factory=CatalogAvailability)
    available: Optional[bool] = None


class MenuItem(WireModel):
    id: str
    restaurant_id: str = ""
    name: str = ""
    price: float = Field(0.0, ge=0)
    max_per_order: int = 10
    is_veg: bool = False
    available: Optional[bool] = None


class CabProvider(WireModel):
    id: str
    name: str = ""
    vehicle_type: str = "Sedan"
    capacity: int = 4
    price_dropped: bool = False
    price_drop_percent: float = 0.0
    service_area_id: Optional[str] = None
    active: Optional[bool] = None


class BusSeat(WireModel):
    code: str
    seat_type: str = "regular"


class BusRoute(WireModel):
    id: str
    operator_name: str = ""
    from_city: str = ""
    to_city: str = ""
    departure_time: str = ""
    arrival_time: str = ""
    bus_type: str = "Non AC"
    fare: float = Field(0.0, ge=0)
    total_seats: int = 20
    seat_layout: List[BusSeat] = Field(default_factory=list)
    service_dates: List[str] = Field(default_factory=list)
    seats_booked_by_date: Dict[str, List[str]] = Field(default_factory=dict)
    active: Optional[bool] = None


class BikeRental(WireModel):
    id: str
    name: str = ""
    location: str = ""
    bike_type: str = "Scooter"
    price_per_day: float = Field(0.0, ge=0)
    available_qty: int = 0
    max_days: int = 0
    active: Optional[bool] = None


class Coupon(WireModel):
    code: str
    type: Literal["flat", "percent"] = "flat"
    amount: float = Field(0.0, ge=0)
    min_cart: float = 0.0
    category: str = "all"
    expiry: str = ""


# ---------------------------------------------------------------- pricing

class TaxBreakup(WireModel):
    gst_rate: float
    taxable_value: float
    gst_amount: float
    cgst: float
    sgst: float
    igst: float = 0.0


class PricingSnapshot(WireModel):
    """Frozen at creation time; never recomputed from the catalog."""
    model_config = ConfigDict(frozen=True)

    base_amount: float
    tax: TaxBreakup
    total_amount: float


class FareEstimate(WireModel):
    distance_km: float
    duration_min: int
    base_fare: float
    distance_charge: float
    time_charge: float
    surge_multiplier: float = 1.0
    night_multiplier: float = 1.0
    is_night: bool = False
    multiplier: float = 1.0
    toll_fee: float = 0.0
    subtotal: float                # rawBase
    price_drop_amount: float = 0.0
    discounted_base: float
    tax: TaxBreakup
    total: float


# ---------------------------------------------------------------- bookings

class Booking(WireModel):
    id: str
    type: Literal["hotel", "tour"]
    item_id: str
    user_name: str
    email: str = ""
    phone: str
    guests: int = Field(1, ge=1)
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    room_type: Optional[str] = None
    num_rooms: int = 1
    nights: Optional[int] = None
    tour_date: Optional[str] = None
    special_requests: str = ""
    pricing: PricingSnapshot
    status: BookingStatus = "pending"
    booking_date: str


class FoodOrderItem(WireModel):
    menu_item_id: str
    restaurant_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)


class FoodOrder(WireModel):
    id: str
    user_id: str = ""
    restaurant_id: str
    user_name: str = ""
    phone: str
    items: List[FoodOrderItem]
    delivery_address: str
    special_instructions: str = ""
    pricing: PricingSnapshot
    status: BookingStatus = "pending"
    order_time: str


class CabBooking(WireModel):
    id: str
    user_name: str
    phone: str
    pickup_location: str
    drop_location: str
    datetime: str
    passengers: int = 1
    vehicle_type: str = ""
    provider_id: Optional[str] = None
    service_area_id: Optional[str] = None
    estimated_fare: float
    fare: FareEstimate
    pricing: PricingSnapshot
    status: BookingStatus = "pending"
    created_at: str


class BusBooking(WireModel):
    id: str
    route_id: str
    user_name: str
    phone: str
    from_city: str = ""
    to_city: str = ""
    travel_date: str
    seats: List[str]
    fare_per_seat: float
    total_fare: float
    status: BookingStatus = "pending"
    created_at: str


class BikeBooking(WireModel):
    id: str
    bike_rental_id: str
    source: str = "ev_bike_rentals"
    user_name: str
    phone: str
    start_date_time: str
    days: int
    hours: int
    qty: int
    price_per_day: float
    total_fare: float
    status: BookingStatus = "pending"
    created_at: str
