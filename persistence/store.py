import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

# collection names are the wire contract with the hosted row store
SETTINGS = "ev_settings"
TOURS = "ev_tours"
HOTELS = "ev_hotels"
RESTAURANTS = "ev_restaurants"
MENU_ITEMS = "ev_menu_items"
BOOKINGS = "ev_bookings"
FOOD_ORDERS = "ev_food_orders"
CAB_PROVIDERS = "ev_cab_providers"
CAB_BOOKINGS = "ev_cab_bookings"
SERVICE_AREAS = "ev_service_areas"
COUPONS = "ev_coupons"
BUSES = "ev_buses"
BUS_BOOKINGS = "ev_bus_bookings"
BIKE_RENTALS = "ev_bike_rentals"
RENTAL_VEHICLES = "ev_rental_vehicles"
BIKE_BOOKINGS = "ev_bike_bookings"
AUDIT_LOG = "ev_audit_log"


class ConcurrencyConflict(Exception):
    """A guarded update found the row at a different version than expected."""

    def __init__(self, collection: str, row_id: str, expected_version: Optional[int] = None):
        super().__init__(f"{collection}/{row_id} changed since version {expected_version}")
        self.collection = collection
        self.row_id = row_id
        self.expected_version = expected_version


@dataclass(frozen=True)
class Filter:
    op: str            # "eq" | "in" | "available"
    field: str
    value: Any = None

    def matches(self, row: Dict[str, Any]) -> bool:
        current = row.get(self.field)
        if self.op == "eq":
            return current == self.value
        if self.op == "in":
            return current in self.value
        if self.op == "available":
            return current is None or current is True
        raise ValueError(f"unknown filter op {self.op!r}")


def eq(field: str, value) -> Filter:
    return Filter("eq", field, value)


def in_(field: str, values: Iterable) -> Filter:
    return Filter("in", field, tuple(values))


def available(field: str = "available") -> Filter:
    # true or missing both count as available
    return Filter("available", field)


def matches_all(row: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    return all(f.matches(row) for f in filters)


class RowStore(ABC):
    """
    Generic row access against named collections.
    Rows are camelCase dicts carrying "id" and an integer "version".
    """

    @abstractmethod
    def select(self, collection: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None,
               descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def insert(self, collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, collection: str, row_id: str, patch: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        """
        Merge `patch` into the row and bump its version.
        With `expected_version` the write only happens if the stored version still
        matches, otherwise ConcurrencyConflict is raised and nothing is written.
        """

    def close(self):
        """Release connections held by the store."""

    def get(self, collection: str, row_id: str) -> Optional[Dict[str, Any]]:
        rows = self.select(collection, [eq("id", row_id)], limit=1)
        return rows[0] if rows else None


def seed_store(store: RowStore, catalog: Dict[str, List[Dict[str, Any]]]) -> int:
    count = 0
    for collection, rows in catalog.items():
        for row in rows:
            store.insert(collection, dict(row))
            count += 1
    logger.info(f"Seeded {count} rows into {len(catalog)} collections")
    return count


def build_store(config) -> RowStore:
    """
    Hosted REST store when Supabase credentials are configured, local SQL otherwise.
    """
    if config.rest_store_enabled:
        from persistence.rest import RestRowStore
        logger.info(f"Using REST row store at {config.supabase_url}")
        return RestRowStore(config.supabase_url, config.supabase_key, timeout=config.remote_timeout)

    from persistence.crud import SqlRowStore
    from persistence.db import make_engine
    logger.info("Using SQL row store")
    return SqlRowStore(make_engine(config.database_url))
