import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from booking_errors import BookingError
from persistence.store import ConcurrencyConflict, RowStore

logger = logging.getLogger(__name__)

Mutation = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass
class Reservation:
    collection: str
    row_id: str
    patch: Dict[str, Any]
    version: int
    undo: Optional[Mutation] = None
    status: str = "held"


class TransactionManager:
    """
    Inventory transaction for a single booking (reserve -> confirm -> compensate).

    reserve() runs a guarded read-modify-write on the inventory row: `apply` gets a
    fresh copy of the row on every attempt, validates it (raising BookingError) and
    returns the fields to write. A concurrent writer makes the guarded update fail,
    in which case the row is re-read and re-validated.
    confirm() persists the booking row; if that fails the reservation is undone.
    """

    def __init__(self, store: RowStore, max_attempts: int = 3):
        self.store = store
        self.max_attempts = max(1, int(max_attempts))

    def reserve(self, collection: str, row_id: str, apply: Mutation, undo: Optional[Mutation] = None,
                not_found: str = "INVALID_INPUT") -> Reservation:
        for attempt in range(1, self.max_attempts + 1):
            row = self.store.get(collection, row_id)
            if row is None:
                raise BookingError(not_found)
            patch = apply(row)
            try:
                updated = self.store.update(collection, row_id, patch, expected_version=row["version"])
            except ConcurrencyConflict:
                logger.warning(f"Conflict reserving {collection}/{row_id} (attempt {attempt}/{self.max_attempts})")
                continue
            return Reservation(collection, row_id, patch, updated["version"], undo)

        logger.warning(f"Giving up on {collection}/{row_id} after {self.max_attempts} attempts")
        raise BookingError("INVENTORY_BUSY")

    def confirm(self, reservation: Reservation, collection: str, booking_row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            saved = self.store.insert(collection, booking_row)
        except Exception:
            # on failure, give the inventory back so we don't leak seats or stock
            self.compensate(reservation)
            raise
        reservation.status = "confirmed"
        return saved

    def compensate(self, reservation: Reservation) -> bool:
        """
        Reverse a reservation. Returns False (and logs) when that is not possible;
        callers still see the error that triggered compensation.
        """
        if reservation.undo is None or reservation.status != "held":
            return False
        logger.warning(f"Compensating reservation on {reservation.collection}/{reservation.row_id}")
        for _ in range(self.max_attempts):
            try:
                row = self.store.get(reservation.collection, reservation.row_id)
                if row is None:
                    break
                self.store.update(reservation.collection, reservation.row_id,
                                  reservation.undo(row), expected_version=row["version"])
                reservation.status = "cancelled"
                return True
            except ConcurrencyConflict:
                continue
            except Exception:
                logger.error(f"Compensation failed for {reservation.collection}/{reservation.row_id}", exc_info=True)
                return False
        logger.error(f"Compensation failed for {reservation.collection}/{reservation.row_id}")
        return False
