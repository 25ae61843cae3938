import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import update

from booking_errors import StoreError, describe_http_error
from .db import make_engine, make_session_factory, init_db
from .models import StoreRowModel
from .store import ConcurrencyConflict, Filter, RowStore, matches_all

logger = logging.getLogger(__name__)

_RESERVED = ("id", "version")


def _to_row(model: StoreRowModel) -> Dict[str, Any]:
    row = dict(model.data or {})
    row["id"] = model.id
    row["version"] = model.version
    return row


def _sort_key(value):
    return (value is None, value if value is not None else "")


class SqlRowStore(RowStore):
    """
    Row store over a single SQLAlchemy table.
    Filtering happens in Python; guarded updates are a conditional UPDATE on version.
    """

    def __init__(self, engine=None):
        self.engine = engine or make_engine()
        init_db(self.engine)
        self.SessionLocal = make_session_factory(self.engine)

    def select(self, collection: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None,
               descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self.SessionLocal() as db:
            models = (
                db.query(StoreRowModel)
                .filter(StoreRowModel.collection == collection)
                .order_by(StoreRowModel.created_at, StoreRowModel.id)
                .all()
            )
            rows = [_to_row(m) for m in models]

        rows = [r for r in rows if matches_all(r, filters)]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def get(self, collection: str, row_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as db:
            model = db.get(StoreRowModel, (collection, str(row_id)))
            return _to_row(model) if model else None

    def insert(self, collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row_id = str(row.get("id") or "")
        if not row_id:
            raise StoreError(describe_http_error(400, json.dumps({"message": "Row id is required"})), 400)

        data = {k: v for k, v in row.items() if k not in _RESERVED}
        with self.SessionLocal() as db:
            if db.get(StoreRowModel, (collection, row_id)) is not None:
                raise StoreError(describe_http_error(409, json.dumps({"message": "Row already exists"})), 409)
            model = StoreRowModel(collection=collection, id=row_id, data=data, version=1)
            db.add(model)
            db.commit()
            return _to_row(model)

    def update(self, collection: str, row_id: str, patch: Dict[str, Any],
               expected_version: Optional[int] = None) -> Dict[str, Any]:
        row_id = str(row_id)
        with self.SessionLocal() as db:
            current = db.get(StoreRowModel, (collection, row_id))
            if current is None:
                if expected_version is not None:
                    raise ConcurrencyConflict(collection, row_id, expected_version)
                raise StoreError(describe_http_error(404), 404)

            base_version = current.version if expected_version is None else expected_version
            if current.version != base_version:
                raise ConcurrencyConflict(collection, row_id, expected_version)

            data = dict(current.data or {})
            data.update({k: v for k, v in patch.items() if k not in _RESERVED})
            result = db.execute(
                update(StoreRowModel)
                .where(StoreRowModel.collection == collection)
                .where(StoreRowModel.id == row_id)
                .where(StoreRowModel.version == base_version)
                .values(data=data, version=base_version + 1)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConcurrencyConflict(collection, row_id, base_version)
            db.commit()

        row = dict(data)
        row["id"] = row_id
        row["version"] = base_version + 1
        return row
