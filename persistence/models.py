from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON
from .db import Base


def _utcnow():
    return datetime.now(timezone.utc)


class StoreRowModel(Base):
    """
    One document of a named collection (ev_buses, ev_bookings, ...).
    The camelCase row lives in `data`; `version` guards read-modify-write updates.
    """
    __tablename__ = "store_rows"

    collection = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
