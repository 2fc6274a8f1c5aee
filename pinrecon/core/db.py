"""Database helpers for reading venue records and writing their coordinates."""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import extras, pool, sql

from pinrecon.core.config import get_settings
from pinrecon.core.errors import RecordFetchError, StoreWriteFailed
from pinrecon.models import Coordinates, LocationRecord

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()
_pool_slots: Optional[threading.BoundedSemaphore] = None


def init_pool(minconn: int = 1, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool used by the geocoding workers.

    Without an explicit ``maxconn`` the pool holds one connection per configured
    worker, and never fewer than 8.
    """
    global _connection_pool, _pool_slots
    with _pool_lock:
        if _connection_pool is None:
            settings = get_settings()
            if not settings.database_url:
                raise RuntimeError("DATABASE_URL is required for database connections")
            if maxconn is None:
                maxconn = max(8, settings.max_workers)
            maxconn = max(maxconn, minconn)
            _connection_pool = pool.ThreadedConnectionPool(
                minconn,
                maxconn,
                dsn=settings.database_url,
                connect_timeout=10,
            )
            _pool_slots = threading.BoundedSemaphore(maxconn)
            logger.info("Database connection pool initialised (maxconn=%d)", maxconn)
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection.

    Callers beyond the pool size block until a connection is returned instead
    of failing with ``PoolError``.
    """
    pg_pool = init_pool()
    with _pool_slots:
        conn = pg_pool.getconn()
        try:
            yield conn
        finally:
            pg_pool.putconn(conn)


_SELECT_RECORDS = sql.SQL(
    """
SELECT id, name, location_name, latitude, longitude
FROM {table}
WHERE location_name IS NOT NULL
ORDER BY id
"""
)

_SELECT_RECORDS_BY_ID = sql.SQL(
    """
SELECT id, name, location_name, latitude, longitude
FROM {table}
WHERE location_name IS NOT NULL AND id::text = ANY(%(ids)s::text[])
ORDER BY id
"""
)

# Both columns move in one statement so a pin is never half updated.
_UPDATE_COORDINATES = sql.SQL(
    """
UPDATE {table}
SET latitude = %(latitude)s,
    longitude = %(longitude)s
WHERE id::text = %(id)s
"""
)


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _to_record(row: Dict[str, Any]) -> LocationRecord:
    return LocationRecord(
        id=str(row["id"]),
        display_name=row.get("name") or "",
        address_text=row.get("location_name") or "",
        current_latitude=_optional_float(row.get("latitude")),
        current_longitude=_optional_float(row.get("longitude")),
    )


class VenueStore:
    """Record store over the venue table (``tournaments`` by default)."""

    def __init__(self, table: str = "tournaments") -> None:
        self.table = table

    def _statement(self, template: sql.SQL) -> sql.Composed:
        return template.format(table=sql.Identifier(self.table))

    def fetch_records(self, ids: Optional[Sequence[str]] = None) -> List[LocationRecord]:
        """Read every venue that carries an address, optionally restricted to ``ids``."""
        if ids is not None:
            statement, params = self._statement(_SELECT_RECORDS_BY_ID), {"ids": [str(i) for i in ids]}
        else:
            statement, params = self._statement(_SELECT_RECORDS), {}

        try:
            with get_connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(statement, params)
                    rows = cur.fetchall()
                conn.rollback()
        except (psycopg2.Error, RuntimeError) as exc:
            logger.error("Failed to read records from %s: %s", self.table, exc)
            raise RecordFetchError(f"unable to read records: {exc}") from exc

        records = [_to_record(row) for row in rows]
        logger.info("Loaded %d records from %s", len(records), self.table)
        return records

    def write_coordinates(self, record_id: str, coordinates: Coordinates) -> None:
        """Persist a coordinate pair exactly as given; no rounding happens here."""
        params = {
            "id": str(record_id),
            "latitude": coordinates.latitude,
            "longitude": coordinates.longitude,
        }
        try:
            with get_connection() as conn:
                try:
                    with conn.cursor() as cur:
                        cur.execute(self._statement(_UPDATE_COORDINATES), params)
                        updated = cur.rowcount
                    if updated == 1:
                        conn.commit()
                    else:
                        conn.rollback()
                except psycopg2.Error:
                    conn.rollback()
                    raise
        except (psycopg2.Error, RuntimeError) as exc:
            logger.error("Failed to update coordinates for %s: %s", record_id, exc)
            raise StoreWriteFailed(f"database error: {exc}") from exc

        if updated != 1:
            raise StoreWriteFailed(f"record {record_id} not found")
        logger.debug("Updated coordinates for %s", record_id)
