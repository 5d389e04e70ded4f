"""Database helpers for the ingestion worker."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import extras, pool

from localspot_ingest.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_CREATE_BUSINESSES = """
CREATE TABLE IF NOT EXISTS businesses (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    description TEXT NOT NULL,
    category VARCHAR(255) NOT NULL,
    address VARCHAR(255) NOT NULL,
    phone VARCHAR(20),
    website VARCHAR(255),
    latitude DOUBLE PRECISION NOT NULL,
    longitude DOUBLE PRECISION NOT NULL,
    image_url VARCHAR(255),
    created_by INTEGER NOT NULL
);
"""

_FIND_BY_NAME_AND_ADDRESS = """
SELECT id, name, description, category, address, phone, website,
       latitude, longitude, image_url, created_by
FROM businesses
WHERE name = %(name)s AND address = %(address)s
LIMIT 1;
"""

_INSERT_BUSINESS = """
INSERT INTO businesses (
    name,
    description,
    category,
    address,
    phone,
    website,
    latitude,
    longitude,
    image_url,
    created_by
) VALUES (
    %(name)s,
    %(description)s,
    %(category)s,
    %(address)s,
    %(phone)s,
    %(website)s,
    %(latitude)s,
    %(longitude)s,
    %(image_url)s,
    %(created_by)s
)
RETURNING id, name, description, category, address, phone, website,
          latitude, longitude, image_url, created_by;
"""


def _prepare_params(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "description": row.get("description"),
        "category": row.get("category"),
        "address": row.get("address"),
        "phone": row.get("phone"),
        "website": row.get("website"),
        "latitude": row.get("latitude"),
        "longitude": row.get("longitude"),
        "image_url": row.get("image_url"),
        "created_by": row.get("created_by"),
    }


def ensure_schema() -> None:
    """Create the businesses table when it does not exist yet."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(_CREATE_BUSINESSES)
        conn.commit()
    logger.info("Ensured businesses table exists")


def find_business_by_name_and_address(name: str, address: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(_FIND_BY_NAME_AND_ADDRESS, {"name": name, "address": address})
            found = cur.fetchone()
    return dict(found) if found else None


def insert_business(row: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a single business and return the stored row including its id."""
    params = _prepare_params(row)
    if not params["name"] or not params["address"]:
        raise ValueError("name and address are required for insert")

    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_INSERT_BUSINESS, params)
                stored = cur.fetchone()
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
    logger.debug("Inserted business %s", params["name"])
    return dict(stored)
