"""
Catalog Loader
==============
Builds a Catalog snapshot from one of three sources:

  postgres : psycopg2, tables created by migrate_itinerary_schema.py
  rest     : PostgREST / Supabase REST API (embedded locations + room types)
  file     : JSON document shaped like the REST rows or like a dumped Catalog

All sources end up in catalog_from_rows(), which groups hotels and
sightseeing by location name ("Unknown" when missing) and parses package
routes that arrive as JSON strings.

Load failures are raised once, here, as CatalogLoadError. The pricing core
never sees a partial catalog.
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional
import logging

import psycopg2
import requests as _requests
from pydantic import ValidationError

import config
from catalog import Catalog, Hotel, ItineraryPackage, Sightseeing, Vehicle

logger = logging.getLogger(__name__)

UNKNOWN_CITY = 'Unknown'


class CatalogLoadError(Exception):
    """Catalog could not be fetched or parsed."""
    pass


# =====================================================
# SCHEMA
# =====================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS locations (
    id SERIAL PRIMARY KEY,
    name VARCHAR(120) NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS hotels (
    id SERIAL PRIMARY KEY,
    location_id INTEGER REFERENCES locations(id),
    name VARCHAR(200) NOT NULL,
    type VARCHAR(20) DEFAULT 'CP',
    tier VARCHAR(20) NOT NULL DEFAULT 'Budget'
        CHECK (tier IN ('Budget', 'Premium')),
    image_url TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS room_types (
    id SERIAL PRIMARY KEY,
    hotel_id INTEGER NOT NULL REFERENCES hotels(id) ON DELETE CASCADE,
    name VARCHAR(120) NOT NULL,
    capacity INTEGER NOT NULL CHECK (capacity > 0),
    rate NUMERIC(12, 2) NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sightseeing (
    id SERIAL PRIMARY KEY,
    location_id INTEGER REFERENCES locations(id),
    name VARCHAR(200) NOT NULL,
    description TEXT DEFAULT '',
    image_url TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS vehicles (
    id SERIAL PRIMARY KEY,
    name VARCHAR(120) NOT NULL UNIQUE,
    rate NUMERIC(12, 2) NOT NULL DEFAULT 0,
    capacity INTEGER NOT NULL DEFAULT 4,
    image_url TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS packages (
    id VARCHAR(64) PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    image_url TEXT DEFAULT '',
    days INTEGER NOT NULL,
    route JSONB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_hotels_location ON hotels(location_id);
CREATE INDEX IF NOT EXISTS idx_room_types_hotel ON room_types(hotel_id);
CREATE INDEX IF NOT EXISTS idx_sightseeing_location ON sightseeing(location_id);
"""


# =====================================================
# ROW TRANSFORMATION
# =====================================================

def _location_name(row: Dict[str, Any]) -> str:
    location = row.get('locations')
    if isinstance(location, list):
        location = location[0] if location else None
    if isinstance(location, dict) and location.get('name'):
        return location['name']
    return UNKNOWN_CITY


def _room_type_row(hotel_name: str, rt: Dict[str, Any]) -> Dict[str, Any]:
    # Missing rate costs 0; missing or non-positive capacity is single occupancy
    capacity = rt.get('capacity')
    if capacity is None or int(capacity) <= 0:
        logger.warning(
            f"Room type '{rt.get('name')}' at '{hotel_name}' has capacity {capacity!r}, treating as 1"
        )
        capacity = 1
    return {'name': rt['name'], 'capacity': int(capacity), 'rate': rt.get('rate') or 0}


def catalog_from_rows(
    hotels_raw: Optional[List[Dict]],
    sights_raw: Optional[List[Dict]],
    vehicles_raw: Optional[List[Dict]],
    packages_raw: Optional[List[Dict]]
) -> Catalog:
    """Group raw rows into a Catalog. Raises CatalogLoadError on malformed rows."""
    try:
        hotel_data: Dict[str, List[Hotel]] = {}
        for h in hotels_raw or []:
            city = _location_name(h)
            hotel_data.setdefault(city, []).append(Hotel(
                name=h['name'],
                type=h.get('type') or '',
                tier=h.get('tier') or 'Budget',
                img=h.get('image_url') or '',
                room_types=[_room_type_row(h['name'], rt) for rt in (h.get('room_types') or [])],
            ))

        sightseeing_data: Dict[str, List[Sightseeing]] = {}
        for s in sights_raw or []:
            city = _location_name(s)
            sightseeing_data.setdefault(city, []).append(Sightseeing(
                name=s['name'],
                desc=s.get('description') or '',
                img=s.get('image_url') or '',
            ))

        vehicle_data = [
            Vehicle(
                name=v['name'],
                rate=v.get('rate') or 0,
                capacity=v.get('capacity') or 0,
                img=v.get('image_url') or '',
            )
            for v in vehicles_raw or []
        ]

        packages = [
            ItineraryPackage(
                id=p['id'],
                name=p['name'],
                img=p.get('image_url') or '',
                days=p.get('days'),
                route=p.get('route'),
            )
            for p in packages_raw or []
        ]
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise CatalogLoadError(f"Malformed catalog data: {e}") from e

    catalog = Catalog(
        hotel_data=hotel_data,
        sightseeing_data=sightseeing_data,
        vehicle_data=vehicle_data,
        packages=packages,
    )
    logger.info(
        f"Catalog built: {sum(len(v) for v in hotel_data.values())} hotels in {len(hotel_data)} cities, "
        f"{len(vehicle_data)} vehicles, {len(packages)} packages"
    )
    return catalog


# =====================================================
# POSTGRES SOURCE
# =====================================================

def get_db():
    if config.DATABASE_URL:
        return psycopg2.connect(config.DATABASE_URL)
    return psycopg2.connect(**config.DB_CONFIG)


def rows_to_dicts(cursor, rows):
    cols = [d[0] for d in cursor.description]
    return [dict(zip(cols, r)) for r in rows]


def load_catalog_from_db(db=None) -> Catalog:
    """Read the whole catalog. Opens (and closes) its own connection unless one is given."""
    own_connection = db is None
    try:
        if own_connection:
            db = get_db()
        cur = db.cursor()

        cur.execute(
            """SELECT h.id, h.name, h.type, h.tier, h.image_url, l.name AS location_name
               FROM hotels h LEFT JOIN locations l ON h.location_id = l.id
               ORDER BY h.id"""
        )
        hotels = rows_to_dicts(cur, cur.fetchall())

        cur.execute("SELECT hotel_id, name, capacity, rate FROM room_types ORDER BY id")
        room_types_by_hotel: Dict[int, List[Dict]] = {}
        for rt in rows_to_dicts(cur, cur.fetchall()):
            room_types_by_hotel.setdefault(rt['hotel_id'], []).append(rt)

        cur.execute(
            """SELECT s.name, s.description, s.image_url, l.name AS location_name
               FROM sightseeing s LEFT JOIN locations l ON s.location_id = l.id
               ORDER BY s.id"""
        )
        sights = rows_to_dicts(cur, cur.fetchall())

        cur.execute("SELECT name, rate, capacity, image_url FROM vehicles ORDER BY id")
        vehicles = rows_to_dicts(cur, cur.fetchall())

        cur.execute("SELECT id, name, image_url, days, route FROM packages ORDER BY id")
        packages = rows_to_dicts(cur, cur.fetchall())

    except psycopg2.Error as e:
        logger.error(f"Catalog query failed: {e}", exc_info=True)
        raise CatalogLoadError(f"Database error while loading catalog: {e}") from e
    finally:
        if own_connection and db is not None:
            db.close()

    for h in hotels:
        h['locations'] = {'name': h.pop('location_name')} if h.get('location_name') else None
        h['room_types'] = room_types_by_hotel.get(h['id'], [])
    for s in sights:
        s['locations'] = {'name': s.pop('location_name')} if s.get('location_name') else None

    return catalog_from_rows(hotels, sights, vehicles, packages)


# =====================================================
# REST SOURCE (POSTGREST / SUPABASE)
# =====================================================

REST_SELECTS = {
    'hotels': 'id,name,type,tier,image_url,locations!inner(name),room_types(name,capacity,rate)',
    'sightseeing': 'id,name,description,image_url,locations!inner(name)',
    'vehicles': '*',
    'packages': '*',
}


def _rest_get(table: str, base_url: str, api_key: str, timeout: int, retries: int) -> List[Dict]:
    """
    GET one table. Network errors and 5xx responses are retried up to
    `retries` times with a short linear backoff; 4xx fails immediately.
    """
    url = f'{base_url}/rest/v1/{table}'
    headers = {'apikey': api_key, 'Authorization': f'Bearer {api_key}'}
    params = {'select': REST_SELECTS[table]}

    last_error = None
    for attempt in range(1, max(retries, 1) + 1):
        try:
            resp = _requests.get(url, headers=headers, params=params, timeout=timeout)
        except (_requests.exceptions.Timeout, _requests.exceptions.ConnectionError) as e:
            last_error = e
            logger.warning(f"Catalog fetch network error for {table} (attempt {attempt}/{retries}): {e}")
        else:
            if resp.ok:
                try:
                    return resp.json()
                except ValueError as e:
                    raise CatalogLoadError(f"Catalog API returned a non-JSON body for '{table}': {e}") from e
            last_error = f"HTTP {resp.status_code}"
            if resp.status_code < 500:
                break
            logger.warning(f"Catalog fetch failed for {table} (attempt {attempt}/{retries}): HTTP {resp.status_code}")
        if attempt < retries:
            time.sleep(0.5 * attempt)

    raise CatalogLoadError(f"Could not fetch '{table}' from catalog API: {last_error}")


def fetch_catalog_snapshot(
    base_url: str = None,
    api_key: str = None,
    timeout: int = None,
    retries: int = None
) -> Catalog:
    base_url = (base_url or config.CATALOG_REST_URL).rstrip('/')
    if not base_url:
        raise CatalogLoadError("Catalog REST URL is not configured. Set CATALOG_REST_URL.")
    api_key = api_key if api_key is not None else config.CATALOG_REST_KEY
    timeout = timeout or config.CATALOG_FETCH_TIMEOUT
    retries = retries or config.CATALOG_FETCH_RETRIES

    rows = {
        table: _rest_get(table, base_url, api_key, timeout, retries)
        for table in ('hotels', 'sightseeing', 'vehicles', 'packages')
    }
    return catalog_from_rows(rows['hotels'], rows['sightseeing'], rows['vehicles'], rows['packages'])


# =====================================================
# FILE SOURCE
# =====================================================

def load_catalog_from_file(path: str = None) -> Catalog:
    """
    Accepts either raw rows ({"hotels": [...], "sightseeing": [...], ...})
    or a dumped Catalog ({"hotelData": {...}, "sightseeingData": {...}, ...}).
    """
    path = path or config.CATALOG_FILE
    try:
        with open(path, encoding='utf-8') as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogLoadError(f"Could not read catalog file '{path}': {e}") from e

    if 'hotelData' in data or 'hotel_data' in data:
        try:
            return Catalog.model_validate(data)
        except ValidationError as e:
            raise CatalogLoadError(f"Malformed catalog file '{path}': {e}") from e

    return catalog_from_rows(
        data.get('hotels'), data.get('sightseeing'), data.get('vehicles'), data.get('packages')
    )


LOADERS: Dict[str, Callable[[], Catalog]] = {
    'postgres': load_catalog_from_db,
    'rest': fetch_catalog_snapshot,
    'file': load_catalog_from_file,
}


def load_catalog(source: str = None) -> Catalog:
    source = (source or config.CATALOG_SOURCE).lower().strip()
    loader = LOADERS.get(source)
    if loader is None:
        raise CatalogLoadError(f"Unknown catalog source '{source}', expected one of {', '.join(LOADERS)}")
    logger.info(f"Loading catalog from source '{source}'")
    return loader()


# =====================================================
# SNAPSHOT STORE
# =====================================================

class CatalogStore:
    """
    Holds the current catalog snapshot. refresh()/replace() swap the whole
    snapshot; readers that already hold the old one keep a consistent view.
    """

    def __init__(self, loader: Callable[[], Catalog] = None):
        self._loader = loader or load_catalog
        self._catalog: Optional[Catalog] = None

    def get(self) -> Catalog:
        if self._catalog is None:
            self._catalog = self._loader()
        return self._catalog

    def refresh(self) -> Catalog:
        catalog = self._loader()
        self._catalog = catalog
        return catalog

    def replace(self, catalog: Catalog) -> None:
        self._catalog = catalog

    @property
    def loaded(self) -> bool:
        return self._catalog is not None
