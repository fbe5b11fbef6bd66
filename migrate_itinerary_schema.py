"""
Migration: Create itinerary catalog tables
Run once: python migrate_itinerary_schema.py [seed.json]

With a seed file (same row shape the file catalog source accepts), locations,
hotels, room types, sightseeing, vehicles and packages are inserted as well.
"""
import json
import sys

import psycopg2

from catalog_loader import SCHEMA_SQL, UNKNOWN_CITY, get_db


def _location_id(cur, row, cache):
    location = row.get('locations')
    if isinstance(location, list):
        location = location[0] if location else None
    name = location.get('name') if isinstance(location, dict) else None
    name = name or UNKNOWN_CITY
    if name not in cache:
        cur.execute(
            "INSERT INTO locations (name) VALUES (%s) ON CONFLICT (name) DO UPDATE SET name=EXCLUDED.name RETURNING id",
            (name,)
        )
        cache[name] = cur.fetchone()[0]
    return cache[name]


def seed(cur, data):
    locations = {}

    for h in data.get('hotels', []):
        cur.execute(
            """INSERT INTO hotels (location_id, name, type, tier, image_url)
               VALUES (%s,%s,%s,%s,%s) RETURNING id""",
            (_location_id(cur, h, locations), h['name'], h.get('type', 'CP'),
             h.get('tier', 'Budget'), h.get('image_url', ''))
        )
        hid = cur.fetchone()[0]
        for rt in h.get('room_types', []):
            cur.execute(
                "INSERT INTO room_types (hotel_id, name, capacity, rate) VALUES (%s,%s,%s,%s)",
                (hid, rt['name'], rt['capacity'], rt['rate'])
            )

    for s in data.get('sightseeing', []):
        cur.execute(
            "INSERT INTO sightseeing (location_id, name, description, image_url) VALUES (%s,%s,%s,%s)",
            (_location_id(cur, s, locations), s['name'], s.get('description', ''), s.get('image_url', ''))
        )

    for v in data.get('vehicles', []):
        cur.execute(
            """INSERT INTO vehicles (name, rate, capacity, image_url) VALUES (%s,%s,%s,%s)
               ON CONFLICT (name) DO UPDATE SET rate=EXCLUDED.rate, capacity=EXCLUDED.capacity""",
            (v['name'], v['rate'], v.get('capacity', 4), v.get('image_url', ''))
        )

    for p in data.get('packages', []):
        route = p['route'] if isinstance(p['route'], list) else json.loads(p['route'])
        cur.execute(
            """INSERT INTO packages (id, name, image_url, days, route) VALUES (%s,%s,%s,%s,%s)
               ON CONFLICT (id) DO UPDATE SET name=EXCLUDED.name, days=EXCLUDED.days, route=EXCLUDED.route""",
            (str(p['id']), p['name'], p.get('image_url', ''), p.get('days', len(route)), json.dumps(route))
        )


if __name__ == '__main__':
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(SCHEMA_SQL)
        if len(sys.argv) > 1:
            with open(sys.argv[1], encoding='utf-8') as fh:
                seed(cur, json.load(fh))
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        print(f"❌ Migration failed: {e}")
        sys.exit(1)
    finally:
        conn.close()
    print("✅ itinerary catalog tables ready.")
