"""
Itinerary Configurator: Runtime Configuration
==============================================
All settings come from environment variables (a local .env file is loaded
first when present). Nothing in here talks to the network or the database.
"""

import os

from dotenv import load_dotenv

load_dotenv()


# =====================================================
# DATABASE
# =====================================================

DB_CONFIG = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', 5432)),
    'database': os.environ.get('DB_NAME', 'itinerary_catalog'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASS', ''),
}

# Takes precedence over DB_CONFIG when set
DATABASE_URL = os.environ.get('DATABASE_URL', '')


# =====================================================
# CATALOG SOURCE
# =====================================================
#   postgres : psycopg2 against DB_CONFIG / DATABASE_URL
#   rest     : PostgREST (Supabase) endpoint at CATALOG_REST_URL
#   file     : JSON snapshot at CATALOG_FILE
# =====================================================

CATALOG_SOURCE = os.environ.get('CATALOG_SOURCE', 'file').lower().strip()
CATALOG_FILE = os.environ.get('CATALOG_FILE', 'catalog.json')
CATALOG_REST_URL = os.environ.get('CATALOG_REST_URL', '').rstrip('/')
CATALOG_REST_KEY = os.environ.get('CATALOG_REST_KEY', '')
CATALOG_FETCH_RETRIES = int(os.environ.get('CATALOG_FETCH_RETRIES', 3))
CATALOG_FETCH_TIMEOUT = int(os.environ.get('CATALOG_FETCH_TIMEOUT', 15))


# =====================================================
# SESSION DEFAULTS
# =====================================================

DEFAULT_DESTINATION = os.environ.get('DEFAULT_DESTINATION', 'kutch')
DEFAULT_PAX = int(os.environ.get('DEFAULT_PAX', 2))
DEFAULT_TIER = os.environ.get('DEFAULT_TIER', 'Budget')
DEFAULT_GUEST_NAME = 'Guest'

# Idle sessions are dropped after this many seconds; the registry never holds more than SESSION_MAX
SESSION_IDLE_TIMEOUT = int(os.environ.get('SESSION_IDLE_TIMEOUT', 4 * 60 * 60))
SESSION_MAX = int(os.environ.get('SESSION_MAX', 500))

CUSTOM_PACKAGE_ID = 'custom'
CUSTOM_PACKAGE_NAME = 'Your Custom Journey'
FALLBACK_IMG = os.environ.get(
    'FALLBACK_IMG',
    'https://images.unsplash.com/photo-1524492412937-b28074a5d7da?auto=format&fit=crop&w=800&q=80'
)


# =====================================================
# FLEET POLICY
# =====================================================
# Vehicle names must match Vehicle.name in the catalog, otherwise the
# auto fleet is priced at zero.

SEDAN_VEHICLE = os.environ.get('SEDAN_VEHICLE', 'Sedan (Dzire)')
MIDSIZE_VEHICLE = os.environ.get('MIDSIZE_VEHICLE', 'Innova')
VAN_VEHICLE = os.environ.get('VAN_VEHICLE', 'Tempo Traveller')
SEDAN_MAX_PAX = 4
MIDSIZE_MAX_PAX = 6
VAN_CAPACITY = 12

# Flat per-day transport rates used only by the gallery estimate
GALLERY_TRANSPORT_DAY_RATES = {
    'sedan': int(os.environ.get('GALLERY_SEDAN_DAY_RATE', 2500)),
    'midsize': int(os.environ.get('GALLERY_MIDSIZE_DAY_RATE', 3500)),
    'van': int(os.environ.get('GALLERY_VAN_DAY_RATE', 5500)),
}


# =====================================================
# APP
# =====================================================

SECRET_KEY = os.environ.get('SECRET_KEY', 'your-secret-key-change-in-production')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
PORT = int(os.environ.get('PORT', 5001))
