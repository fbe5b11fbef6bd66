"""
Itinerary Configurator: Flask Backend
======================================
HTTP surface over the itinerary pricing core:

- Catalog snapshot read + refresh (postgres / rest / file source)
- Gallery estimates per package (approximate, pre-editing)
- Itinerary sessions: pax, tier, fleet (auto until first manual edit),
  package selection, per-day hotel / sightseeing overrides, markup
- Custom builder: stage, append/insert, duplicate, remove, running estimate, finalize
- Quote: day-by-day timeline, JSON payload, shareable text, PDF download

No pricing arithmetic happens in this file. Everything is delegated to
pricing_engine.py through itinerary_session.py.
"""

from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from functools import wraps
from datetime import date
import io
import time
import logging

from pydantic import ValidationError

import config
from catalog import Catalog, TIERS
from catalog_loader import CatalogStore, CatalogLoadError
from itinerary_session import ItinerarySession
from pricing_engine import (
    ItineraryPricingEngine,
    FleetResolver,
    RoomCalculator,
    PricingEngineError,
    ComponentNotFoundError,
    InvalidConfigurationError,
)
import quote_renderer

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
CORS(app)

catalog_store = CatalogStore()

# Live itinerary sessions, in-memory; idle ones are swept on session creation.
_sessions = {}


# =====================================================
# HELPERS
# =====================================================

def api_errors(f):
    """Map pricing/catalog exceptions to JSON error responses."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ComponentNotFoundError as e:
            logger.warning(f"Not found in {f.__name__}: {e}")
            return jsonify({'success': False, 'error': str(e)}), 404
        except (InvalidConfigurationError, ValidationError, ValueError) as e:
            logger.warning(f"Invalid request in {f.__name__}: {e}")
            return jsonify({'success': False, 'error': f'Invalid configuration: {str(e)}'}), 400
        except PricingEngineError as e:
            logger.error(f"Pricing engine error in {f.__name__}: {e}", exc_info=True)
            return jsonify({'success': False, 'error': str(e)}), 400
        except CatalogLoadError as e:
            logger.error(f"Catalog load error in {f.__name__}: {e}", exc_info=True)
            return jsonify({'success': False, 'error': f'Catalog unavailable: {str(e)}'}), 503
        except Exception as e:
            logger.error(f"Unexpected error in {f.__name__}: {e}", exc_info=True)
            return jsonify({'success': False, 'error': f'Server error: {str(e)}'}), 500
    return decorated_function


def get_payload() -> dict:
    return request.get_json(silent=True) or {}


def get_session(sid: str) -> ItinerarySession:
    session = _sessions.get(sid)
    if session is None:
        raise ComponentNotFoundError(f"Session '{sid}' not found")
    session.touch()
    return session


def sweep_sessions(now: float = None) -> int:
    """Drop idle sessions, then the least recently used ones above SESSION_MAX."""
    now = time.monotonic() if now is None else now
    expired = [
        sid for sid, session in _sessions.items()
        if now - session.last_active > config.SESSION_IDLE_TIMEOUT
    ]
    overflow = len(_sessions) - len(expired) - config.SESSION_MAX
    if overflow > 0:
        live = sorted(
            (s for sid, s in _sessions.items() if sid not in expired),
            key=lambda s: s.last_active
        )
        expired.extend(s.id for s in live[:overflow])

    for sid in expired:
        _sessions.pop(sid, None)
    if expired:
        logger.info(f"Dropped {len(expired)} idle itinerary session(s), {len(_sessions)} live")
    return len(expired)


def parse_date(value):
    if not value:
        return None
    return date.fromisoformat(str(value))


def session_to_dict(session: ItinerarySession) -> dict:
    package = session.active_package
    pricing = session.pricing()
    return {
        'id': session.id,
        'guestName': session.guest_name,
        'startDate': session.start_date.isoformat(),
        'pax': session.pax,
        'tier': session.tier,
        'fleet': [item.model_dump(mode='json', by_alias=True) for item in session.fleet],
        'isManualFleet': session.is_manual_fleet,
        'selectedPackageId': session.selected_package_id,
        'package': package.model_dump(mode='json', by_alias=True) if package else None,
        'hotelOverrides': {
            str(day): override.model_dump(mode='json', by_alias=True)
            for day, override in session.hotel_overrides.items()
        },
        'sightseeingOverrides': {str(day): names for day, names in session.sightseeing_overrides.items()},
        'markupType': session.markup_type,
        'markupValue': float(session.markup_value),
        'pricing': pricing.to_dict() if pricing else None,
        'builderOpen': session.builder is not None,
    }


def builder_to_dict(session: ItinerarySession) -> dict:
    builder = session.builder
    if builder is None:
        raise InvalidConfigurationError("Custom builder is not open")
    return {
        'days': [day.model_dump(mode='json', by_alias=True) for day in builder.days],
        'staged': {
            'city': builder.staged_city,
            'hotel': builder.staged_hotel.model_dump(mode='json', by_alias=True) if builder.staged_hotel else None,
            'roomType': (
                builder.staged_room_type.model_dump(mode='json', by_alias=True)
                if builder.staged_room_type else None
            ),
            'sightseeing': builder.staged_sightseeing,
        },
        'estimate': builder.estimate(session.fleet, session.pax).to_dict(),
    }


def lookup_stay(catalog: Catalog, city: str, hotel_name: str, room_type_name: str = None):
    hotel = catalog.find_hotel(city, hotel_name)
    if hotel is None:
        raise ComponentNotFoundError(f"Hotel '{hotel_name}' not found in '{city}'")
    if not room_type_name:
        return hotel, None
    for room_type in hotel.room_types:
        if room_type.name == room_type_name:
            return hotel, room_type
    raise ComponentNotFoundError(f"Room type '{room_type_name}' not found at '{hotel_name}'")


# =====================================================
# CATALOG
# =====================================================

@app.route('/api/catalog', methods=['GET'])
@api_errors
def get_catalog():
    return jsonify(catalog_store.get().model_dump(mode='json', by_alias=True))


@app.route('/api/catalog/refresh', methods=['POST'])
@api_errors
def refresh_catalog():
    catalog = catalog_store.refresh()
    for session in _sessions.values():
        session.replace_catalog(catalog)
    logger.info(f"Catalog refreshed, {len(_sessions)} live session(s) switched to the new snapshot")
    return jsonify({
        'success': True,
        'cities': catalog.cities,
        'packages': len(catalog.packages),
        'vehicles': len(catalog.vehicle_data),
    })


@app.route('/api/gallery', methods=['GET'])
@api_errors
def gallery():
    pax = int(request.args.get('pax', config.DEFAULT_PAX))
    sharing = int(request.args.get('sharing', 2))
    if sharing not in (2, 4):
        raise InvalidConfigurationError("sharing must be 2 (Double) or 4 (Quad)")
    session = ItinerarySession(catalog_store.get(), pax=pax)
    return jsonify(session.gallery(sharing))


# =====================================================
# STANDALONE CALCULATORS
# =====================================================

@app.route('/api/room-calculator', methods=['POST'])
@api_errors
def room_calc():
    """Standalone room calculation endpoint."""
    data = get_payload()
    result = RoomCalculator.calculate_room_allocation(
        pax=int(data.get('pax', config.DEFAULT_PAX)),
        capacity=int(data.get('capacity', 2)),
    )
    return jsonify(result)


@app.route('/api/fleet/auto', methods=['POST'])
@api_errors
def auto_fleet():
    data = get_payload()
    fleet = FleetResolver.auto_fleet(int(data.get('pax', config.DEFAULT_PAX)))
    return jsonify([item.model_dump(mode='json', by_alias=True) for item in fleet])


@app.route('/api/markup', methods=['POST'])
@api_errors
def markup():
    data = get_payload()
    result = ItineraryPricingEngine.apply_markup(
        data.get('netTotal', 0),
        int(data.get('pax', 0)),
        data.get('markupType', 'percent'),
        data.get('markupValue', 0),
    )
    return jsonify(result.to_dict())


# =====================================================
# SESSIONS
# =====================================================

@app.route('/api/sessions', methods=['POST'])
@api_errors
def create_session():
    data = get_payload()
    session = ItinerarySession(
        catalog_store.get(),
        pax=int(data.get('pax', config.DEFAULT_PAX)),
        tier=data.get('tier', config.DEFAULT_TIER),
        guest_name=data.get('guestName', config.DEFAULT_GUEST_NAME),
        start_date=parse_date(data.get('startDate')),
    )
    _sessions[session.id] = session
    sweep_sessions()
    logger.info(f"Started itinerary session {session.id} (pax={session.pax})")
    return jsonify(session_to_dict(session)), 201


@app.route('/api/sessions/<sid>', methods=['GET'])
@api_errors
def read_session(sid):
    return jsonify(session_to_dict(get_session(sid)))


@app.route('/api/sessions/<sid>', methods=['PATCH'])
@api_errors
def update_session(sid):
    session = get_session(sid)
    data = get_payload()
    if 'pax' in data:
        session.pax = int(data['pax'])
    if 'tier' in data:
        session.set_tier(data['tier'])
    if 'guestName' in data:
        session.guest_name = data['guestName'] or config.DEFAULT_GUEST_NAME
    if 'startDate' in data:
        session.start_date = parse_date(data['startDate']) or date.today()
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>', methods=['DELETE'])
@api_errors
def delete_session(sid):
    get_session(sid)
    _sessions.pop(sid, None)
    return jsonify({'message': 'Deleted'})


@app.route('/api/sessions/<sid>/gallery', methods=['GET'])
@api_errors
def session_gallery(sid):
    sharing = int(request.args.get('sharing', 2))
    if sharing not in (2, 4):
        raise InvalidConfigurationError("sharing must be 2 (Double) or 4 (Quad)")
    return jsonify(get_session(sid).gallery(sharing))


# =====================================================
# FLEET
# =====================================================

@app.route('/api/sessions/<sid>/fleet', methods=['POST'])
@api_errors
def add_vehicle(sid):
    session = get_session(sid)
    data = get_payload()
    item = session.add_vehicle(
        name=data.get('name', config.SEDAN_VEHICLE),
        count=int(data.get('count', 1)),
    )
    return jsonify({'item': item.model_dump(mode='json', by_alias=True), 'session': session_to_dict(session)}), 201


@app.route('/api/sessions/<sid>/fleet/<item_id>', methods=['PATCH'])
@api_errors
def update_vehicle(sid, item_id):
    session = get_session(sid)
    session.update_vehicle(item_id, get_payload())
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/fleet/<item_id>', methods=['DELETE'])
@api_errors
def remove_vehicle(sid, item_id):
    session = get_session(sid)
    session.remove_vehicle(item_id)
    return jsonify(session_to_dict(session))


# =====================================================
# PACKAGE / OVERRIDES / MARKUP
# =====================================================

@app.route('/api/sessions/<sid>/package', methods=['POST'])
@api_errors
def select_package(sid):
    session = get_session(sid)
    data = get_payload()
    if 'packageId' not in data:
        raise InvalidConfigurationError("Missing required field: packageId")
    tier = data.get('tier', session.tier)
    if tier not in TIERS:
        raise InvalidConfigurationError(f"Unknown tier '{tier}'")
    session.select_package(data['packageId'], tier)
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/days/<int:day>/hotels', methods=['GET'])
@api_errors
def hotel_options(sid, day):
    hotels = get_session(sid).hotel_options(day)
    return jsonify([hotel.model_dump(mode='json', by_alias=True) for hotel in hotels])


@app.route('/api/sessions/<sid>/days/<int:day>/hotel', methods=['PUT'])
@api_errors
def set_hotel(sid, day):
    session = get_session(sid)
    data = get_payload()
    package = session.active_package
    if package is None:
        raise InvalidConfigurationError("No package selected")
    if day < 0 or day >= len(package.route):
        raise InvalidConfigurationError(f"Day index {day} out of range")
    hotel, room_type = lookup_stay(
        session.catalog, package.route[day], data.get('hotelName', ''), data.get('roomTypeName')
    )
    if room_type is None:
        if not hotel.room_types:
            raise InvalidConfigurationError(f"Hotel '{hotel.name}' has no room types to book")
        room_type = hotel.room_types[0]
    session.set_hotel_override(day, hotel, room_type)
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/days/<int:day>/hotel', methods=['DELETE'])
@api_errors
def clear_hotel(sid, day):
    session = get_session(sid)
    session.clear_hotel_override(day)
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/days/<int:day>/sightseeing', methods=['PUT'])
@api_errors
def set_sightseeing(sid, day):
    session = get_session(sid)
    names = get_payload().get('names', [])
    if not isinstance(names, list):
        raise InvalidConfigurationError("names must be a list of spot names")
    session.set_sightseeing_override(day, [str(n) for n in names])
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/days/<int:day>/sightseeing', methods=['DELETE'])
@api_errors
def clear_sightseeing(sid, day):
    session = get_session(sid)
    session.clear_sightseeing_override(day)
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/markup', methods=['PUT'])
@api_errors
def set_markup(sid):
    session = get_session(sid)
    data = get_payload()
    session.set_markup(data.get('markupType', session.markup_type), data.get('markupValue', 0))
    return jsonify(session_to_dict(session))


@app.route('/api/sessions/<sid>/pricing', methods=['GET'])
@api_errors
def session_pricing(sid):
    pricing = get_session(sid).pricing()
    if pricing is None:
        raise InvalidConfigurationError("No package selected")
    return jsonify(pricing.to_dict())


# =====================================================
# CUSTOM BUILDER
# =====================================================

@app.route('/api/sessions/<sid>/builder', methods=['POST'])
@api_errors
def start_builder(sid):
    session = get_session(sid)
    session.start_custom_builder()
    return jsonify(builder_to_dict(session)), 201


@app.route('/api/sessions/<sid>/builder', methods=['GET'])
@api_errors
def read_builder(sid):
    return jsonify(builder_to_dict(get_session(sid)))


@app.route('/api/sessions/<sid>/builder', methods=['DELETE'])
@api_errors
def abandon_builder(sid):
    get_session(sid).abandon_custom_builder()
    return jsonify({'message': 'Builder closed'})


@app.route('/api/sessions/<sid>/builder/stage', methods=['PUT'])
@api_errors
def stage_builder(sid):
    session = get_session(sid)
    builder = session.builder
    if builder is None:
        raise InvalidConfigurationError("Custom builder is not open")
    data = get_payload()

    if 'city' in data:
        builder.stage_city(data['city'])
    if 'hotelName' in data:
        if data['hotelName']:
            if not builder.staged_city:
                raise InvalidConfigurationError("Select a city before choosing a hotel")
            hotel, room_type = lookup_stay(
                session.catalog, builder.staged_city, data['hotelName'], data.get('roomTypeName')
            )
            builder.stage_hotel(hotel, room_type)
        else:
            builder.stage_hotel(None)
    elif data.get('roomTypeName'):
        if builder.staged_hotel is None:
            raise InvalidConfigurationError("Select a hotel before choosing a room type")
        _, room_type = lookup_stay(
            session.catalog, builder.staged_city, builder.staged_hotel.name, data['roomTypeName']
        )
        builder.stage_room_type(room_type)
    if 'sightseeing' in data:
        builder.stage_sightseeing([str(n) for n in data['sightseeing'] or []])

    return jsonify(builder_to_dict(session))


@app.route('/api/sessions/<sid>/builder/days', methods=['POST'])
@api_errors
def append_day(sid):
    session = get_session(sid)
    if session.builder is None:
        raise InvalidConfigurationError("Custom builder is not open")
    index = get_payload().get('index')
    if index is None:
        session.builder.append()
    else:
        session.builder.insert(int(index))
    return jsonify(builder_to_dict(session)), 201


@app.route('/api/sessions/<sid>/builder/days/<int:index>/duplicate', methods=['POST'])
@api_errors
def duplicate_day(sid, index):
    session = get_session(sid)
    if session.builder is None:
        raise InvalidConfigurationError("Custom builder is not open")
    session.builder.duplicate(index)
    return jsonify(builder_to_dict(session)), 201


@app.route('/api/sessions/<sid>/builder/days/<int:index>', methods=['DELETE'])
@api_errors
def remove_day(sid, index):
    session = get_session(sid)
    if session.builder is None:
        raise InvalidConfigurationError("Custom builder is not open")
    session.builder.remove(index)
    return jsonify(builder_to_dict(session))


@app.route('/api/sessions/<sid>/builder/finalize', methods=['POST'])
@api_errors
def finalize_builder(sid):
    session = get_session(sid)
    session.finalize_custom()
    return jsonify(session_to_dict(session))


# =====================================================
# QUOTE
# =====================================================

@app.route('/api/sessions/<sid>/timeline', methods=['GET'])
@api_errors
def session_timeline(sid):
    return jsonify(quote_renderer.timeline(get_session(sid)))


@app.route('/api/sessions/<sid>/quote', methods=['GET'])
@api_errors
def session_quote(sid):
    return jsonify(quote_renderer.build_quote(get_session(sid)))


@app.route('/api/sessions/<sid>/quote/text', methods=['GET'])
@api_errors
def session_quote_text(sid):
    quote = quote_renderer.build_quote(get_session(sid))
    return jsonify({'text': quote_renderer.render_text(quote)})


@app.route('/api/sessions/<sid>/quote/pdf', methods=['GET'])
@api_errors
def session_quote_pdf(sid):
    session = get_session(sid)
    quote = quote_renderer.build_quote(session)
    pdf_bytes = quote_renderer.render_pdf(quote)
    filename = quote_renderer.pdf_filename(session.guest_name, config.DEFAULT_DESTINATION, session.pax)
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=filename,
    )


# =====================================================
# ENTRY POINT
# =====================================================

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=config.PORT)
