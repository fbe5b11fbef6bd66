import pytest

import app as app_module
from catalog_loader import CatalogLoadError
from tests.conftest import make_catalog


@pytest.fixture
def client():
    app_module.catalog_store.replace(make_catalog())
    app_module._sessions.clear()
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as client:
        yield client
    app_module._sessions.clear()


@pytest.fixture
def sid(client):
    resp = client.post('/api/sessions', json={'pax': 2, 'guestName': 'Mr. Shah', 'startDate': '2026-12-20'})
    assert resp.status_code == 201
    return resp.get_json()['id']


def open_package(client, sid, package_id='kutch-3n4d', tier='Budget'):
    resp = client.post(f'/api/sessions/{sid}/package', json={'packageId': package_id, 'tier': tier})
    assert resp.status_code == 200
    return resp.get_json()


class TestCatalogRoutes:

    def test_catalog_snapshot(self, client):
        data = client.get('/api/catalog').get_json()
        assert set(data) == {'hotelData', 'sightseeingData', 'vehicleData', 'packages'}
        assert data['hotelData']['Bhuj'][0]['roomTypes'][0]['rate'] == 2800.0

    def test_refresh_switches_live_sessions(self, client, sid, monkeypatch):
        monkeypatch.setattr(app_module.catalog_store, '_loader', lambda: make_catalog(packages=[]))

        resp = client.post('/api/catalog/refresh')

        assert resp.status_code == 200
        assert resp.get_json()['packages'] == 0
        assert app_module._sessions[sid].catalog.packages == []

    def test_refresh_failure_is_503(self, client, monkeypatch):
        def broken():
            raise CatalogLoadError('catalog API down')

        monkeypatch.setattr(app_module.catalog_store, '_loader', broken)
        resp = client.post('/api/catalog/refresh')
        assert resp.status_code == 503
        assert resp.get_json()['success'] is False

    def test_gallery(self, client):
        cards = client.get('/api/gallery?pax=4&sharing=4').get_json()
        budget = cards[0]['estimates']['Budget']
        assert budget['lodgingCost'] == 21200.0
        assert budget['perPerson'] == 7800.0

    def test_gallery_rejects_odd_sharing(self, client):
        assert client.get('/api/gallery?sharing=3').status_code == 400


class TestCalculators:

    def test_room_calculator(self, client):
        data = client.post('/api/room-calculator', json={'pax': 5, 'capacity': 2}).get_json()
        assert data['rooms'] == 3

    def test_auto_fleet(self, client):
        fleet = client.post('/api/fleet/auto', json={'pax': 13}).get_json()
        assert [(f['name'], f['count']) for f in fleet] == [('Tempo Traveller', 2)]

    def test_markup(self, client):
        data = client.post('/api/markup', json={
            'netTotal': 10000, 'pax': 2, 'markupType': 'fixed', 'markupValue': 500,
        }).get_json()
        assert data['finalTotal'] == 10500.0
        assert data['perPerson'] == 5250.0

    def test_markup_unknown_type(self, client):
        resp = client.post('/api/markup', json={'netTotal': 10000, 'pax': 2, 'markupType': 'discount'})
        assert resp.status_code == 400


class TestSessionFlow:

    def test_unknown_session(self, client):
        assert client.get('/api/sessions/nope').status_code == 404

    def test_new_session_has_auto_fleet_and_no_price(self, client, sid):
        data = client.get(f'/api/sessions/{sid}').get_json()
        assert data['pricing'] is None
        assert data['isManualFleet'] is False
        assert data['fleet'][0]['name'] == 'Sedan (Dzire)'

    def test_price_package_with_markup(self, client, sid):
        data = open_package(client, sid)
        assert data['pricing']['netTotal'] == 26000.0

        data = client.put(f'/api/sessions/{sid}/markup', json={'markupType': 'percent', 'markupValue': 10}).get_json()
        assert data['pricing']['finalTotal'] == 28600.0
        assert data['pricing']['perPerson'] == 14300.0

    def test_pax_change_recomputes_fleet_until_manual_edit(self, client, sid):
        data = client.patch(f'/api/sessions/{sid}', json={'pax': 5}).get_json()
        assert [f['name'] for f in data['fleet']] == ['Innova']

        resp = client.post(f'/api/sessions/{sid}/fleet', json={'name': 'Sedan (Dzire)', 'count': 1})
        assert resp.status_code == 201
        assert resp.get_json()['session']['isManualFleet'] is True

        data = client.patch(f'/api/sessions/{sid}', json={'pax': 13}).get_json()
        assert [f['name'] for f in data['fleet']] == ['Innova', 'Sedan (Dzire)']

    def test_fleet_item_edits(self, client, sid):
        item_id = client.get(f'/api/sessions/{sid}').get_json()['fleet'][0]['id']

        resp = client.patch(f'/api/sessions/{sid}/fleet/{item_id}', json={'field': 'count', 'value': 0})
        assert resp.status_code == 400

        data = client.patch(f'/api/sessions/{sid}/fleet/{item_id}', json={'field': 'count', 'value': 2}).get_json()
        assert data['fleet'][0]['count'] == 2

        data = client.delete(f'/api/sessions/{sid}/fleet/{item_id}').get_json()
        assert data['fleet'] == []
        assert client.delete(f'/api/sessions/{sid}/fleet/{item_id}').status_code == 404

    def test_hotel_swap(self, client, sid):
        open_package(client, sid)
        hotels = client.get(f'/api/sessions/{sid}/days/0/hotels').get_json()
        assert [h['name'] for h in hotels] == ['Hotel Ilark', 'Regenta Resort Bhuj']

        data = client.put(f'/api/sessions/{sid}/days/0/hotel', json={
            'hotelName': 'Regenta Resort Bhuj', 'roomTypeName': 'Suite',
        }).get_json()
        assert data['hotelOverrides']['0']['roomType']['name'] == 'Suite'
        assert data['pricing']['netTotal'] == 33000.0

        data = client.delete(f'/api/sessions/{sid}/days/0/hotel').get_json()
        assert data['hotelOverrides'] == {}
        assert data['pricing']['netTotal'] == 26000.0

    def test_hotel_swap_defaults_to_first_room_type(self, client, sid):
        open_package(client, sid)
        data = client.put(f'/api/sessions/{sid}/days/0/hotel', json={'hotelName': 'Regenta Resort Bhuj'}).get_json()
        assert data['hotelOverrides']['0']['roomType']['name'] == 'Premium Room'

    def test_hotel_swap_errors(self, client, sid):
        assert client.put(f'/api/sessions/{sid}/days/0/hotel', json={'hotelName': 'Hotel Ilark'}).status_code == 400
        open_package(client, sid)
        assert client.put(f'/api/sessions/{sid}/days/0/hotel', json={'hotelName': 'Taj'}).status_code == 404
        assert client.put(f'/api/sessions/{sid}/days/9/hotel', json={'hotelName': 'Hotel Ilark'}).status_code == 400

    def test_sightseeing_override(self, client, sid):
        open_package(client, sid)
        client.put(f'/api/sessions/{sid}/days/0/sightseeing', json={'names': []})

        days = client.get(f'/api/sessions/{sid}/timeline').get_json()
        assert days[0]['sightseeingSpots'] == []

        client.delete(f'/api/sessions/{sid}/days/0/sightseeing')
        days = client.get(f'/api/sessions/{sid}/timeline').get_json()
        assert len(days[0]['sightseeingSpots']) == 2

    def test_pricing_needs_a_package(self, client, sid):
        assert client.get(f'/api/sessions/{sid}/pricing').status_code == 400

    def test_idle_sessions_are_swept(self, client, sid, monkeypatch):
        monkeypatch.setattr(app_module.config, 'SESSION_IDLE_TIMEOUT', 60)
        app_module._sessions[sid].last_active -= 61

        assert client.post('/api/sessions', json={}).status_code == 201
        assert client.get(f'/api/sessions/{sid}').status_code == 404
        assert len(app_module._sessions) == 1

    def test_session_registry_is_capped(self, client, sid, monkeypatch):
        monkeypatch.setattr(app_module.config, 'SESSION_MAX', 2)
        client.get(f'/api/sessions/{sid}')
        second = client.post('/api/sessions', json={}).get_json()['id']
        app_module._sessions[sid].last_active += 1
        third = client.post('/api/sessions', json={}).get_json()['id']

        assert set(app_module._sessions) == {sid, third}
        assert client.get(f'/api/sessions/{second}').status_code == 404

    def test_delete_session(self, client, sid):
        assert client.delete(f'/api/sessions/{sid}').status_code == 200
        assert client.get(f'/api/sessions/{sid}').status_code == 404


class TestBuilderRoutes:

    def test_build_and_finalize(self, client, sid):
        assert client.post(f'/api/sessions/{sid}/builder').status_code == 201

        client.put(f'/api/sessions/{sid}/builder/stage', json={
            'city': 'Bhuj', 'hotelName': 'Hotel Ilark', 'roomTypeName': 'Deluxe Room',
            'sightseeing': ['Aina Mahal'],
        })
        data = client.post(f'/api/sessions/{sid}/builder/days', json={}).get_json()
        assert data['staged']['city'] == 'Bhuj'
        assert data['staged']['hotel'] is None

        data = client.post(f'/api/sessions/{sid}/builder/days/0/duplicate').get_json()
        assert [d['city'] for d in data['days']] == ['Bhuj', 'Bhuj']
        assert data['estimate']['lodgingCost'] == 5600.0
        assert data['estimate']['transportCost'] == 5000.0

        client.put(f'/api/sessions/{sid}/builder/stage', json={'city': 'Dhordo'})
        client.post(f'/api/sessions/{sid}/builder/days', json={'index': 1})
        data = client.get(f'/api/sessions/{sid}/builder').get_json()
        assert [d['city'] for d in data['days']] == ['Bhuj', 'Dhordo', 'Bhuj']

        data = client.delete(f'/api/sessions/{sid}/builder/days/2').get_json()
        assert len(data['days']) == 2

        data = client.post(f'/api/sessions/{sid}/builder/finalize').get_json()
        assert data['selectedPackageId'] == 'custom'
        assert data['package']['route'] == ['Bhuj', 'Dhordo']
        assert data['builderOpen'] is False
        assert set(data['hotelOverrides']) == {'0'}
        assert data['sightseeingOverrides'] == {'0': ['Aina Mahal'], '1': []}

    def test_hotel_must_exist_in_staged_city(self, client, sid):
        client.post(f'/api/sessions/{sid}/builder')
        client.put(f'/api/sessions/{sid}/builder/stage', json={'city': 'Dhordo'})
        resp = client.put(f'/api/sessions/{sid}/builder/stage', json={'hotelName': 'Hotel Ilark'})
        assert resp.status_code == 404

    def test_finalize_empty_builder(self, client, sid):
        client.post(f'/api/sessions/{sid}/builder')
        assert client.post(f'/api/sessions/{sid}/builder/finalize').status_code == 400

    def test_builder_routes_need_open_builder(self, client, sid):
        assert client.get(f'/api/sessions/{sid}/builder').status_code == 400
        assert client.post(f'/api/sessions/{sid}/builder/days', json={}).status_code == 400


class TestQuoteRoutes:

    def test_quote_text(self, client, sid):
        open_package(client, sid)
        text = client.get(f'/api/sessions/{sid}/quote/text').get_json()['text']
        assert 'Total: ₹26,000' in text

    def test_quote_pdf(self, client, sid):
        open_package(client, sid)
        resp = client.get(f'/api/sessions/{sid}/quote/pdf')
        assert resp.status_code == 200
        assert resp.mimetype == 'application/pdf'
        assert resp.data.startswith(b'%PDF')
        assert 'Mr__Shah_Kutch_Itinerary_2Pax.pdf' in resp.headers['Content-Disposition']

    def test_quote_without_package(self, client, sid):
        assert client.get(f'/api/sessions/{sid}/quote').status_code == 400
