import json
from decimal import Decimal

import pytest
import requests

import catalog_loader
from catalog_loader import (
    CatalogLoadError,
    CatalogStore,
    catalog_from_rows,
    fetch_catalog_snapshot,
    load_catalog,
    load_catalog_from_file,
)
from tests.conftest import make_catalog


HOTEL_ROWS = [
    {
        'id': 1, 'name': 'Hotel Ilark', 'type': 'CP', 'tier': 'budget', 'image_url': None,
        'locations': {'name': 'Bhuj'},
        'room_types': [{'name': 'Deluxe Room', 'capacity': 2, 'rate': 2800}],
    },
    {
        'id': 2, 'name': 'Orphan Lodge', 'type': 'EP', 'tier': 'Premium', 'image_url': '',
        'locations': None,
        'room_types': [],
    },
]

SIGHT_ROWS = [
    {'id': 1, 'name': 'Aina Mahal', 'description': 'Palace of mirrors.', 'image_url': '',
     'locations': [{'name': 'Bhuj'}]},
]

VEHICLE_ROWS = [{'id': 1, 'name': 'Sedan (Dzire)', 'rate': '2500.00', 'capacity': 4, 'image_url': None}]

PACKAGE_ROWS = [
    {'id': 7, 'name': 'Bhuj Weekend', 'image_url': None, 'days': None, 'route': '["Bhuj", "Bhuj", "Bhuj"]'},
]


class FakeResponse:

    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload

    def json(self):
        return self._payload


class TestCatalogFromRows:

    def test_groups_rows_by_location(self):
        catalog = catalog_from_rows(HOTEL_ROWS, SIGHT_ROWS, VEHICLE_ROWS, PACKAGE_ROWS)

        assert [h.name for h in catalog.hotels_in('Bhuj')] == ['Hotel Ilark']
        assert [h.name for h in catalog.hotels_in('Unknown')] == ['Orphan Lodge']
        assert catalog.hotels_in('Bhuj')[0].tier == 'Budget'
        assert catalog.hotels_in('Bhuj')[0].room_types[0].rate == Decimal('2800')
        assert [s.name for s in catalog.sightseeing_in('Bhuj')] == ['Aina Mahal']
        assert catalog.find_vehicle('Sedan (Dzire)').rate == Decimal('2500')

    def test_package_route_string_is_parsed(self):
        package = catalog_from_rows([], [], [], PACKAGE_ROWS).packages[0]
        assert package.id == '7'
        assert package.route == ['Bhuj', 'Bhuj', 'Bhuj']
        assert package.days == 3

    def test_missing_tables_give_empty_catalog(self):
        catalog = catalog_from_rows(None, None, None, None)
        assert catalog.hotel_data == {}
        assert catalog.packages == []

    def test_malformed_row(self):
        with pytest.raises(CatalogLoadError):
            catalog_from_rows([{'type': 'CP'}], [], [], [])

    def test_missing_room_rate_and_capacity_degrade(self):
        hotel = {
            'name': 'Gateway to Rann Resort', 'tier': 'Budget', 'locations': {'name': 'Dhordo'},
            'room_types': [
                {'name': 'Bhunga', 'capacity': 2, 'rate': None},
                {'name': 'Dorm', 'capacity': None, 'rate': 900},
                {'name': 'Broken', 'capacity': 0, 'rate': 1000},
            ],
        }

        rooms = catalog_from_rows([hotel], [], [], []).hotels_in('Dhordo')[0].room_types

        assert [(r.name, r.capacity, r.rate) for r in rooms] == [
            ('Bhunga', 2, Decimal('0')),
            ('Dorm', 1, Decimal('900')),
            ('Broken', 1, Decimal('1000')),
        ]

    def test_malformed_route(self):
        with pytest.raises(CatalogLoadError):
            catalog_from_rows([], [], [], [{'id': 1, 'name': 'x', 'route': '[not json'}])


class TestFileSource:

    def test_raw_rows(self, tmp_path):
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps({
            'hotels': HOTEL_ROWS, 'sightseeing': SIGHT_ROWS,
            'vehicles': VEHICLE_ROWS, 'packages': PACKAGE_ROWS,
        }), encoding='utf-8')

        catalog = load_catalog_from_file(str(path))
        assert catalog.cities == ['Bhuj', 'Unknown']

    def test_dumped_catalog(self, tmp_path):
        source = make_catalog()
        path = tmp_path / 'snapshot.json'
        path.write_text(json.dumps(source.model_dump(mode='json', by_alias=True)), encoding='utf-8')

        catalog = load_catalog_from_file(str(path))

        assert catalog.find_package('kutch-4n5d').route == source.find_package('kutch-4n5d').route
        assert catalog.hotels_in('Dhordo')[1].room_types[1].rate == Decimal('8200')

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogLoadError):
            load_catalog_from_file(str(tmp_path / 'missing.json'))

    def test_unknown_source(self):
        with pytest.raises(CatalogLoadError):
            load_catalog('ftp')


class TestRestSource:

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(catalog_loader.time, 'sleep', lambda seconds: None)

    def test_fetches_every_table(self, monkeypatch):
        tables = {
            'hotels': HOTEL_ROWS, 'sightseeing': SIGHT_ROWS,
            'vehicles': VEHICLE_ROWS, 'packages': PACKAGE_ROWS,
        }
        calls = []

        def fake_get(url, headers, params, timeout):
            table = url.rsplit('/', 1)[-1]
            calls.append((table, headers['apikey'], params['select']))
            return FakeResponse(200, tables[table])

        monkeypatch.setattr(catalog_loader._requests, 'get', fake_get)

        catalog = fetch_catalog_snapshot('https://example.test/', 'anon-key', timeout=5, retries=2)

        assert [c[0] for c in calls] == ['hotels', 'sightseeing', 'vehicles', 'packages']
        assert all(c[1] == 'anon-key' for c in calls)
        assert 'room_types(' in calls[0][2]
        assert catalog.find_package('7').days == 3

    def test_network_errors_are_retried(self, monkeypatch):
        attempts = {'count': 0}

        def flaky_get(url, headers, params, timeout):
            attempts['count'] += 1
            if attempts['count'] < 3:
                raise requests.exceptions.ConnectionError('connection reset')
            return FakeResponse(200, [])

        monkeypatch.setattr(catalog_loader._requests, 'get', flaky_get)

        rows = catalog_loader._rest_get('vehicles', 'https://example.test', 'k', timeout=5, retries=3)
        assert rows == []
        assert attempts['count'] == 3

    def test_client_error_is_not_retried(self, monkeypatch):
        attempts = {'count': 0}

        def not_found(url, headers, params, timeout):
            attempts['count'] += 1
            return FakeResponse(404)

        monkeypatch.setattr(catalog_loader._requests, 'get', not_found)

        with pytest.raises(CatalogLoadError):
            catalog_loader._rest_get('hotels', 'https://example.test', 'k', timeout=5, retries=3)
        assert attempts['count'] == 1

    def test_non_json_body_is_a_load_error(self, monkeypatch):
        class HtmlResponse(FakeResponse):
            def json(self):
                raise ValueError('Expecting value: line 1 column 1 (char 0)')

        monkeypatch.setattr(catalog_loader._requests, 'get', lambda *a, **kw: HtmlResponse(200))

        with pytest.raises(CatalogLoadError):
            fetch_catalog_snapshot('https://example.test', 'k', timeout=5, retries=1)

    def test_server_errors_exhaust_retries(self, monkeypatch):
        attempts = {'count': 0}

        def unavailable(url, headers, params, timeout):
            attempts['count'] += 1
            return FakeResponse(503)

        monkeypatch.setattr(catalog_loader._requests, 'get', unavailable)

        with pytest.raises(CatalogLoadError):
            catalog_loader._rest_get('hotels', 'https://example.test', 'k', timeout=5, retries=3)
        assert attempts['count'] == 3

    def test_url_must_be_configured(self, monkeypatch):
        monkeypatch.setattr(catalog_loader.config, 'CATALOG_REST_URL', '')
        with pytest.raises(CatalogLoadError):
            fetch_catalog_snapshot()


class TestCatalogStore:

    def test_loads_lazily_once(self):
        loads = []

        def loader():
            loads.append(1)
            return make_catalog()

        store = CatalogStore(loader)
        assert store.loaded is False
        first = store.get()
        assert store.get() is first
        assert len(loads) == 1

    def test_refresh_swaps_snapshot(self):
        snapshots = [make_catalog(), make_catalog(packages=[])]
        store = CatalogStore(lambda: snapshots.pop(0))

        old = store.get()
        new = store.refresh()

        assert new is not old
        assert store.get().packages == []
        assert len(old.packages) == 2

    def test_failed_refresh_keeps_previous_snapshot(self):
        store = CatalogStore(make_catalog)
        current = store.get()

        def broken():
            raise CatalogLoadError('down')

        store._loader = broken
        with pytest.raises(CatalogLoadError):
            store.refresh()
        assert store.get() is current
