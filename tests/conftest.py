from datetime import date

import pytest

from catalog import Catalog, Hotel, ItineraryPackage, RoomType, Sightseeing, Vehicle


def make_catalog(**overrides):
    data = dict(
        hotel_data={
            'Bhuj': [
                Hotel(name='Hotel Ilark', tier='Budget', type='CP', room_types=[
                    RoomType(name='Deluxe Room', capacity=2, rate=2800),
                    RoomType(name='Family Room', capacity=4, rate=4800),
                ]),
                Hotel(name='Regenta Resort Bhuj', tier='Premium', type='MAP', room_types=[
                    RoomType(name='Premium Room', capacity=2, rate=6500),
                    RoomType(name='Suite', capacity=3, rate=9800),
                ]),
            ],
            'Dhordo': [
                Hotel(name='Rann Utsav Tent City', tier='Premium', type='AP', room_types=[
                    RoomType(name='Premium Tent', capacity=2, rate=9000),
                ]),
                Hotel(name='Gateway to Rann Resort', tier='Budget', type='MAP', room_types=[
                    RoomType(name='Bhunga', capacity=2, rate=5200),
                    RoomType(name='Quad Bhunga', capacity=4, rate=8200),
                ]),
            ],
            'Mandvi': [
                Hotel(name='Mandvi Beach Camp', tier='Budget', type='CP', room_types=[
                    RoomType(name='Swiss Tent', capacity=2, rate=3500),
                ]),
            ],
            'Rapar': [
                Hotel(name='Rapar Guest House', tier='Budget', type='EP', room_types=[]),
            ],
        },
        sightseeing_data={
            'Bhuj': [
                Sightseeing(name='Aina Mahal', desc='Palace of mirrors.'),
                Sightseeing(name='Prag Mahal', desc='Italian Gothic palace.'),
            ],
            'Dhordo': [
                Sightseeing(name='White Rann', desc='Salt desert at sunset.'),
                Sightseeing(name='Kalo Dungar', desc='Highest point in Kutch.'),
            ],
            'Mandvi': [
                Sightseeing(name='Vijay Vilas Palace', desc='Summer palace.'),
            ],
        },
        vehicle_data=[
            Vehicle(name='Sedan (Dzire)', rate=2500, capacity=4),
            Vehicle(name='Innova', rate=3500, capacity=6),
            Vehicle(name='Tempo Traveller', rate=5500, capacity=12),
        ],
        packages=[
            ItineraryPackage(id='kutch-3n4d', name='White Rann Escape', days=4,
                             route=['Bhuj', 'Dhordo', 'Dhordo', 'Bhuj']),
            ItineraryPackage(id='kutch-4n5d', name='Kutch Heritage & Coast', days=5,
                             route=['Bhuj', 'Dhordo', 'Mandvi', 'Mandvi', 'Bhuj']),
        ],
    )
    data.update(overrides)
    return Catalog(**data)


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def start_date():
    return date(2026, 12, 20)
