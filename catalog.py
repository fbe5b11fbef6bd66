"""
Catalog Model
=============
Typed, read-only representation of one destination's inventory
(hotels grouped by city, sightseeing grouped by city, a global vehicle list,
predefined packages) plus the small mutable value types that live in an
itinerary-editing session (fleet items, custom days, override entries).

A Catalog is never mutated. A refresh produces a new Catalog which replaces
the old one wholesale (see catalog_loader.CatalogStore).
"""

import json
import uuid
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator
from pydantic.alias_generators import to_camel


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used='json')]

Tier = Literal['Budget', 'Premium']
TIERS = ('Budget', 'Premium')

MarkupType = Literal['percent', 'fixed']

MEAL_PLAN_LABELS = {
    'EP': 'Room Only',
    'CP': 'Breakfast Included',
    'MAP': 'Breakfast & Dinner',
    'AP': 'All Meals Included',
}


def generate_id() -> str:
    """Short random id for fleet items and custom days."""
    return uuid.uuid4().hex[:8]


def meal_plan_label(code: Optional[str]) -> str:
    if not code:
        return ''
    return MEAL_PLAN_LABELS.get(code.strip().upper(), code)


class CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# =====================================================
# INVENTORY
# =====================================================

class RoomType(CatalogModel):
    name: str
    capacity: int
    rate: Money = Decimal('0')


class Hotel(CatalogModel):
    name: str
    tier: Tier = 'Budget'
    type: str = ''  # meal-plan code
    img: str = ''
    room_types: List[RoomType] = []

    @field_validator('tier', mode='before')
    @classmethod
    def _normalize_tier(cls, value):
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @property
    def meal_plan_label(self) -> str:
        return meal_plan_label(self.type)


class Sightseeing(CatalogModel):
    name: str
    desc: str = ''
    img: str = ''


class Vehicle(CatalogModel):
    name: str
    rate: Money = Decimal('0')
    capacity: int = 0
    img: str = ''


class ItineraryPackage(CatalogModel):
    """
    route[i] is the city for day i. Consecutive repeats of a city are a
    multi-night stay there. The last index is the departure day.
    """
    id: str
    name: str
    img: str = ''
    days: int
    route: List[str]

    @model_validator(mode='before')
    @classmethod
    def _coerce_raw(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        route = data.get('route')
        if isinstance(route, str):
            data['route'] = json.loads(route) if route.strip() else []
        elif route is None:
            data['route'] = []
        if data.get('id') is not None:
            data['id'] = str(data['id'])
        if data.get('days') is None:
            data['days'] = len(data['route'])
        return data

    @property
    def nights(self) -> int:
        return max(len(self.route) - 1, 0)


class Catalog(CatalogModel):
    hotel_data: Dict[str, List[Hotel]] = {}
    sightseeing_data: Dict[str, List[Sightseeing]] = {}
    vehicle_data: List[Vehicle] = []
    packages: List[ItineraryPackage] = []

    @classmethod
    def empty(cls) -> 'Catalog':
        return cls()

    def hotels_in(self, city: str) -> List[Hotel]:
        return self.hotel_data.get(city, [])

    def sightseeing_in(self, city: str) -> List[Sightseeing]:
        return self.sightseeing_data.get(city, [])

    def find_vehicle(self, name: str) -> Optional[Vehicle]:
        for vehicle in self.vehicle_data:
            if vehicle.name == name:
                return vehicle
        return None

    def find_package(self, package_id: str) -> Optional[ItineraryPackage]:
        for package in self.packages:
            if package.id == str(package_id):
                return package
        return None

    def find_hotel(self, city: str, name: str) -> Optional[Hotel]:
        for hotel in self.hotels_in(city):
            if hotel.name == name:
                return hotel
        return None

    @property
    def cities(self) -> List[str]:
        seen = list(self.hotel_data.keys())
        for city in self.sightseeing_data.keys():
            if city not in seen:
                seen.append(city)
        return seen


# =====================================================
# SESSION VALUE TYPES
# =====================================================

class SessionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FleetItem(SessionModel):
    id: str = Field(default_factory=generate_id)
    name: str
    count: int = Field(default=1, ge=1)


class FleetNameUpdate(SessionModel):
    field: Literal['name']
    value: str


class FleetCountUpdate(SessionModel):
    field: Literal['count']
    value: int = Field(ge=1)


FleetUpdate = Annotated[Union[FleetNameUpdate, FleetCountUpdate], Field(discriminator='field')]


class HotelOverride(SessionModel):
    """Explicit per-day stay choice. room_type must be one of hotel.room_types."""
    hotel: Hotel
    room_type: RoomType


class CustomDay(SessionModel):
    id: str = Field(default_factory=generate_id)
    city: str
    hotel: Optional[Hotel] = None
    selected_room_type: Optional[RoomType] = None
    sightseeing: List[str] = []


class StayResolution(SessionModel):
    hotel: Hotel
    room_type: Optional[RoomType] = None
    source: Literal['override', 'tier', 'fallback']


class PricingResult(SessionModel):
    transport_cost: Money = Decimal('0')
    lodging_cost: Money = Decimal('0')
    net_total: Money = Decimal('0')
    final_total: Money = Decimal('0')
    per_person: Money = Decimal('0')

    def to_dict(self) -> Dict:
        return self.model_dump(mode='json', by_alias=True)
