"""
Itinerary Session & Custom Builder
==================================
All mutable state of one itinerary-editing session lives on an explicit
ItinerarySession object: party size, tier, fleet (with its manual-edit
latch), per-day overrides, markup, the selected package and, while the
operator is composing one, a CustomItineraryBuilder.

Nothing in here is shared between sessions and nothing is global. The catalog
snapshot is held by reference and swapped wholesale on refresh.

Override keys are route positions. Duplicating or removing a day in the
custom builder never renumbers overrides that were set through the generic
editor; finalize() writes a freshly indexed override set.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import logging
import time

from pydantic import TypeAdapter

import config
from catalog import (
    Catalog,
    CustomDay,
    FleetItem,
    FleetUpdate,
    Hotel,
    HotelOverride,
    ItineraryPackage,
    MarkupType,
    PricingResult,
    RoomType,
    StayResolution,
    TIERS,
    generate_id,
)
from pricing_engine import (
    ComponentNotFoundError,
    FleetResolver,
    InvalidConfigurationError,
    ItineraryPricingEngine,
    validate_tier,
)

logger = logging.getLogger(__name__)

_fleet_update_adapter = TypeAdapter(FleetUpdate)


def _check_room_belongs(hotel: Hotel, room_type: RoomType) -> None:
    if room_type not in hotel.room_types:
        raise InvalidConfigurationError(
            f"Room type '{room_type.name}' does not belong to hotel '{hotel.name}'"
        )


# =====================================================
# CUSTOM BUILDER
# =====================================================

def finalize_custom_days(
    days: List[CustomDay]
) -> Tuple[ItineraryPackage, Dict[int, HotelOverride], Dict[int, List[str]]]:
    """
    Fold custom days into a package plus the two override maps.

    A hotel override is written only for days with both a hotel and a room
    type. A sightseeing override is written for every day, even an empty one,
    so that "chose nothing" stays distinct from "never chose".
    """
    if not days:
        raise InvalidConfigurationError("Cannot finalize a custom itinerary with no days")

    route = [day.city for day in days]
    package = ItineraryPackage(
        id=config.CUSTOM_PACKAGE_ID,
        name=config.CUSTOM_PACKAGE_NAME,
        img=config.FALLBACK_IMG,
        days=len(route),
        route=route,
    )

    hotel_overrides: Dict[int, HotelOverride] = {}
    sightseeing_overrides: Dict[int, List[str]] = {}
    for index, day in enumerate(days):
        if day.hotel is not None and day.selected_room_type is not None:
            hotel_overrides[index] = HotelOverride(hotel=day.hotel, room_type=day.selected_room_type)
        sightseeing_overrides[index] = list(day.sightseeing or [])

    logger.info(
        f"Finalized custom itinerary: {len(route)} day(s), "
        f"{len(hotel_overrides)} hotel override(s)"
    )
    return package, hotel_overrides, sightseeing_overrides


class CustomItineraryBuilder:
    """
    Ordered list of custom days plus the currently staged selections.

    Appending keeps the staged city so consecutive nights in the same city
    can be added one after another; hotel, room and sightseeing are cleared.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self.days: List[CustomDay] = []
        self.staged_city: Optional[str] = None
        self.staged_hotel: Optional[Hotel] = None
        self.staged_room_type: Optional[RoomType] = None
        self.staged_sightseeing: List[str] = []

    # -------------------------------------------------
    # STAGING
    # -------------------------------------------------

    def stage_city(self, city: str) -> None:
        if city != self.staged_city:
            self._clear_staged_selections()
        self.staged_city = city

    def stage_hotel(self, hotel: Optional[Hotel], room_type: Optional[RoomType] = None) -> None:
        if hotel is not None and room_type is not None:
            _check_room_belongs(hotel, room_type)
        self.staged_hotel = hotel
        self.staged_room_type = room_type if hotel is not None else None

    def stage_room_type(self, room_type: RoomType) -> None:
        if self.staged_hotel is None:
            raise InvalidConfigurationError("Select a hotel before choosing a room type")
        _check_room_belongs(self.staged_hotel, room_type)
        self.staged_room_type = room_type

    def toggle_sightseeing(self, name: str) -> None:
        if name in self.staged_sightseeing:
            self.staged_sightseeing.remove(name)
        else:
            self.staged_sightseeing.append(name)

    def stage_sightseeing(self, names: List[str]) -> None:
        self.staged_sightseeing = list(names)

    def _clear_staged_selections(self) -> None:
        self.staged_hotel = None
        self.staged_room_type = None
        self.staged_sightseeing = []

    def _day_from_staged(self) -> CustomDay:
        if not self.staged_city:
            raise InvalidConfigurationError("Select a city before adding a day")
        return CustomDay(
            city=self.staged_city,
            hotel=self.staged_hotel,
            selected_room_type=self.staged_room_type,
            sightseeing=list(self.staged_sightseeing),
        )

    # -------------------------------------------------
    # DAY LIST OPERATIONS
    # -------------------------------------------------

    def append(self) -> CustomDay:
        day = self._day_from_staged()
        self.days.append(day)
        self._clear_staged_selections()
        return day

    def insert(self, index: int) -> CustomDay:
        """Like append(), but places the staged day at index (clamped to the list)."""
        day = self._day_from_staged()
        index = max(0, min(index, len(self.days)))
        self.days.insert(index, day)
        self._clear_staged_selections()
        return day

    def duplicate(self, index: int) -> CustomDay:
        source = self._day_at(index)
        copy = source.model_copy(update={'id': generate_id(), 'sightseeing': list(source.sightseeing)})
        self.days.insert(index + 1, copy)
        return copy

    def remove(self, index: int) -> CustomDay:
        self._day_at(index)
        return self.days.pop(index)

    def _day_at(self, index: int) -> CustomDay:
        if index < 0 or index >= len(self.days):
            raise ComponentNotFoundError(f"No custom day at index {index}")
        return self.days[index]

    # -------------------------------------------------
    # ESTIMATE / FINALIZE
    # -------------------------------------------------

    def estimate(self, fleet: List[FleetItem], pax: int) -> PricingResult:
        return ItineraryPricingEngine(self.catalog).estimate_custom_days(self.days, fleet, pax)

    def finalize(self):
        return finalize_custom_days(self.days)


# =====================================================
# SESSION
# =====================================================

class ItinerarySession:
    """
    One operator's itinerary-editing session.

    The fleet follows FleetResolver.auto_fleet(pax) until the first manual
    fleet edit. From then on pax changes never touch the fleet again for the
    lifetime of this session.
    """

    def __init__(
        self,
        catalog: Catalog,
        pax: int = config.DEFAULT_PAX,
        tier: str = config.DEFAULT_TIER,
        guest_name: str = config.DEFAULT_GUEST_NAME,
        start_date: Optional[date] = None
    ):
        if pax < 0:
            raise InvalidConfigurationError("Pax cannot be negative")

        self.id = generate_id()
        self.catalog = catalog
        self.guest_name = guest_name or config.DEFAULT_GUEST_NAME
        self.start_date = start_date or date.today()
        self.tier = validate_tier(tier)

        self._pax = pax
        self.fleet: List[FleetItem] = FleetResolver.auto_fleet(pax)
        self.is_manual_fleet = False

        self.selected_package_id: Optional[str] = None
        self.custom_package: Optional[ItineraryPackage] = None
        self.hotel_overrides: Dict[int, HotelOverride] = {}
        self.sightseeing_overrides: Dict[int, List[str]] = {}
        self.markup_type: MarkupType = 'percent'
        self.markup_value = Decimal('0')
        self.builder: Optional[CustomItineraryBuilder] = None
        self.last_active = time.monotonic()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    # -------------------------------------------------
    # CATALOG
    # -------------------------------------------------

    def replace_catalog(self, catalog: Catalog) -> None:
        """Swap in a refreshed snapshot. Existing overrides are kept as-is."""
        self.catalog = catalog
        if self.builder is not None:
            self.builder.catalog = catalog

    @property
    def engine(self) -> ItineraryPricingEngine:
        return ItineraryPricingEngine(self.catalog)

    # -------------------------------------------------
    # PAX / FLEET
    # -------------------------------------------------

    @property
    def pax(self) -> int:
        return self._pax

    @pax.setter
    def pax(self, value: int) -> None:
        value = int(value)
        if value < 0:
            raise InvalidConfigurationError("Pax cannot be negative")
        self._pax = value
        if not self.is_manual_fleet:
            self.fleet = FleetResolver.auto_fleet(value)

    def add_vehicle(self, name: str = config.SEDAN_VEHICLE, count: int = 1) -> FleetItem:
        item = FleetItem(name=name, count=count)
        self.is_manual_fleet = True
        self.fleet = self.fleet + [item]
        return item

    def remove_vehicle(self, item_id: str) -> None:
        self._fleet_item(item_id)
        self.is_manual_fleet = True
        self.fleet = [f for f in self.fleet if f.id != item_id]

    def update_vehicle(self, item_id: str, update: Union[dict, FleetUpdate]) -> FleetItem:
        if isinstance(update, dict):
            update = _fleet_update_adapter.validate_python(update)
        item = self._fleet_item(item_id)
        updated = item.model_copy(update={update.field: update.value})
        self.is_manual_fleet = True
        self.fleet = [updated if f.id == item_id else f for f in self.fleet]
        return updated

    def _fleet_item(self, item_id: str) -> FleetItem:
        for item in self.fleet:
            if item.id == item_id:
                return item
        raise ComponentNotFoundError(f"Fleet item '{item_id}' not found")

    # -------------------------------------------------
    # PACKAGE SELECTION
    # -------------------------------------------------

    @property
    def active_package(self) -> Optional[ItineraryPackage]:
        if self.selected_package_id is None:
            return None
        if self.selected_package_id == config.CUSTOM_PACKAGE_ID:
            return self.custom_package
        return self.catalog.find_package(self.selected_package_id)

    def select_package(self, package_id: str, tier: str) -> ItineraryPackage:
        """Open a package for editing; clears overrides and markup value."""
        package_id = str(package_id)
        if package_id == config.CUSTOM_PACKAGE_ID:
            package = self.custom_package
        else:
            package = self.catalog.find_package(package_id)
        if package is None:
            raise ComponentNotFoundError(f"Package '{package_id}' not found")

        self.tier = validate_tier(tier)
        self.selected_package_id = package_id
        self.hotel_overrides = {}
        self.sightseeing_overrides = {}
        self.markup_value = Decimal('0')
        logger.info(f"Session {self.id}: selected package '{package_id}' ({tier})")
        return package

    def set_tier(self, tier: str) -> None:
        self.tier = validate_tier(tier)

    # -------------------------------------------------
    # OVERRIDES
    # -------------------------------------------------

    def _check_day_index(self, day_index: int) -> None:
        package = self.active_package
        if package is None:
            raise InvalidConfigurationError("No package selected")
        if day_index < 0 or day_index >= len(package.route):
            raise InvalidConfigurationError(
                f"Day index {day_index} out of range for a {len(package.route)}-day route"
            )

    def set_hotel_override(self, day_index: int, hotel: Hotel, room_type: RoomType) -> HotelOverride:
        self._check_day_index(day_index)
        _check_room_belongs(hotel, room_type)
        override = HotelOverride(hotel=hotel, room_type=room_type)
        self.hotel_overrides = {**self.hotel_overrides, day_index: override}
        return override

    def clear_hotel_override(self, day_index: int) -> None:
        self.hotel_overrides = {k: v for k, v in self.hotel_overrides.items() if k != day_index}

    def set_sightseeing_override(self, day_index: int, names: List[str]) -> None:
        self._check_day_index(day_index)
        self.sightseeing_overrides = {**self.sightseeing_overrides, day_index: list(names)}

    def clear_sightseeing_override(self, day_index: int) -> None:
        self.sightseeing_overrides = {k: v for k, v in self.sightseeing_overrides.items() if k != day_index}

    def hotel_options(self, day_index: int) -> List[Hotel]:
        """Hotels the operator can swap to on a given day."""
        self._check_day_index(day_index)
        return self.catalog.hotels_in(self.active_package.route[day_index])

    def resolve_stay(self, day_index: int) -> Optional[StayResolution]:
        self._check_day_index(day_index)
        city = self.active_package.route[day_index]
        return self.engine.stay_resolver.resolve(city, day_index, self.tier, self.hotel_overrides)

    # -------------------------------------------------
    # MARKUP / PRICING
    # -------------------------------------------------

    def set_markup(self, markup_type: str, markup_value) -> None:
        if markup_type not in ('percent', 'fixed'):
            raise InvalidConfigurationError(f"Unknown markup type '{markup_type}'")
        self.markup_type = markup_type
        self.markup_value = Decimal(str(markup_value or 0))

    def pricing(self) -> Optional[PricingResult]:
        """Authoritative price of the open package, or None when nothing is open."""
        package = self.active_package
        if package is None:
            return None
        return self.engine.quote(
            package, self.tier, self.fleet, self.pax, self.hotel_overrides,
            self.markup_type, self.markup_value
        )

    def gallery(self, sharing: int = 2) -> List[Dict]:
        """Approximate prices for every catalog package in both tiers."""
        engine = self.engine
        cards = []
        for package in self.catalog.packages:
            estimates = {
                tier: engine.gallery_estimate(package, tier, self.pax, sharing).to_dict()
                for tier in TIERS
            }
            cards.append({
                'id': package.id,
                'name': package.name,
                'img': package.img,
                'days': package.days,
                'nights': package.nights,
                'route': package.route,
                'estimates': estimates,
            })
        return cards

    # -------------------------------------------------
    # CUSTOM BUILDER
    # -------------------------------------------------

    def start_custom_builder(self) -> CustomItineraryBuilder:
        self.builder = CustomItineraryBuilder(self.catalog)
        return self.builder

    def abandon_custom_builder(self) -> None:
        self.builder = None

    def finalize_custom(self) -> ItineraryPackage:
        if self.builder is None:
            raise InvalidConfigurationError("Custom builder is not open")
        package, hotel_overrides, sightseeing_overrides = self.builder.finalize()
        self.custom_package = package
        self.hotel_overrides = hotel_overrides
        self.sightseeing_overrides = sightseeing_overrides
        self.selected_package_id = config.CUSTOM_PACKAGE_ID
        self.builder = None
        return package

    def day_date(self, day_index: int) -> date:
        return self.start_date + timedelta(days=day_index)
