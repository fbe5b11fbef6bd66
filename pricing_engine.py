"""
Itinerary Pricing Engine
========================
Core calculation logic with:
  - Occupancy-based room calculator
  - Default fleet policy (pax-tiered vehicle mix)
  - Stay resolution (override → tier default → first hotel in city)
  - Route pricing (transport per trip day + lodging per route day)
  - Markup (percent / fixed) and per-person price
  - Gallery estimate (approximate, pre-editing only)
  - Custom builder running estimate

This is the SINGLE SOURCE OF TRUTH for all price computation.
The HTTP layer and the quote renderer MUST call this engine and never compute prices themselves.

Missing-data behavior:
  Every lookup here is total over the catalog. A city without hotels, a hotel
  without room types, or a fleet item naming a vehicle the catalog does not
  carry contributes zero cost. Nothing in the pricing path raises for catalog
  gaps; only caller mistakes (bad markup type, negative pax) raise.
"""

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, List, Any, Optional
import math
import logging

import config
from catalog import (
    Catalog,
    CustomDay,
    FleetItem,
    HotelOverride,
    ItineraryPackage,
    PricingResult,
    StayResolution,
    TIERS,
)

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
WHOLE = Decimal('1')
HALF = Decimal('0.5')


# =====================================================
# EXCEPTIONS
# =====================================================

class PricingEngineError(Exception):
    """Base exception for pricing engine errors"""
    pass

class ComponentNotFoundError(PricingEngineError):
    pass

class InvalidConfigurationError(PricingEngineError):
    pass


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, ROUND_HALF_UP)


def per_person_price(total: Decimal, pax: int) -> Decimal:
    """round(total / pax) to the nearest whole unit; 0 when pax is 0.

    Halves round toward +infinity, so -2.5 becomes -2.
    """
    if pax <= 0:
        return Decimal('0')
    return (Decimal(total) / pax + HALF).quantize(WHOLE, ROUND_FLOOR)


def validate_tier(tier: str) -> str:
    if tier not in TIERS:
        raise InvalidConfigurationError(f"Unknown tier '{tier}', expected one of {', '.join(TIERS)}")
    return tier


# =====================================================
# ROOM / OCCUPANCY CALCULATOR
# =====================================================

class RoomCalculator:
    """
    Single occupancy-rounding rule used everywhere rooms are costed.
    Partial occupancy still takes a full room; zero travelers take none.
    """

    @staticmethod
    def rooms_needed(pax: int, capacity: int) -> int:
        if pax <= 0:
            return 0
        if not capacity or capacity <= 0:
            # Inventory defect: a room that holds nobody is costed as single occupancy
            logger.warning(f"Non-positive room capacity {capacity!r}, treating as 1")
            capacity = 1
        return math.ceil(pax / capacity)

    @staticmethod
    def calculate_room_allocation(pax: int, capacity: int) -> Dict[str, Any]:
        """
        Room allocation summary for display.

        Returns:
            Dict with rooms, effective capacity and a human-readable detail line
        """
        rooms = RoomCalculator.rooms_needed(pax, capacity)
        effective_capacity = capacity if capacity and capacity > 0 else 1
        return {
            'rooms': rooms,
            'pax': max(pax, 0),
            'capacity': effective_capacity,
            'allocation_detail': f"{rooms} room(s) × {effective_capacity}-sharing",
        }


# =====================================================
# FLEET RESOLVER
# =====================================================

class FleetResolver:
    """
    Default vehicle mix for a party size:

        pax ≤ 4    → 1 × sedan
        pax 5–6    → 1 × mid-size
        pax 7–12   → 1 × large van
        pax > 12   → ceil(pax / 12) × large van

    Always returns a fresh list with fresh item ids.
    """

    @staticmethod
    def auto_fleet(pax: int) -> List[FleetItem]:
        if pax <= config.SEDAN_MAX_PAX:
            return [FleetItem(name=config.SEDAN_VEHICLE, count=1)]
        if pax <= config.MIDSIZE_MAX_PAX:
            return [FleetItem(name=config.MIDSIZE_VEHICLE, count=1)]
        if pax <= config.VAN_CAPACITY:
            return [FleetItem(name=config.VAN_VEHICLE, count=1)]
        return [FleetItem(name=config.VAN_VEHICLE, count=math.ceil(pax / config.VAN_CAPACITY))]


# =====================================================
# STAY RESOLVER
# =====================================================

class StayResolver:
    """
    Resolves the effective hotel + room type for one route day.

    Resolution order:
      1. overrides[day_index] if present, returned verbatim, no tier
         filtering and no catalog validation (an override that points at a
         hotel dropped by a catalog refresh still resolves).
      2. first hotel in the city whose tier matches, else the city's first
         hotel regardless of tier. Room type is always room_types[0]; only an
         override ever selects another room type.
      3. no hotels in the city → None.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def default_hotel(self, city: str, tier: str):
        city_hotels = self.catalog.hotels_in(city)
        if not city_hotels:
            return None, None
        for hotel in city_hotels:
            if hotel.tier == tier:
                return hotel, 'tier'
        return city_hotels[0], 'fallback'

    def resolve(
        self,
        city: str,
        day_index: int,
        tier: str,
        overrides: Optional[Dict[int, HotelOverride]] = None
    ) -> Optional[StayResolution]:
        override = (overrides or {}).get(day_index)
        if override is not None:
            return StayResolution(hotel=override.hotel, room_type=override.room_type, source='override')

        hotel, source = self.default_hotel(city, tier)
        if hotel is None:
            logger.debug(f"No hotels for city '{city}' (day {day_index})")
            return None

        room_type = hotel.room_types[0] if hotel.room_types else None
        if room_type is None:
            logger.warning(f"Hotel '{hotel.name}' in '{city}' has no room types, lodging costed at 0")
        return StayResolution(hotel=hotel, room_type=room_type, source=source)


# =====================================================
# MAIN PRICING ENGINE
# =====================================================

class ItineraryPricingEngine:
    """
    Core pricing engine.

    Transport: Σ vehicle.rate × item.count × package.days for every fleet item
               whose name is in the catalog (unknown names contribute 0).
    Lodging:   Σ over every route index (departure day included) of
               rooms_needed(pax, room.capacity) × room.rate for the resolved stay.
    Markup:    percent → net × (1 + value / 100); fixed → net + value.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog
        self.stay_resolver = StayResolver(catalog)
        self.room_calculator = RoomCalculator()

    # -------------------------------------------------
    # TRANSPORT
    # -------------------------------------------------

    def transport_cost(self, fleet: List[FleetItem], trip_days: int) -> Decimal:
        total = Decimal('0')
        for item in fleet:
            vehicle = self.catalog.find_vehicle(item.name)
            if vehicle is None:
                logger.warning(f"Vehicle '{item.name}' not in catalog, skipped in transport cost")
                continue
            total += vehicle.rate * item.count * trip_days
        return _money(total)

    # -------------------------------------------------
    # LODGING
    # -------------------------------------------------

    def lodging_cost(
        self,
        package: ItineraryPackage,
        tier: str,
        pax: int,
        overrides: Optional[Dict[int, HotelOverride]] = None
    ) -> Decimal:
        total = Decimal('0')
        for day_index, city in enumerate(package.route):
            stay = self.stay_resolver.resolve(city, day_index, tier, overrides)
            if stay is None or stay.room_type is None:
                continue
            rooms = self.room_calculator.rooms_needed(pax, stay.room_type.capacity)
            total += stay.room_type.rate * rooms
        return _money(total)

    # -------------------------------------------------
    # MAIN ENTRY POINTS
    # -------------------------------------------------

    def price(
        self,
        package: ItineraryPackage,
        tier: str,
        fleet: List[FleetItem],
        pax: int,
        overrides: Optional[Dict[int, HotelOverride]] = None
    ) -> PricingResult:
        """Net price of a package; final_total equals net_total (no markup)."""
        transport = self.transport_cost(fleet, package.days)
        lodging = self.lodging_cost(package, tier, pax, overrides)
        net_total = transport + lodging

        logger.info(
            f"Priced package '{package.id}' tier={tier} pax={pax}: "
            f"transport={transport}, lodging={lodging}, net={net_total}"
        )
        return PricingResult(
            transport_cost=transport,
            lodging_cost=lodging,
            net_total=net_total,
            final_total=net_total,
            per_person=per_person_price(net_total, pax),
        )

    @staticmethod
    def apply_markup(
        net_total: Decimal,
        pax: int,
        markup_type: str,
        markup_value
    ) -> PricingResult:
        net_total = Decimal(str(net_total))
        value = Decimal(str(markup_value or 0))

        if markup_type == 'percent':
            final_total = net_total * (1 + value / 100)
        elif markup_type == 'fixed':
            final_total = net_total + value
        else:
            raise InvalidConfigurationError(f"Unknown markup type '{markup_type}', expected 'percent' or 'fixed'")

        final_total = _money(final_total)
        return PricingResult(
            net_total=net_total,
            final_total=final_total,
            per_person=per_person_price(final_total, pax),
        )

    def quote(
        self,
        package: ItineraryPackage,
        tier: str,
        fleet: List[FleetItem],
        pax: int,
        overrides: Optional[Dict[int, HotelOverride]],
        markup_type: str,
        markup_value
    ) -> PricingResult:
        """price() followed by apply_markup(), keeping the cost breakdown."""
        net = self.price(package, tier, fleet, pax, overrides)
        marked = self.apply_markup(net.net_total, pax, markup_type, markup_value)
        return marked.model_copy(update={
            'transport_cost': net.transport_cost,
            'lodging_cost': net.lodging_cost,
        })

    # -------------------------------------------------
    # GALLERY ESTIMATE (APPROXIMATE)
    # -------------------------------------------------

    def gallery_estimate(
        self,
        package: ItineraryPackage,
        tier: str,
        pax: int,
        sharing: int = 2
    ) -> PricingResult:
        """
        Rough package price shown before a package is opened.
        Lodging is counted per night (the departure day is not costed) using a
        room of the requested sharing capacity where one exists in the city.
        Transport uses flat per-day rates by party size, not the session fleet.
        Never used once a package is being edited.
        """
        lodging = Decimal('0')
        for city in package.route[:-1]:
            room_type = self._gallery_room_type(city, tier, sharing)
            if room_type is None:
                continue
            lodging += room_type.rate * self.room_calculator.rooms_needed(pax, room_type.capacity)

        transport = self._gallery_transport_day_rate(pax) * package.days
        net_total = _money(lodging) + _money(transport)
        return PricingResult(
            transport_cost=_money(transport),
            lodging_cost=_money(lodging),
            net_total=net_total,
            final_total=net_total,
            per_person=per_person_price(net_total, pax),
        )

    def _gallery_room_type(self, city: str, tier: str, sharing: int):
        city_hotels = self.catalog.hotels_in(city)
        tier_hotels = [h for h in city_hotels if h.tier == tier] or city_hotels
        for hotel in tier_hotels:
            for room_type in hotel.room_types:
                if room_type.capacity == sharing:
                    return room_type
        hotel, _ = self.stay_resolver.default_hotel(city, tier)
        if hotel is None or not hotel.room_types:
            return None
        return hotel.room_types[0]

    @staticmethod
    def _gallery_transport_day_rate(pax: int) -> Decimal:
        rates = config.GALLERY_TRANSPORT_DAY_RATES
        if pax <= config.SEDAN_MAX_PAX:
            return Decimal(rates['sedan'])
        if pax <= config.MIDSIZE_MAX_PAX:
            return Decimal(rates['midsize'])
        return Decimal(rates['van']) * math.ceil(pax / config.VAN_CAPACITY)

    # -------------------------------------------------
    # CUSTOM BUILDER RUNNING ESTIMATE
    # -------------------------------------------------

    def estimate_custom_days(
        self,
        days: List[CustomDay],
        fleet: List[FleetItem],
        pax: int
    ) -> PricingResult:
        """
        Live cost while a custom itinerary is still being assembled.
        Transport is costed for at least one day. Only days with both a hotel
        and a room type contribute lodging.
        """
        transport = self.transport_cost(fleet, max(1, len(days)))

        lodging = Decimal('0')
        for day in days:
            if day.hotel is None or day.selected_room_type is None:
                continue
            room_type = day.selected_room_type
            lodging += room_type.rate * self.room_calculator.rooms_needed(pax, room_type.capacity)
        lodging = _money(lodging)

        net_total = transport + lodging
        return PricingResult(
            transport_cost=transport,
            lodging_cost=lodging,
            net_total=net_total,
            final_total=net_total,
            per_person=per_person_price(net_total, pax),
        )
