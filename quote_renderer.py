"""
Quote Renderer
==============
Turns an ItinerarySession into what an operator shares with a guest:
  - a resolved day-by-day view (stay, rooms, meal plan, sightseeing)
  - a quote payload (days + fleet + pricing); no pricing math happens here
  - a plain-text quote block (chat/email friendly)
  - an A4 PDF built from ordered logical sections

Display policy is independent from pricing: the departure day is priced by
the engine like any other route day, but no hotel is shown for it.
"""

import io
import re
from xml.sax.saxutils import escape
from typing import Dict, List
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    KeepTogether,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from catalog import Catalog, Sightseeing
from itinerary_session import ItinerarySession
from pricing_engine import InvalidConfigurationError, RoomCalculator

logger = logging.getLogger(__name__)


def format_money(amount, symbol: str = "₹") -> str:
    return f"{symbol}{float(amount):,.0f}"


# =====================================================
# SIGHTSEEING RESOLUTION
# =====================================================

def resolve_sightseeing(
    catalog: Catalog,
    city: str,
    day_index: int,
    overrides: Dict[int, List[str]]
) -> List[Sightseeing]:
    """
    No entry for the day → every spot in the city.
    An entry (even an empty list) → exactly those spots, in selection order.
    Names no longer present in the catalog are dropped.
    """
    city_spots = catalog.sightseeing_in(city)
    if day_index not in overrides:
        return list(city_spots)

    by_name = {spot.name: spot for spot in city_spots}
    return [by_name[name] for name in overrides[day_index] if name in by_name]


# =====================================================
# DAY VIEW
# =====================================================

def day_view(session: ItinerarySession, day_index: int) -> Dict:
    package = session.active_package
    city = package.route[day_index]
    is_departure = len(package.route) > 1 and day_index == len(package.route) - 1

    stay = session.resolve_stay(day_index)
    hotel = None
    room_type = None
    rooms = 0
    if stay is not None and not is_departure:
        hotel = stay.hotel
        room_type = stay.room_type
        if room_type is not None:
            rooms = RoomCalculator.rooms_needed(session.pax, room_type.capacity)

    spots = resolve_sightseeing(session.catalog, city, day_index, session.sightseeing_overrides)

    return {
        'dayIndex': day_index,
        'dayNumber': day_index + 1,
        'date': session.day_date(day_index).isoformat(),
        'city': city,
        'isDeparture': is_departure,
        'hotel': hotel.model_dump(mode='json', by_alias=True) if hotel else None,
        'roomType': room_type.model_dump(mode='json', by_alias=True) if room_type else None,
        'staySource': stay.source if (stay is not None and hotel is not None) else None,
        'roomsNeeded': rooms,
        'mealPlanLabel': hotel.meal_plan_label if hotel else '',
        'sightseeingSpots': [spot.model_dump(mode='json', by_alias=True) for spot in spots],
    }


def timeline(session: ItinerarySession) -> List[Dict]:
    package = session.active_package
    if package is None:
        return []
    return [day_view(session, i) for i in range(len(package.route))]


# =====================================================
# QUOTE PAYLOAD
# =====================================================

def build_quote(session: ItinerarySession) -> Dict:
    package = session.active_package
    if package is None:
        raise InvalidConfigurationError("No package selected, nothing to quote")

    pricing = session.pricing()
    return {
        'guestName': session.guest_name,
        'pax': session.pax,
        'startDate': session.start_date.isoformat(),
        'tier': session.tier,
        'package': {
            'id': package.id,
            'name': package.name,
            'img': package.img,
            'days': package.days,
            'nights': package.nights,
        },
        'days': timeline(session),
        'fleet': [item.model_dump(mode='json', by_alias=True) for item in session.fleet],
        'markup': {'type': session.markup_type, 'value': float(session.markup_value)},
        'pricing': pricing.to_dict(),
    }


# =====================================================
# TEXT QUOTE
# =====================================================

def render_text(quote: Dict) -> str:
    package = quote['package']
    pricing = quote['pricing']
    lines = [
        f"*{package['name']}*",
        f"Guest: {quote['guestName']} | Travellers: {quote['pax']}",
        f"Duration: {package['nights']}N/{package['days']}D starting {quote['startDate']}",
        "",
    ]

    for day in quote['days']:
        header = f"Day {day['dayNumber']} ({day['date']}) - {day['city']}"
        if day['isDeparture']:
            header += " - Check-out & departure"
        lines.append(header)

        if day['hotel']:
            stay = f"  Stay: {day['hotel']['name']}"
            if day['roomType']:
                stay += f", {day['roomType']['name']} x{day['roomsNeeded']}"
            if day['mealPlanLabel']:
                stay += f" ({day['mealPlanLabel']})"
            lines.append(stay)

        if day['sightseeingSpots']:
            names = ", ".join(spot['name'] for spot in day['sightseeingSpots'])
            lines.append(f"  Sightseeing: {names}")

    lines.append("")
    if quote['fleet']:
        vehicles = ", ".join(f"{item['count']} x {item['name']}" for item in quote['fleet'])
        lines.append(f"Transport: {vehicles}")
    lines.append(f"Total: {format_money(pricing['finalTotal'])}")
    lines.append(f"Per person: {format_money(pricing['perPerson'])}")
    return "\n".join(lines)


# =====================================================
# PDF EXPORT
# =====================================================

def pdf_filename(guest_name: str, destination: str, pax: int) -> str:
    safe_name = re.sub(r'[^a-zA-Z0-9]', '_', guest_name or 'Guest')
    safe_dest = re.sub(r'[^a-zA-Z0-9]', '_', (destination or 'Trip').title())
    return f"{safe_name}_{safe_dest}_Itinerary_{pax}Pax.pdf"


def quote_sections(quote: Dict) -> List[Dict]:
    """
    Ordered logical blocks of the document: cover, one block per day,
    fleet, pricing. Each block is kept whole on a page.
    """
    sections = [{'kind': 'cover', 'data': quote}]
    sections.extend({'kind': 'day', 'data': day} for day in quote['days'])
    sections.append({'kind': 'fleet', 'data': quote['fleet']})
    sections.append({'kind': 'pricing', 'data': quote['pricing']})
    return sections


def _cover_flowables(quote: Dict, styles) -> List:
    package = quote['package']
    return [
        Paragraph(escape(package['name']), styles['Title']),
        Paragraph(f"Prepared for {escape(quote['guestName'])}", styles['Heading3']),
        Paragraph(
            f"{quote['pax']} traveller(s) · {package['nights']} nights / {package['days']} days · "
            f"from {quote['startDate']}",
            styles['Normal']
        ),
        Spacer(1, 8 * mm),
    ]


def _day_flowables(day: Dict, styles) -> List:
    title = f"Day {day['dayNumber']} · {day['date']} · {escape(day['city'])}"
    if day['isDeparture']:
        title += " · Departure"
    flowables = [Paragraph(title, styles['Heading2'])]

    if day['hotel']:
        stay = f"<b>Stay:</b> {escape(day['hotel']['name'])}"
        if day['roomType']:
            stay += f", {escape(day['roomType']['name'])} × {day['roomsNeeded']}"
        if day['mealPlanLabel']:
            stay += f" ({escape(day['mealPlanLabel'])})"
        flowables.append(Paragraph(stay, styles['Normal']))

    for spot in day['sightseeingSpots']:
        text = f"<b>{escape(spot['name'])}</b>"
        if spot.get('desc'):
            text += f": {escape(spot['desc'])}"
        flowables.append(Paragraph(text, styles['BodyText']))

    flowables.append(Spacer(1, 5 * mm))
    return flowables


def _fleet_flowables(fleet: List[Dict], styles) -> List:
    if not fleet:
        return []
    rows = [['Vehicle', 'Count']] + [[item['name'], str(item['count'])] for item in fleet]
    table = Table(rows, colWidths=[120 * mm, 30 * mm])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
    ]))
    return [Paragraph("Transport", styles['Heading2']), table, Spacer(1, 5 * mm)]


def _pricing_flowables(pricing: Dict, styles) -> List:
    rows = [
        ['Package total', format_money(pricing['finalTotal'], 'INR ')],
        ['Per person', format_money(pricing['perPerson'], 'INR ')],
    ]
    table = Table(rows, colWidths=[120 * mm, 30 * mm])
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('LINEABOVE', (0, 0), (-1, 0), 1, colors.black),
    ]))
    return [Paragraph("Price", styles['Heading2']), table]


def render_pdf(quote: Dict) -> bytes:
    styles = getSampleStyleSheet()
    builders = {
        'cover': _cover_flowables,
        'day': _day_flowables,
        'fleet': _fleet_flowables,
        'pricing': _pricing_flowables,
    }

    story = []
    for section in quote_sections(quote):
        flowables = builders[section['kind']](section['data'], styles)
        if flowables:
            story.append(KeepTogether(flowables))

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4,
        leftMargin=15 * mm, rightMargin=15 * mm, topMargin=15 * mm, bottomMargin=15 * mm,
        title=quote['package']['name'], author=quote['guestName'],
    )
    doc.build(story)

    pdf_bytes = buffer.getvalue()
    logger.info(f"Rendered quote PDF: {len(quote['days'])} day(s), {len(pdf_bytes)} bytes")
    return pdf_bytes
