"""
Load detail normalization.

Stored load details come in several historical shapes: DOM-scraped records
(`origin`, `rate`, `broker`), API-era records (`origin_city`, `trip_rate`,
`broker_name`, `trip_distance_mi`) and hand-saved records mixing both.
These functions coerce every variant into one normalized shape.
"""

import logging
from typing import Optional, Dict, Any, List, Iterable

from .extractors import parse_currency, split_city_state, clean_text

logger = logging.getLogger(__name__)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among keys."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, '', [], 0, '0'):
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return parse_currency(str(value))


def normalize_equipment(value: Any) -> List[str]:
    """
    Equipment may be a string, a delimited string or a list.

    Examples:
        "Dry Van" -> ["Dry Van"]
        ["DRY_VAN", "REEFER"] -> ["Dry Van", "Reefer"]
        None -> []
    """
    if not value:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = [value]
    else:
        items = value
    result = []
    for item in items:
        text = clean_text(str(item)) if item is not None else ''
        if not text:
            continue
        if '_' in text or text.isupper():
            text = text.replace('_', ' ').title()
        result.append(text)
    return result


def normalize_booking_type(booking_type: Optional[str]) -> str:
    """
    Normalize booking type to ALL / INSTANT / STANDARD.

    Examples:
        None -> ALL
        "any" -> ALL
        "instant" -> INSTANT
    """
    if not booking_type:
        return 'ALL'
    upper = booking_type.strip().upper()
    if upper in ('INSTANT', 'STANDARD'):
        return upper
    return 'ALL'


def normalize_location(raw: Dict[str, Any], prefix: str) -> Dict[str, Optional[str]]:
    """
    Resolve city/state for one end of a load.

    `prefix` is "origin" or "dest". Structured fields win over free text.
    """
    if prefix == 'origin':
        city = _first(raw, 'origin_city')
        state = _first(raw, 'origin_state')
        text = _first(raw, 'origin')
    else:
        city = _first(raw, 'dest_city', 'destination_city')
        state = _first(raw, 'dest_state', 'destination_state')
        text = _first(raw, 'destination', 'dest')

    if (not city or not state) and isinstance(text, str):
        parsed_city, parsed_state = split_city_state(text)
        city = city or parsed_city
        state = state or parsed_state

    if not text and (city or state):
        text = ', '.join(p for p in (city, state) if p)

    return {'city': city, 'state': state, 'text': text}


def normalize_load_details(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coerce a stored load details blob into the normalized shape.

    Unknown keys are preserved. Returns {'error': ...} for non-dict input.
    """
    if not raw or not isinstance(raw, dict):
        return {'error': 'Invalid load details'}

    origin = normalize_location(raw, 'origin')
    dest = normalize_location(raw, 'dest')

    actual_rate = _to_float(_first(raw, 'rate', 'trip_rate'))
    estimated_rate = _to_float(_first(raw, 'estimated_rate'))
    rate = actual_rate if actual_rate is not None else estimated_rate

    distance = _to_float(_first(raw, 'distance', 'trip_distance_mi'))
    weight = _to_float(_first(raw, 'weight', 'truck_weight_lb'))

    rate_per_mile = _to_float(_first(raw, 'rate_per_mile', 'rpm'))
    if rate_per_mile is None and rate and distance:
        rate_per_mile = round(rate / distance, 2)

    normalized = dict(raw)
    normalized.update({
        'origin': origin['text'],
        'origin_city': origin['city'],
        'origin_state': origin['state'],
        'destination': dest['text'],
        'dest_city': dest['city'],
        'dest_state': dest['state'],
        'rate': rate,
        'distance': distance,
        'weight': weight,
        'rate_per_mile': rate_per_mile,
        'equipment': normalize_equipment(_first(raw, 'equipment', 'equipment_type')),
        'broker_name': _first(raw, 'broker_name', 'broker'),
        'pickup_date': _first(raw, 'pickup_date', 'origin_pickup_date', 'date_start'),
        'origin_address': _first(raw, 'origin_address', 'location_address1'),
        'dest_address': _first(raw, 'dest_address', 'location_address2'),
        'is_estimated_rate': actual_rate is None and estimated_rate is not None,
    })
    return normalized


def enrich_loads(rows: Iterable[Dict[str, Any]], details_key: str = 'details') -> List[Dict[str, Any]]:
    """
    Normalize the details of each row, isolating failures per row.

    A row whose details cannot be normalized keeps its original details
    (or an error marker) and the rest of the batch is unaffected.
    """
    enriched = []
    for row in rows:
        try:
            enriched.append({**row, details_key: normalize_load_details(row.get(details_key))})
        except Exception as e:
            logger.error(f"Failed to normalize load {row.get('marketplace_load_id', '?')}: {e}")
            enriched.append({**row, details_key: row.get(details_key) or {'error': 'Failed to enrich load'}})
    return enriched

