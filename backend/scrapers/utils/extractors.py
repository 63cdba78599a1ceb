"""
Text extraction utilities for scrapers.

These functions pull numbers and identifiers out of rendered card text.
They never raise on bad input: unparseable text yields None so callers can
decide between a zero fallback and recording the field as missing.
"""

import re
import time
from typing import Optional, Tuple, List

from bs4 import Tag


_NUMBER_RE = re.compile(r'-?\d[\d,]*(?:\.\d+)?|-?\.\d+')


def clean_text(value: Optional[str]) -> str:
    """Collapse whitespace (including non-breaking spaces) and strip."""
    if not value:
        return ''
    return ' '.join(value.replace('\xa0', ' ').split())


def node_text(node: Optional[Tag]) -> str:
    """Cleaned text content of a BeautifulSoup node, '' when the node is None."""
    if node is None:
        return ''
    return clean_text(node.get_text(' ', strip=True))


def parse_number(text: Optional[str]) -> Optional[float]:
    """
    Extract the first number from free text.

    Examples:
        "962 mi" -> 962.0
        "42,000 lbs" -> 42000.0
        "Dry Van" -> None
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(',', ''))
    except ValueError:
        return None


def parse_currency(text: Optional[str]) -> Optional[float]:
    """
    Parse currency-formatted text.

    Examples:
        "$2,500" -> 2500.0
        "$2.60/mi" -> 2.6
        "USD 1,250.50" -> 1250.5
    """
    if not text:
        return None
    return parse_number(text.replace('$', ''))


def parse_details_blob(text: Optional[str]) -> Tuple[Optional[str], Optional[float], Optional[float]]:
    """
    Split an "equipment | distance | weight" blob.

    Positional: the first segment is equipment, the second distance, the
    third weight. Any absent or non-numeric segment comes back as None.

    Examples:
        "Dry Van | 962 mi | 42,000 lbs" -> ("Dry Van", 962.0, 42000.0)
        "Reefer | n/a" -> ("Reefer", None, None)
        "" -> (None, None, None)
    """
    if not text:
        return None, None, None
    parts: List[str] = [clean_text(p) for p in text.split('|')]
    equipment = parts[0] if parts and parts[0] else None
    distance = parse_number(parts[1]) if len(parts) > 1 else None
    weight = parse_number(parts[2]) if len(parts) > 2 else None
    return equipment, distance, weight


def extract_distance_miles(text: Optional[str]) -> Optional[float]:
    """Find "<n> mi" anywhere in text."""
    if not text:
        return None
    match = re.search(r'(\d[\d,]*)\s*mi', text)
    if not match:
        return None
    return float(match.group(1).replace(',', ''))


def split_city_state(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a "City, ST" location string.

    Examples:
        "Chicago, IL" -> ("Chicago", "IL")
        "Chicago, IL 60601" -> ("Chicago", "IL")
        "Chicago" -> ("Chicago", None)
    """
    text = clean_text(text)
    if not text:
        return None, None
    if ',' not in text:
        return text, None
    city, rest = text.rsplit(',', 1)
    state_match = re.match(r'\s*([A-Za-z]{2})\b', rest)
    state = state_match.group(1).upper() if state_match else (clean_text(rest) or None)
    return clean_text(city) or None, state


def sanitize_identifier(value: str) -> str:
    """Reduce a string to an identifier-safe [A-Za-z0-9-] form."""
    return re.sub(r'[^a-zA-Z0-9-]', '', value)


def make_synthetic_id(origin: str, destination: str, rate: float, timestamp_ms: Optional[int] = None) -> str:
    """
    Build an ID for a card that carries no marketplace ID.

    Examples:
        ("Chicago, IL", "Dallas, TX", 2500.0, 1700000000000)
            -> "ChicagoIL-DallasTX-2500-1700000000000"
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    rate_text = f"{rate:g}"
    return sanitize_identifier(f"{origin}-{destination}-{rate_text}-{timestamp_ms}")
