"""Shared utilities for scrapers."""

from .normalizers import (
    normalize_equipment,
    normalize_booking_type,
    normalize_location,
    normalize_load_details,
    enrich_loads,
)
from .extractors import (
    clean_text,
    parse_number,
    parse_currency,
    parse_details_blob,
    split_city_state,
    make_synthetic_id,
)

__all__ = [
    'normalize_equipment',
    'normalize_booking_type',
    'normalize_location',
    'normalize_load_details',
    'enrich_loads',
    'clean_text',
    'parse_number',
    'parse_currency',
    'parse_details_blob',
    'split_city_state',
    'make_synthetic_id',
]
