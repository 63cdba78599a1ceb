"""
Result extractors.

Extractors turn a rendered results page into ScrapedLoad records. Each
extractor is driven by a selector strategy from the marketplace config, so
markup drift is fixed by swapping selectors rather than rewriting parsing.

Extraction is best effort at two levels:
- per field: a missing or malformed field becomes '' / 0 and is recorded in
  ScrapedLoad.missing_fields
- per card: a card that raises is logged and skipped, the batch continues
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Union, Sequence

from bs4 import BeautifulSoup, Tag

from .base import ScrapedLoad
from .config import ResultCardSelectors, BookedCardSelectors
from .utils.extractors import (
    node_text,
    parse_currency,
    parse_details_blob,
    extract_distance_miles,
    make_synthetic_id,
)

logger = logging.getLogger(__name__)

Markup = Union[str, BeautifulSoup, Tag]


def _soup(markup: Markup) -> Union[BeautifulSoup, Tag]:
    if isinstance(markup, (BeautifulSoup, Tag)):
        return markup
    return BeautifulSoup(markup or '', 'html.parser')


class Extractor(ABC):
    """Reads result cards out of a rendered page."""

    def extract(self, markup: Markup) -> List[ScrapedLoad]:
        soup = _soup(markup)
        cards = self.find_cards(soup)
        loads = []
        for idx, card in enumerate(cards):
            try:
                load = self.extract_card(card)
            except Exception as e:
                logger.warning(f"Skipping card {idx}: {e}")
                continue
            if load is not None:
                loads.append(load)
        logger.debug(f"{type(self).__name__}: {len(loads)}/{len(cards)} cards extracted")
        return loads

    @abstractmethod
    def find_cards(self, soup) -> List[Tag]:
        """Return the card elements on the page."""

    @abstractmethod
    def extract_card(self, card: Tag) -> Optional[ScrapedLoad]:
        """Extract one card. Return None to drop it."""


class ResultCardExtractor(Extractor):
    """
    Search results page.

    Card layout (selectors from ResultCardSelectors):
        [data-testid="load-card" data-load-id=...]
            .load-card__location   origin
            .load-card__location   destination
            .load-card__rate       "$2,500"
            .load-card__rpm        "$2.60/mi"
            .load-card__details    "Dry Van | 962 mi | 42,000 lbs"
            .load-card__broker     "Acme Logistics"
            .load-card__pickup     "Mon, Oct 21"
    """

    def __init__(self, selectors: Optional[ResultCardSelectors] = None):
        self.selectors = selectors or ResultCardSelectors()

    def find_cards(self, soup) -> List[Tag]:
        return soup.select(self.selectors.card)

    def extract_card(self, card: Tag) -> Optional[ScrapedLoad]:
        s = self.selectors
        missing = []

        locations = card.select(s.location)
        origin = node_text(locations[0]) if len(locations) > 0 else ''
        destination = node_text(locations[1]) if len(locations) > 1 else ''
        if not origin:
            missing.append('origin')
        if not destination:
            missing.append('destination')

        rate = parse_currency(node_text(card.select_one(s.rate)))
        if rate is None:
            missing.append('rate')
            rate = 0.0

        equipment, distance, weight = parse_details_blob(node_text(card.select_one(s.details)))
        if not equipment:
            missing.append('equipment')
            equipment = 'Unknown'
        if distance is None:
            missing.append('distance')
            distance = 0.0
        if weight is None:
            missing.append('weight')
            weight = 0.0

        rate_per_mile = parse_currency(node_text(card.select_one(s.rate_per_mile)))
        if rate_per_mile is None:
            rate_per_mile = round(rate / distance, 2) if distance > 0 else 0.0

        broker = node_text(card.select_one(s.broker))
        if not broker:
            missing.append('broker')
            broker = 'Unknown'

        pickup_date = node_text(card.select_one(s.pickup_date))
        if not pickup_date:
            missing.append('pickup_date')

        load_id = (card.get(s.id_attribute) or '').strip()
        if not load_id:
            load_id = make_synthetic_id(origin, destination, rate)

        return ScrapedLoad(
            id=load_id,
            origin=origin,
            destination=destination,
            rate=rate,
            rate_per_mile=rate_per_mile,
            distance=distance,
            weight=weight,
            equipment=equipment,
            broker=broker,
            pickup_date=pickup_date,
            missing_fields=missing,
        )


def _class_matcher(substrings: Sequence[str]):
    """Predicate matching any element whose class attribute contains one of the substrings."""
    def match(node) -> bool:
        if not isinstance(node, Tag):
            return False
        classes = ' '.join(node.get('class') or [])
        return any(sub in classes for sub in substrings)
    return match


def _find_all_by_class(card: Tag, substrings: Sequence[str]) -> List[Tag]:
    return card.find_all(_class_matcher(substrings))


def _find_by_class(card: Tag, substrings: Sequence[str]) -> Optional[Tag]:
    found = _find_all_by_class(card, substrings)
    return found[0] if found else None


class BookedLoadExtractor(Extractor):
    """
    "Your Jobs" page.

    Fields are located by class-name substrings because the page ships
    generated class names. Records missing both origin and destination are
    dropped as malformed.
    """

    def __init__(self, selectors: Optional[BookedCardSelectors] = None):
        self.selectors = selectors or BookedCardSelectors()

    def find_cards(self, soup) -> List[Tag]:
        # Child elements often share the card's class prefix; keep outermost matches only
        found = soup.find_all(_class_matcher(self.selectors.card))
        found_ids = {id(node) for node in found}
        return [node for node in found if not any(id(p) in found_ids for p in node.parents)]

    def extract_card(self, card: Tag) -> Optional[ScrapedLoad]:
        s = self.selectors
        missing = []

        status = node_text(_find_by_class(card, s.status)) or 'Unknown'

        locations = _find_all_by_class(card, s.location)
        origin = node_text(locations[0]) if len(locations) > 0 else ''
        destination = node_text(locations[1]) if len(locations) > 1 else ''
        if not origin and not destination:
            return None
        if not origin:
            missing.append('origin')
        if not destination:
            missing.append('destination')

        rate = parse_currency(node_text(_find_by_class(card, s.rate)))
        if rate is None:
            missing.append('rate')
            rate = 0.0

        pickup_date = node_text(_find_by_class(card, s.date))
        if not pickup_date:
            time_node = card.find('time')
            pickup_date = node_text(time_node)
        if not pickup_date:
            missing.append('pickup_date')

        details_text = node_text(_find_by_class(card, s.details))
        parts = re.split(r'[|•·]', details_text)
        equipment = parts[0].strip() if parts and parts[0].strip() else ''
        if not equipment:
            missing.append('equipment')
            equipment = 'Dry Van'

        distance = extract_distance_miles(details_text)
        if distance is None:
            missing.append('distance')
            distance = 0.0

        broker = node_text(_find_by_class(card, s.broker))
        if not broker:
            missing.append('broker')
            broker = 'Unknown'

        # Job cards never show weight
        missing.append('weight')

        id_text = node_text(_find_by_class(card, s.load_id))
        load_id = re.sub(r'[^0-9]', '', id_text)
        if not load_id:
            load_id = make_synthetic_id(origin, destination, rate)

        return ScrapedLoad(
            id=load_id,
            origin=origin,
            destination=destination,
            rate=rate,
            rate_per_mile=round(rate / distance, 2) if distance > 0 else 0.0,
            distance=distance,
            weight=0.0,
            equipment=equipment,
            broker=broker,
            pickup_date=pickup_date,
            status=status,
            missing_fields=missing,
        )
