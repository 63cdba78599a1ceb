"""
Marketplace scraper.

Assembles the scan pipeline for one marketplace:

    BrowserSession -> SearchNavigator -> ResultCardExtractor -> filter_by_criteria

and the booked-loads variant:

    BrowserSession -> jobs page -> BookedLoadExtractor
"""

import asyncio
import logging
from typing import List, Optional, Tuple, Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .base import Colors, ScrapedLoad, SearchCriteria
from .config import MarketplaceConfig, get_marketplace_config
from .crawlers.browser import BrowserSession
from .crawlers.http_client import MarketplaceHttpClient
from .extractors import ResultCardExtractor, BookedLoadExtractor
from .filters import filter_by_criteria
from .navigator import SearchNavigator
from .utils.normalizers import normalize_booking_type

logger = logging.getLogger(__name__)


def build_criteria(row: Any) -> SearchCriteria:
    """Map a search_criteria row (or any object with the same attributes) to the pipeline view."""
    def attr(name):
        return getattr(row, name, None)

    min_rate = attr('min_rate')
    return SearchCriteria(
        id=str(attr('id')) if attr('id') is not None else None,
        origin_city=attr('origin_city'),
        origin_state=attr('origin_state'),
        pickup_distance=attr('pickup_distance'),
        dest_city=attr('dest_city'),
        destination_state=attr('destination_state'),
        equipment_type=attr('equipment_type'),
        min_rate=float(min_rate) if min_rate is not None else None,
        min_weight=attr('min_weight'),
        max_weight=attr('max_weight'),
        booking_type=normalize_booking_type(attr('booking_type')),
        pickup_date=attr('pickup_date'),
        is_backhaul=bool(attr('is_backhaul')),
    )


class MarketplaceScraper:
    """
    Runs scans against one marketplace.

    Usage:
        scraper = MarketplaceScraper()
        loads = await scraper.scrape_loads(email, cookie, criteria)
        booked = await scraper.scrape_booked_loads(cookie)
    """

    def __init__(
        self,
        config: Optional[MarketplaceConfig] = None,
        headless: bool = True,
        session_factory=BrowserSession,
    ):
        """
        Args:
            config: Marketplace configuration (defaults to cloudtrucks)
            headless: Run the browser headless
            session_factory: Callable(config, cookie, headless=...) returning an
                async context manager with the BrowserSession interface
        """
        self.config = config or get_marketplace_config('cloudtrucks')
        self.headless = headless
        self.session_factory = session_factory
        self.result_extractor = ResultCardExtractor(self.config.result_cards)
        self.booked_extractor = BookedLoadExtractor(self.config.booked_cards)
        self.logger = logging.getLogger(f"scraper.{self.config.short_name}")

    def _navigator(self, page) -> SearchNavigator:
        return SearchNavigator(
            page,
            selectors=self.config.search_form,
            element_timeout=self.config.element_timeout,
            results_timeout=self.config.results_timeout,
            default_radius=self.config.default_radius_mi,
        )

    async def scrape_loads(
        self,
        email: str,
        cookie: str,
        criteria: SearchCriteria,
        csrf_token: str = '',
    ) -> List[ScrapedLoad]:
        """
        Search the marketplace for one criteria.

        Returns [] when the search page or its results do not load in time.

        Raises:
            SessionExpiredError: The cookie no longer authenticates.
        """
        self.logger.info(
            f"{Colors.cyan('❯❯❯')} Scanning {criteria.origin_query or 'Any'} -> "
            f"{criteria.destination_query or 'Any'} (criteria {criteria.id})"
        )

        async with self.session_factory(self.config, cookie, headless=self.headless) as session:
            await session.verify_authenticated()
            try:
                await session.goto(self.config.search_url)
            except PlaywrightTimeoutError as e:
                self.logger.warning(f"Search page did not load ({e}), returning empty result")
                return []

            if not await self._navigator(session.page).run(criteria):
                self.logger.info("No results rendered, returning empty result")
                return []

            html = await session.content()

        loads = self.result_extractor.extract(html)
        filtered = filter_by_criteria(loads, criteria)
        self.logger.info(
            f"   {Colors.green(f'{len(filtered)} loads')} after filters "
            f"({len(loads)} extracted)"
        )
        return filtered

    async def scrape_booked_loads(self, cookie: str) -> List[ScrapedLoad]:
        """
        Scrape booked/active loads from the jobs page.

        Raises:
            SessionExpiredError: The cookie no longer authenticates.
        """
        async with self.session_factory(self.config, cookie, headless=self.headless) as session:
            await session.goto(self.config.jobs_url)
            # Job cards hydrate after network idle
            await asyncio.sleep(self.config.settle_seconds)
            html = await session.content()

        loads = self.booked_extractor.extract(html)
        self.logger.info(f"Found {len(loads)} booked loads")
        return loads

    async def verify_session(self, cookie: str, csrf_token: str = '') -> Tuple[bool, Optional[str]]:
        """Cheap HTTP check of a stored session, used by the credential health check."""
        client = MarketplaceHttpClient(self.config)
        return await client.check_session(cookie, csrf_token)
