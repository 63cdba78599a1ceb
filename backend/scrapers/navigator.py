"""
Search navigator.

Drives the marketplace search form: location inputs, autocomplete
suggestions, the pickup radius control and the search button. Every
interaction is best effort except the final wait for the results container.
"""

import logging
from typing import Optional

from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from .base import SearchCriteria
from .config import SearchFormSelectors

logger = logging.getLogger(__name__)


class SearchNavigator:
    """Fills the search form for one SearchCriteria and waits for results."""

    def __init__(
        self,
        page: Page,
        selectors: Optional[SearchFormSelectors] = None,
        element_timeout: float = 5.0,
        results_timeout: float = 20.0,
        default_radius: int = 50,
    ):
        self.page = page
        self.selectors = selectors or SearchFormSelectors()
        self.element_timeout_ms = int(element_timeout * 1000)
        self.results_timeout_ms = int(results_timeout * 1000)
        self.default_radius = default_radius

    async def _wait_for(self, selector: str, step: str):
        """Wait for an element; returns None (and logs) when it never appears."""
        try:
            return await self.page.wait_for_selector(selector, timeout=self.element_timeout_ms)
        except PlaywrightTimeoutError:
            logger.info(f"{step}: '{selector}' not found, skipping")
            return None

    async def fill_location(self, selector: str, query: Optional[str], step: str) -> bool:
        """Type a location and pick the first autocomplete suggestion."""
        if not query:
            logger.debug(f"{step}: not set, skipping")
            return False

        field = await self._wait_for(selector, step)
        if field is None:
            return False

        try:
            await field.click()
            await field.fill('')
            await field.type(query, delay=50)
        except PlaywrightError as e:
            logger.info(f"{step}: could not type '{query}' ({e}), skipping")
            return False

        option = await self._wait_for(self.selectors.autocomplete_option, f"{step} autocomplete")
        if option is None:
            return False
        try:
            await option.click()
        except PlaywrightError as e:
            logger.info(f"{step} autocomplete: could not pick a suggestion ({e}), skipping")
            return False
        logger.debug(f"{step}: selected suggestion for '{query}'")
        return True

    async def set_radius(self, radius: Optional[int]) -> bool:
        """Change the pickup radius when it differs from the platform default."""
        if not radius or radius == self.default_radius:
            return False

        control = await self._wait_for(self.selectors.radius_select, 'radius')
        if control is None:
            return False

        try:
            await control.select_option(str(radius))
        except PlaywrightError as e:
            logger.info(f"radius: could not select {radius} mi ({e}), keeping default")
            return False
        logger.debug(f"radius: set to {radius} mi")
        return True

    async def submit(self) -> bool:
        button = await self._wait_for(self.selectors.search_button, 'search')
        if button is None:
            return False
        try:
            await button.click()
        except PlaywrightError as e:
            logger.info(f"search: could not click '{self.selectors.search_button}' ({e}), skipping")
            return False
        return True

    async def wait_for_results(self) -> bool:
        """
        Hard wait for the results container.

        Returns False on timeout: the caller treats that as an empty result.
        """
        try:
            await self.page.wait_for_selector(self.selectors.results_container, timeout=self.results_timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.warning(f"Results container did not appear within {self.results_timeout_ms / 1000:.0f}s")
            return False

    async def run(self, criteria: SearchCriteria) -> bool:
        """Fill the form, search, and report whether results rendered."""
        await self.fill_location(self.selectors.origin_input, criteria.origin_query, 'origin')
        await self.fill_location(self.selectors.destination_input, criteria.destination_query, 'destination')
        await self.set_radius(criteria.pickup_distance)
        await self.submit()
        return await self.wait_for_results()
