"""
Browser session manager.

Launches an isolated headless Chromium context per scan, injects the stored
marketplace session cookie and verifies the session is still authenticated.
A session is an async context manager: the page, context, browser and the
Playwright driver are torn down on every exit path.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from ..base import BrowserLaunchError, SessionExpiredError
from ..config import MarketplaceConfig

logger = logging.getLogger(__name__)

USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

LAUNCH_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-gpu',
]


def clean_cookie_value(value: str, name: str) -> str:
    """Strip a leading `name=` if the user pasted the whole cookie pair."""
    if not value:
        return ''
    value = value.strip()
    if value.startswith(f"{name}="):
        return value[len(name) + 1:]
    return value


class BrowserSession:
    """
    One authenticated browser context for one scan.

    Usage:
        async with BrowserSession(config, cookie) as session:
            await session.verify_authenticated()
            html = await session.content()
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        session_cookie: str,
        headless: bool = True,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            config: Marketplace configuration (cookie name/domain, URLs)
            session_cookie: Decrypted session cookie value
            headless: Run browser in headless mode
            timeout: Navigation timeout in seconds (defaults to config)
        """
        self.config = config
        self.session_cookie = clean_cookie_value(session_cookie, config.session_cookie_name)
        self.headless = headless
        self.timeout = timeout if timeout is not None else config.navigation_timeout
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not open")
        return self._page

    async def open(self):
        """Launch the browser, inject the session cookie and open a page."""
        try:
            self._playwright = await async_playwright().start()
            logger.debug("Launching Chromium browser...")
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
                handle_sigint=False,
                handle_sigterm=False,
                handle_sighup=False,
            )
            self._context = await self._browser.new_context(
                viewport={'width': 1920, 'height': 1080},
                user_agent=USER_AGENT,
                locale='en-US',
            )
            await self._context.add_cookies([{
                'name': self.config.session_cookie_name,
                'value': self.session_cookie,
                'domain': self.config.session_cookie_domain,
                'path': '/',
                'secure': True,
                'httpOnly': True,
            }])
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self.timeout * 1000)
        except Exception as e:
            logger.error(f"Failed to initialize browser: {e}")
            await self.close()
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

    async def close(self):
        """Tear down page, context, browser and driver. Never raises."""
        cleanup_timeout = 2.0

        for name, closer in (
            ('page', self._page.close if self._page else None),
            ('context', self._context.close if self._context else None),
            ('browser', self._browser.close if self._browser else None),
            ('playwright', self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await asyncio.wait_for(closer(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{name.capitalize()} close timed out, forcing cleanup")
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    def is_login_url(self, url: str) -> bool:
        """True when url points at the marketplace login page."""
        return self.config.login_path in (urlparse(url or '').path or '')

    async def goto(self, url: str, wait_until: str = 'networkidle'):
        """Navigate; raises SessionExpiredError if the marketplace bounced us to login."""
        logger.debug(f"Navigating to {url}")
        await self.page.goto(url, wait_until=wait_until, timeout=int(self.timeout * 1000))
        if self.is_login_url(self.page.url):
            raise SessionExpiredError()

    async def verify_authenticated(self, url: Optional[str] = None):
        """
        Trust but verify: load an authenticated page and check for a login redirect.

        Raises:
            SessionExpiredError: The stored cookie no longer authenticates.
        """
        await self.goto(url or self.config.jobs_url)
        logger.debug("Session verified")

    async def content(self) -> str:
        return await self.page.content()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
