"""
Lightweight HTTP session checks.

Pinging a cheap authenticated endpoint is far faster than launching a
browser, so the credential health check uses this client and only scans
pay for a full browser session.
"""

import asyncio
import logging
from typing import Optional, Dict, Tuple

import httpx

from ..config import MarketplaceConfig
from .browser import USER_AGENT, clean_cookie_value

logger = logging.getLogger(__name__)


class MarketplaceHttpClient:
    """
    Async HTTP client for authenticated marketplace endpoints.

    Provides retries with exponential backoff on transport errors; HTTP
    status codes are returned to the caller, not retried.
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        timeout: float = 15.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Marketplace configuration
            timeout: Request timeout in seconds
            max_retries: Attempts per request on transport errors
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self.headers = {
            'User-Agent': USER_AGENT,
            'Accept': 'application/json, text/plain, */*',
            'Origin': config.base_url,
        }

    def _auth(self, cookie: str, csrf_token: str = '') -> Tuple[Dict[str, str], Dict[str, str]]:
        cookies = {self.config.session_cookie_name: clean_cookie_value(cookie, self.config.session_cookie_name)}
        headers = dict(self.headers)
        if csrf_token and self.config.csrf_cookie_name:
            csrf = clean_cookie_value(csrf_token, self.config.csrf_cookie_name)
            cookies[self.config.csrf_cookie_name] = csrf
            headers['X-CSRFToken'] = csrf
        return cookies, headers

    async def get(self, url: str, cookie: str, csrf_token: str = '') -> httpx.Response:
        """
        GET an authenticated URL.

        Raises:
            httpx.HTTPError: On transport failure after retries
        """
        cookies, headers = self._auth(cookie, csrf_token)
        last_error = None

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            cookies=cookies,
            follow_redirects=False,
            transport=self._transport,
        ) as client:
            for attempt in range(self.max_retries):
                try:
                    return await client.get(url)
                except httpx.TransportError as e:
                    last_error = e
                    logger.warning(f"Attempt {attempt + 1}/{self.max_retries} failed for {url}: {e}")
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(2 ** attempt)

        raise last_error

    async def check_session(self, cookie: str, csrf_token: str = '') -> Tuple[bool, Optional[str]]:
        """
        Returns (valid, error). A redirect to the login page or any non-2xx
        status counts as invalid; transport errors are reported, not raised.
        """
        try:
            response = await self.get(self.config.session_check_url, cookie, csrf_token)
        except httpx.HTTPError as e:
            return False, str(e)

        if response.is_redirect and self.config.login_path in response.headers.get('location', ''):
            return False, 'Redirected to login'
        if response.is_success:
            return True, None
        return False, f"Status {response.status_code}"
