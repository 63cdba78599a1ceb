"""Browser and HTTP session layers for marketplace access."""

from .browser import BrowserSession, clean_cookie_value
from .http_client import MarketplaceHttpClient

__all__ = ['BrowserSession', 'MarketplaceHttpClient', 'clean_cookie_value']
