"""
Tests for the HTTP session check client.
"""

import asyncio

import httpx
import pytest

from scrapers.config import get_marketplace_config
from scrapers.crawlers.http_client import MarketplaceHttpClient


@pytest.fixture
def config():
    return get_marketplace_config('cloudtrucks')


def make_client(config, handler, **kwargs):
    return MarketplaceHttpClient(config, transport=httpx.MockTransport(handler), **kwargs)


class TestCheckSession:
    """Test session validity outcomes."""

    def test_success_is_valid(self, config):
        client = make_client(config, lambda request: httpx.Response(200, json={'results': []}))

        assert asyncio.run(client.check_session("abc")) == (True, None)

    def test_login_redirect_is_invalid(self, config):
        def handler(request):
            return httpx.Response(302, headers={'location': '/login?next=/api/v1/saved-searches/'})

        client = make_client(config, handler)

        assert asyncio.run(client.check_session("abc")) == (False, 'Redirected to login')

    def test_error_status_is_invalid(self, config):
        client = make_client(config, lambda request: httpx.Response(500))

        assert asyncio.run(client.check_session("abc")) == (False, 'Status 500')

    def test_transport_error_reported(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(config, handler, max_retries=1)

        valid, error = asyncio.run(client.check_session("abc"))

        assert valid is False
        assert "connection refused" in error


class TestAuthHeaders:

    def test_cookie_and_csrf_sent(self, config):
        seen = {}

        def handler(request):
            seen['url'] = str(request.url)
            seen['cookie'] = request.headers.get('cookie', '')
            seen['csrf'] = request.headers.get('x-csrftoken')
            return httpx.Response(200)

        client = make_client(config, handler)
        asyncio.run(client.check_session("ct_session=abc123", "csrf-value"))

        assert seen['url'] == config.session_check_url
        assert 'ct_session=abc123' in seen['cookie']
        assert seen['csrf'] == 'csrf-value'

    def test_no_csrf_header_without_token(self, config):
        seen = {}

        def handler(request):
            seen['csrf'] = request.headers.get('x-csrftoken')
            return httpx.Response(200)

        client = make_client(config, handler)
        asyncio.run(client.check_session("abc123"))

        assert seen['csrf'] is None
