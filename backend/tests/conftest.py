"""
Pytest configuration and fixtures for LoadScout tests.
"""

import pytest
from fastapi.testclient import TestClient
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.config import settings
from api.database import Base, get_db
from api.main import app, get_scan_manager
from scrapers.base import ScrapedLoad
from scrapers.manager import ScanJob, ScanManager


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_ENCRYPTION_KEY = "test-encryption-secret"


def override_get_db():
    """Override the get_db dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    """Every test runs with a known ENCRYPTION_KEY unless it removes it."""
    monkeypatch.setattr(settings, "encryption_key", TEST_ENCRYPTION_KEY)
    return TEST_ENCRYPTION_KEY


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


class RecordingScanManager(ScanManager):
    """ScanManager that records submissions instead of scheduling them."""

    def __init__(self):
        super().__init__()
        self.submitted = []

    def submit(self, kind, coro_factory, **meta):
        job = ScanJob(job_id=f"job-{len(self.submitted) + 1}", kind=kind, meta=meta)
        self._jobs[job.job_id] = job
        self.submitted.append((job, coro_factory))
        return job


@pytest.fixture
def scan_manager():
    return RecordingScanManager()


@pytest.fixture(scope="function")
def client(db_session, scan_manager, monkeypatch):
    """Create a test client with database and job manager overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scan_manager] = lambda: scan_manager
    # Background job bodies open their own sessions
    monkeypatch.setattr("api.main.SessionLocal", TestingSessionLocal)

    # Use TestClient directly without context manager for compatibility
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()


# ============================================================
# FAKE SCRAPER
# ============================================================

class FakeScraper:
    """
    Stands in for MarketplaceScraper.

    `loads` is a list, or a callable taking the SearchCriteria; `error` is
    raised from every scrape.
    """

    def __init__(self, loads=None, error=None, booked=None, session_valid=(True, None)):
        self.loads = loads if loads is not None else []
        self.error = error
        self.booked = booked or []
        self.session_valid = session_valid
        self.calls = []

    async def scrape_loads(self, email, cookie, criteria, csrf_token=''):
        self.calls.append(criteria)
        if self.error:
            raise self.error
        if callable(self.loads):
            return self.loads(criteria)
        return list(self.loads)

    async def scrape_booked_loads(self, cookie):
        if self.error:
            raise self.error
        return list(self.booked)

    async def verify_session(self, cookie, csrf_token=''):
        return self.session_valid


@pytest.fixture
def make_scraper():
    return FakeScraper


def make_load(load_id, origin="Chicago, IL", destination="Dallas, TX", rate=2500.0,
              distance=962.0, weight=42000.0, equipment="Dry Van", **kwargs):
    rate_per_mile = kwargs.pop("rate_per_mile", round(rate / distance, 2) if distance else 0.0)
    return ScrapedLoad(
        id=load_id,
        origin=origin,
        destination=destination,
        rate=rate,
        rate_per_mile=rate_per_mile,
        distance=distance,
        weight=weight,
        equipment=equipment,
        **kwargs,
    )


@pytest.fixture
def load_factory():
    return make_load


# ============================================================
# FAKE BROWSER PAGE
# ============================================================

class FakeElement:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    def _act(self, *action):
        error = self.page.broken.get(self.selector)
        if error is not None:
            raise error
        self.page.actions.append(action)

    async def click(self):
        self._act("click", self.selector)

    async def fill(self, value):
        self._act("fill", self.selector, value)

    async def type(self, value, delay=0):
        self._act("type", self.selector, value)

    async def select_option(self, value):
        self._act("select", self.selector, value)


class FakePage:
    """
    Minimal async Page: every selector resolves unless listed in `missing`.

    `broken` maps a selector to the exception its element raises on any action.
    """

    def __init__(self, html="", url="https://app.cloudtrucks.com/search/", missing=(), broken=None):
        self.html = html
        self.url = url
        self.missing = set(missing)
        self.broken = dict(broken or {})
        self.actions = []

    async def wait_for_selector(self, selector, timeout=None):
        if selector in self.missing:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return FakeElement(self, selector)

    async def goto(self, url, wait_until=None, timeout=None):
        self.actions.append(("goto", url))

    async def content(self):
        return self.html


class FakeBrowserSession:
    """Async context manager with the BrowserSession surface, backed by a FakePage."""

    def __init__(self, page, expired=False, goto_error=None):
        self.page = page
        self.expired = expired
        self.goto_error = goto_error
        self.visited = []
        self.closed = False

    def __call__(self, config, cookie, headless=True):
        self.cookie = cookie
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    async def verify_authenticated(self, url=None):
        from scrapers.base import SessionExpiredError
        if self.expired:
            raise SessionExpiredError()

    async def goto(self, url, wait_until='networkidle'):
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def content(self):
        return await self.page.content()


@pytest.fixture
def fake_page():
    return FakePage


@pytest.fixture
def fake_browser_session():
    return FakeBrowserSession


# ============================================================
# HTML FIXTURES
# ============================================================

def result_card(load_id, origin, destination, rate, details, rpm=None, broker="Acme Logistics", pickup="2026-10-21"):
    id_attr = f' data-load-id="{load_id}"' if load_id else ''
    rpm_html = f'<span class="load-card__rpm">{rpm}</span>' if rpm else ''
    return f"""
    <div data-testid="load-card"{id_attr}>
      <div class="load-card__route">
        <span class="load-card__location">{origin}</span>
        <span class="load-card__location">{destination}</span>
      </div>
      <span class="load-card__rate">{rate}</span>
      {rpm_html}
      <div class="load-card__details">{details}</div>
      <span class="load-card__broker">{broker}</span>
      <span class="load-card__pickup">{pickup}</span>
    </div>
    """


def results_page(*cards):
    return f'<html><body><div data-testid="search-results">{"".join(cards)}</div></body></html>'


@pytest.fixture
def three_card_page():
    """Three Dry Van loads out of Chicago."""
    return results_page(
        result_card("CT-1001", "Chicago, IL", "Dallas, TX", "$2,500", "Dry Van | 962 mi | 42,000 lbs", rpm="$2.60/mi"),
        result_card("CT-1002", "Joliet, IL", "Atlanta, GA", "$1,980", "Dry Van | 716 mi | 38,500 lbs"),
        result_card("CT-1003", "Gary, IN", "Denver, CO", "$3,150.50", "Dry Van | 1,004 mi | 40,000 lbs", broker="Summit Freight"),
    )


# ============================================================
# DATABASE FIXTURES
# ============================================================

@pytest.fixture
def sample_credentials(db_session):
    """Stored credentials for user-1."""
    from api.credentials import store_credentials

    return store_credentials(
        db_session,
        "user-1",
        "driver@example.com",
        "ct_session=session-cookie-value",
        "csrf-token-value",
    )


@pytest.fixture
def sample_criteria(db_session):
    """An active fronthaul criteria for user-1."""
    from api.database import SearchCriteria

    criteria = SearchCriteria(
        user_id="user-1",
        origin_city="Chicago",
        origin_state="IL",
        pickup_distance=100,
        equipment_type="Dry Van",
        active=True,
    )
    db_session.add(criteria)
    db_session.commit()
    db_session.refresh(criteria)
    return criteria


@pytest.fixture
def card_html():
    return result_card


@pytest.fixture
def page_html():
    return results_page
