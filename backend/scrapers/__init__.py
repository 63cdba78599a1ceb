"""
Marketplace scraper system for LoadScout.

This module provides the load scanning pipeline:
- Authenticated browser sessions (Playwright + stored session cookie)
- Search form navigation and result extraction (BeautifulSoup)
- Criteria filtering and background scan jobs
"""

from .base import (
    ScrapedLoad,
    ScrapeResult,
    SearchCriteria,
    ScraperError,
    SessionExpiredError,
    BrowserLaunchError,
    ScanStatus,
    ScanScope,
    BackhaulStatus,
    InterestedStatus,
)
from .config import MARKETPLACES, MarketplaceConfig, get_marketplace_config, get_enabled_marketplaces
from .filters import filter_loads, filter_by_criteria
from .manager import ScanManager, ScanJob, JobStatus
from .marketplace import MarketplaceScraper, build_criteria

__all__ = [
    'ScrapedLoad',
    'ScrapeResult',
    'SearchCriteria',
    'ScraperError',
    'SessionExpiredError',
    'BrowserLaunchError',
    'ScanStatus',
    'ScanScope',
    'BackhaulStatus',
    'InterestedStatus',
    'MARKETPLACES',
    'MarketplaceConfig',
    'get_marketplace_config',
    'get_enabled_marketplaces',
    'filter_loads',
    'filter_by_criteria',
    'ScanManager',
    'ScanJob',
    'JobStatus',
    'MarketplaceScraper',
    'build_criteria',
]
