"""
Base types for the marketplace scan pipeline.

This module defines the data structures passed between the browser,
navigator, extractor and filter stages, plus the scraper error hierarchy.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field, asdict
from enum import Enum
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


# ============================================================
# ERRORS
# ============================================================

SESSION_EXPIRED_MESSAGE = "Session expired. Please reconnect your account."


class ScraperError(Exception):
    """Base class for scan pipeline failures."""


class SessionExpiredError(ScraperError):
    """The marketplace redirected to its login page: the stored cookie is no longer valid."""

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE):
        super().__init__(message)


class BrowserLaunchError(ScraperError):
    """The headless browser could not be started."""


# ============================================================
# STATUS ENUMS
# ============================================================

class ScanStatus(str, Enum):
    """Scan side channel stored on a criteria row."""
    SCANNING = "scanning"
    SUCCESS = "success"
    ERROR = "error"


class BackhaulStatus(str, Enum):
    """Lifecycle of a suggested backhaul."""
    PENDING = "pending"
    SEARCHING = "searching"
    FOUND = "found"
    NO_RESULTS = "no_results"
    NO_PREFERENCES = "no_preferences"
    ERROR = "error"


class InterestedStatus(str, Enum):
    """Lifecycle of a saved load. Permanent removal deletes the row."""
    INTERESTED = "interested"
    TRASH = "trash"


class ScanScope(str, Enum):
    """Which criteria a user scan covers."""
    ALL = "all"
    FRONTHAUL = "fronthaul"
    BACKHAUL = "backhaul"


# ============================================================
# PIPELINE DATA
# ============================================================

@dataclass
class SearchCriteria:
    """User-defined search constraints as seen by the scraper."""
    id: Optional[str] = None
    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    pickup_distance: Optional[int] = None
    dest_city: Optional[str] = None
    destination_state: Optional[str] = None
    equipment_type: Optional[str] = None
    min_rate: Optional[float] = None
    min_weight: Optional[int] = None
    max_weight: Optional[int] = None
    booking_type: Optional[str] = None
    pickup_date: Optional[str] = None
    is_backhaul: bool = False

    @property
    def origin_query(self) -> Optional[str]:
        """Text typed into the origin location input, or None to skip it."""
        return _location_query(self.origin_city, self.origin_state)

    @property
    def destination_query(self) -> Optional[str]:
        """Text typed into the destination location input, or None to skip it."""
        return _location_query(self.dest_city, self.destination_state)


def _location_query(city: Optional[str], state: Optional[str]) -> Optional[str]:
    city = (city or '').strip()
    state = (state or '').strip()
    if city and state:
        return f"{city}, {state}"
    return city or state or None


@dataclass
class ScrapedLoad:
    """A single freight listing extracted from the marketplace."""
    id: str
    origin: str
    destination: str
    rate: float = 0.0
    rate_per_mile: float = 0.0
    distance: float = 0.0
    weight: float = 0.0
    equipment: str = 'Unknown'
    broker: str = 'Unknown'
    pickup_date: str = ''
    status: Optional[str] = None

    # Fields that could not be read from the page. A zero in `distance` or
    # `weight` is only a real zero when the field name is absent here.
    missing_fields: List[str] = field(default_factory=list)

    def is_known(self, field_name: str) -> bool:
        return field_name not in self.missing_fields

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeResult:
    """Result of a single scan."""
    criteria_id: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime] = None
    total: int = 0
    new: int = 0
    updated: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def saved(self) -> int:
        """Loads upserted by the scan, new or already stored."""
        return self.new + self.updated

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def finish(self, error: Optional[str] = None) -> 'ScrapeResult':
        self.completed_at = datetime.now(timezone.utc)
        self.error = error
        return self

    def to_dict(self) -> Dict:
        return {
            'criteria_id': self.criteria_id,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'total': self.total,
            'new': self.new,
            'updated': self.updated,
            'error': self.error,
            'success': self.success,
        }
