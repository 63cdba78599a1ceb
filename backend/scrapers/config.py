"""
Marketplace configurations.

Each marketplace has a MarketplaceConfig that defines:
- URLs for the search, jobs and login pages
- The session cookie name/domain the stored cookie is injected under
- CSS selectors for the search form, result cards and job cards
- Timeouts for navigation, element waits and the results container

None of this is a documented API. The selectors track the marketplace's
rendered front end and are the first thing to update when extraction breaks.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple


# ============================================================
# SELECTOR STRATEGIES
# ============================================================

@dataclass(frozen=True)
class SearchFormSelectors:
    """Selectors used by the search navigator."""
    origin_input: str = 'input[name="origin"]'
    destination_input: str = 'input[name="destination"]'
    autocomplete_option: str = '[role="listbox"] [role="option"]'
    radius_select: str = 'select[name="origin_radius"]'
    search_button: str = 'button[type="submit"]'
    results_container: str = '[data-testid="search-results"]'


@dataclass(frozen=True)
class ResultCardSelectors:
    """Fixed selectors for search result cards."""
    card: str = '[data-testid="load-card"]'
    location: str = '.load-card__location'
    rate: str = '.load-card__rate'
    rate_per_mile: str = '.load-card__rpm'
    details: str = '.load-card__details'
    broker: str = '.load-card__broker'
    pickup_date: str = '.load-card__pickup'
    id_attribute: str = 'data-load-id'


@dataclass(frozen=True)
class BookedCardSelectors:
    """
    Class-name substrings for the "Your Jobs" page.

    The jobs page uses generated class names (e.g. `JobListItem_root__x7a2`),
    so cards and fields are matched on substrings rather than exact classes.
    Each field lists candidate substrings in priority order.
    """
    card: Tuple[str, ...] = ('JobListItem',)
    status: Tuple[str, ...] = ('Status',)
    location: Tuple[str, ...] = ('Location', 'location')
    rate: Tuple[str, ...] = ('Price', 'price', 'Rate')
    date: Tuple[str, ...] = ('DateTime', 'Date')
    details: Tuple[str, ...] = ('Details', 'details')
    broker: Tuple[str, ...] = ('Broker', 'broker', 'Company')
    load_id: Tuple[str, ...] = ('LoadId', 'loadId', 'ID')


@dataclass
class MarketplaceConfig:
    """Configuration for a freight marketplace."""
    name: str                           # Display name
    short_name: str                     # Logger / identifier suffix
    base_url: str                       # Marketplace origin
    search_url: str                     # Load search page
    jobs_url: str                       # Booked loads ("Your Jobs") page
    login_path: str                     # Path the marketplace redirects to when logged out
    session_cookie_name: str            # Cookie carrying the session
    session_cookie_domain: str          # Domain the cookie is set on
    session_check_url: str              # Cheap authenticated endpoint for HTTP session pings
    csrf_cookie_name: str = ''          # Cookie carrying the CSRF token, if any
    default_radius_mi: int = 50         # Platform default pickup radius
    navigation_timeout: float = 60.0    # Seconds for page.goto
    element_timeout: float = 5.0        # Seconds for best-effort UI waits
    results_timeout: float = 20.0       # Seconds for the results container
    settle_seconds: float = 3.0         # Pause after the jobs page loads
    search_form: SearchFormSelectors = field(default_factory=SearchFormSelectors)
    result_cards: ResultCardSelectors = field(default_factory=ResultCardSelectors)
    booked_cards: BookedCardSelectors = field(default_factory=BookedCardSelectors)
    enabled: bool = True


# ============================================================
# MARKETPLACE CONFIGURATIONS
# ============================================================

MARKETPLACES: Dict[str, MarketplaceConfig] = {
    'cloudtrucks': MarketplaceConfig(
        name='CloudTrucks',
        short_name='CT',
        base_url='https://app.cloudtrucks.com',
        search_url='https://app.cloudtrucks.com/search/',
        jobs_url='https://app.cloudtrucks.com/jobs/',
        login_path='/login',
        session_cookie_name='ct_session',
        session_cookie_domain='.cloudtrucks.com',
        session_check_url='https://app.cloudtrucks.com/api/v1/saved-searches/',
        csrf_cookie_name='__Secure-csrftoken-v2',
    ),
}


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_marketplace_config(key: str) -> MarketplaceConfig:
    """
    Get configuration for a marketplace by its key.

    Raises:
        ValueError: If key is not found
    """
    if key not in MARKETPLACES:
        valid_keys = ', '.join(sorted(MARKETPLACES.keys()))
        raise ValueError(f"Unknown marketplace: '{key}'. Valid marketplaces: {valid_keys}")
    return MARKETPLACES[key]


def get_enabled_marketplaces() -> dict:
    """Get all enabled marketplaces."""
    return {k: v for k, v in MARKETPLACES.items() if v.enabled}
