"""
Backhaul suggestions.

When a driver saves a load, the load's destination becomes the origin of a
return trip. For each of the driver's preferred destination states the
marketplace is searched from there, and the best options are stored as a
SuggestedBackhaul that expires after a day.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from api.credentials import get_user_credentials, mark_credentials_invalid
from api.database import InterestedLoad, SuggestedBackhaul, UserPreferences, as_utc, utc_now
from api.scanner import get_scraper
from scrapers.base import (
    BackhaulStatus,
    InterestedStatus,
    ScrapedLoad,
    SearchCriteria as SearchQuery,
    SessionExpiredError,
)
from scrapers.marketplace import MarketplaceScraper
from scrapers.utils.extractors import split_city_state
from scrapers.utils.normalizers import enrich_loads, normalize_equipment, normalize_load_details

logger = logging.getLogger(__name__)

SUGGESTION_TTL = timedelta(hours=24)
TOP_LOADS_LIMIT = 10
RECENT_SAVED_DAYS = 7
MAX_SAVED_LOADS = 20


@dataclass
class BackhaulPreferences:
    preferred_destination_states: List[str] = field(default_factory=list)
    avoid_states: List[str] = field(default_factory=list)
    backhaul_max_deadhead: int = 100
    backhaul_min_rpm: float = 2.0
    preferred_max_weight: Optional[int] = 45000
    preferred_equipment_type: Optional[str] = None
    preferred_pickup_distance: int = 50
    auto_suggest_backhauls: bool = True

    @classmethod
    def from_row(cls, row: Optional[UserPreferences]) -> 'BackhaulPreferences':
        """Preferences from the user's row, with defaults for anything unset."""
        prefs = cls()
        if row is None:
            return prefs
        for name in prefs.__dataclass_fields__:
            value = getattr(row, name, None)
            if value is not None:
                setattr(prefs, name, value)
        prefs.preferred_destination_states = [s.upper() for s in prefs.preferred_destination_states or []]
        prefs.avoid_states = [s.upper() for s in prefs.avoid_states or []]
        return prefs


@dataclass
class BackhaulOutcome:
    success: bool
    loads_found: int = 0
    best_rate: Optional[float] = None
    best_rpm: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BackhaulScanSummary:
    success: bool
    loads_scanned: int = 0
    backhauls_found: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


def calculate_rpm(load: Union[ScrapedLoad, Dict[str, Any]]) -> float:
    """Rate per mile; 0 when the distance is unknown."""
    if isinstance(load, ScrapedLoad):
        if load.rate_per_mile:
            return load.rate_per_mile
        rate, distance = load.rate, load.distance
    else:
        details = normalize_load_details(load)
        rate, distance = details.get('rate') or 0, details.get('distance') or 0
    if not distance:
        return 0.0
    return rate / distance


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip().replace('Z', '+00:00')).date()
    except ValueError:
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None


def estimate_delivery_date(details: Dict[str, Any]) -> Optional[date]:
    """Delivery date of the saved load, else its pickup date + 2 days."""
    delivery = _parse_date(details.get('dest_delivery_date'))
    if delivery:
        return delivery
    pickup = _parse_date(details.get('origin_pickup_date') or details.get('pickup_date'))
    if pickup:
        return pickup + timedelta(days=2)
    return None


def calculate_backhaul_pickup_date(details: Dict[str, Any], today: Optional[date] = None) -> str:
    """
    Earliest pickup date for the return trip, as YYYY-MM-DD.

    Day after delivery when the delivery date is known, else pickup + 2 days,
    else tomorrow.
    """
    delivery = _parse_date(details.get('dest_delivery_date'))
    if delivery:
        return (delivery + timedelta(days=1)).isoformat()

    pickup = _parse_date(details.get('origin_pickup_date') or details.get('pickup_date'))
    if pickup:
        return (pickup + timedelta(days=2)).isoformat()

    return ((today or utc_now().date()) + timedelta(days=1)).isoformat()


def _upsert_suggestion(db: Session, user_id: str, saved_load: InterestedLoad, **fields) -> SuggestedBackhaul:
    row = db.query(SuggestedBackhaul).filter(
        SuggestedBackhaul.user_id == user_id,
        SuggestedBackhaul.saved_load_marketplace_id == saved_load.marketplace_load_id,
    ).first()
    if row is None:
        row = SuggestedBackhaul(user_id=user_id, saved_load_marketplace_id=saved_load.marketplace_load_id)
        db.add(row)

    row.saved_load_id = saved_load.id
    row.last_searched_at = utc_now()
    for name, value in fields.items():
        setattr(row, name, value)
    db.commit()
    return row


def _keep_load(load: ScrapedLoad, prefs: BackhaulPreferences, delivery: Optional[date]) -> bool:
    # Backhaul pickup must come after the saved load is delivered
    pickup = _parse_date(load.pickup_date)
    if delivery and pickup and pickup <= delivery:
        return False

    _, dest_state = split_city_state(load.destination)
    if dest_state and dest_state.upper() in prefs.avoid_states:
        return False

    return calculate_rpm(load) >= (prefs.backhaul_min_rpm or 0)


def _summarize(load: ScrapedLoad) -> Dict[str, Any]:
    dest_city, dest_state = split_city_state(load.destination)
    return {
        'id': load.id,
        'origin': load.origin,
        'destination': load.destination,
        'dest_city': dest_city,
        'dest_state': dest_state,
        'rate': load.rate,
        'distance': load.distance,
        'rpm': round(calculate_rpm(load), 2),
        'equipment': load.equipment,
        'broker': load.broker,
        'pickup_date': load.pickup_date,
    }


async def generate_backhaul_suggestion(
    db: Session,
    user_id: str,
    saved_load: InterestedLoad,
    prefs: Optional[BackhaulPreferences] = None,
    scraper: Optional[MarketplaceScraper] = None,
) -> BackhaulOutcome:
    """
    Search return trips for one saved load and store the suggestion.

    Never raises: failures are stored as an `error` suggestion and reported
    in the outcome.
    """
    prefs = prefs or BackhaulPreferences()
    if not prefs.auto_suggest_backhauls:
        return BackhaulOutcome(success=True)

    details = normalize_load_details(saved_load.details or {})
    dest_city, dest_state = details.get('dest_city'), details.get('dest_state')
    if not dest_city or not dest_state:
        return BackhaulOutcome(success=False, error='Saved load missing destination city/state')

    try:
        target_states = prefs.preferred_destination_states
        if not target_states:
            _upsert_suggestion(
                db, user_id, saved_load,
                origin_city=dest_city,
                origin_state=dest_state,
                target_states=[],
                status=BackhaulStatus.NO_PREFERENCES.value,
                loads_found=0,
            )
            return BackhaulOutcome(success=True, error='No preferred destination states configured')

        _upsert_suggestion(
            db, user_id, saved_load,
            origin_city=dest_city,
            origin_state=dest_state,
            target_states=target_states,
            status=BackhaulStatus.SEARCHING.value,
            error_message=None,
        )

        credentials = get_user_credentials(db, user_id)
        scraper = scraper or get_scraper()
        pickup_date = calculate_backhaul_pickup_date(details)
        equipment = prefs.preferred_equipment_type or next(iter(normalize_equipment(details.get('equipment'))), None)

        found: List[ScrapedLoad] = []
        for state in target_states:
            if state in prefs.avoid_states:
                continue
            query = SearchQuery(
                id=f"backhaul:{saved_load.marketplace_load_id}:{state}",
                origin_city=dest_city,
                origin_state=dest_state,
                pickup_distance=prefs.preferred_pickup_distance or 50,
                destination_state=state,
                equipment_type=equipment,
                max_weight=prefs.preferred_max_weight,
                pickup_date=pickup_date,
                is_backhaul=True,
            )
            try:
                found.extend(await scraper.scrape_loads(
                    credentials.email, credentials.cookie, query, csrf_token=credentials.csrf_token,
                ))
            except SessionExpiredError:
                raise
            except Exception as e:
                logger.error(f"Backhaul search to {state} failed: {e}")

        delivery = estimate_delivery_date(details)
        unique = {}
        for load in found:
            if _keep_load(load, prefs, delivery):
                unique[load.id] = load
        loads = sorted(unique.values(), key=calculate_rpm, reverse=True)

        rates = [load.rate for load in loads]
        rpms = [calculate_rpm(load) for load in loads]
        outcome = BackhaulOutcome(
            success=True,
            loads_found=len(loads),
            best_rate=max(rates) if rates else None,
            best_rpm=max(rpms) if rpms else None,
        )

        _upsert_suggestion(
            db, user_id, saved_load,
            loads_found=len(loads),
            best_rate=outcome.best_rate,
            best_rpm=outcome.best_rpm,
            avg_rate=sum(rates) / len(rates) if rates else None,
            avg_rpm=sum(rpms) / len(rpms) if rpms else None,
            top_loads=[_summarize(load) for load in loads[:TOP_LOADS_LIMIT]],
            status=(BackhaulStatus.FOUND if loads else BackhaulStatus.NO_RESULTS).value,
            expires_at=utc_now() + SUGGESTION_TTL,
        )
        logger.info(f"Found {len(loads)} backhaul options for load {saved_load.marketplace_load_id}")
        return outcome

    except Exception as e:
        db.rollback()
        logger.error(f"Error generating backhaul for load {saved_load.marketplace_load_id}: {e}")
        if isinstance(e, SessionExpiredError):
            mark_credentials_invalid(db, user_id, str(e))
        _upsert_suggestion(
            db, user_id, saved_load,
            origin_city=dest_city,
            origin_state=dest_state,
            status=BackhaulStatus.ERROR.value,
            error_message=str(e),
        )
        return BackhaulOutcome(success=False, error=str(e))


def _needs_scan(suggestion: Optional[SuggestedBackhaul], now: datetime) -> bool:
    if suggestion is None:
        return True
    if suggestion.status == BackhaulStatus.ERROR.value:
        return True
    expires_at = as_utc(suggestion.expires_at)
    return bool(expires_at and expires_at < now)


async def scan_backhauls_for_user(
    db: Session,
    user_id: str,
    scraper: Optional[MarketplaceScraper] = None,
) -> BackhaulScanSummary:
    """
    Refresh suggestions for the user's recently saved loads.

    Loads saved in the last week (at most 20, newest first) are searched
    when they have no suggestion, a failed one, or an expired one.
    """
    prefs = BackhaulPreferences.from_row(
        db.query(UserPreferences).filter(UserPreferences.user_id == user_id).first()
    )
    if not prefs.auto_suggest_backhauls:
        return BackhaulScanSummary(success=True)

    since = utc_now() - timedelta(days=RECENT_SAVED_DAYS)
    saved = (
        db.query(InterestedLoad)
        .filter(
            InterestedLoad.user_id == user_id,
            InterestedLoad.status == InterestedStatus.INTERESTED.value,
            InterestedLoad.created_at >= since,
        )
        .order_by(InterestedLoad.created_at.desc())
        .limit(MAX_SAVED_LOADS)
        .all()
    )
    if not saved:
        return BackhaulScanSummary(success=True)

    existing = {
        s.saved_load_marketplace_id: s
        for s in db.query(SuggestedBackhaul).filter(
            SuggestedBackhaul.user_id == user_id,
            SuggestedBackhaul.saved_load_marketplace_id.in_([l.marketplace_load_id for l in saved]),
        ).all()
    }

    now = utc_now()
    needs_scan = [l for l in saved if _needs_scan(existing.get(l.marketplace_load_id), now)]

    # Drop loads whose stored details cannot even be normalized
    enriched = enrich_loads({'id': l.id, 'details': l.details} for l in needs_scan)
    usable = {row['id'] for row in enriched if 'error' not in row['details']}

    summary = BackhaulScanSummary(success=True, loads_scanned=len(needs_scan))
    scraper = scraper or get_scraper()
    for load in needs_scan:
        if load.id not in usable:
            summary.errors.append(f"Load {load.marketplace_load_id}: invalid load details")
            continue
        outcome = await generate_backhaul_suggestion(db, user_id, load, prefs, scraper)
        if outcome.success:
            summary.backhauls_found += outcome.loads_found
        elif outcome.error:
            summary.errors.append(f"Load {load.marketplace_load_id}: {outcome.error}")

    logger.info(
        f"Scanned {summary.loads_scanned} saved loads for user {user_id}, "
        f"found {summary.backhauls_found} backhaul options"
    )
    return summary
