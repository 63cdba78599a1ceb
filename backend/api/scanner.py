"""
Scan orchestration.

Runs the scraper for a user's saved search criteria, persists what it finds
and keeps each criteria row's scan status current so the client can poll
progress while the scan runs in the background.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from api.config import settings
from api.credentials import (
    CredentialsNotFoundError,
    UserCredentials,
    get_guest_credentials,
    get_user_credentials,
    mark_credentials_invalid,
)
from api.crypto import CryptoError
from api.database import Credential, FoundLoad, LoadHistory, SearchCriteria, utc_now
from scrapers.base import ScanScope, ScanStatus, ScrapedLoad, ScrapeResult, SessionExpiredError
from scrapers.config import get_marketplace_config
from scrapers.marketplace import MarketplaceScraper, build_criteria

logger = logging.getLogger(__name__)

# Max IDs per existing-ID lookup
BATCH_SIZE = 500


@dataclass
class ScanSummary:
    success: bool
    loads_found: int = 0
    error: Optional[str] = None
    criteria_scanned: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


def get_scraper() -> MarketplaceScraper:
    """Scraper for the configured marketplace, with timeouts from settings."""
    config = replace(
        get_marketplace_config(settings.marketplace),
        navigation_timeout=settings.scraper_navigation_timeout,
        element_timeout=settings.scraper_element_timeout,
        results_timeout=settings.scraper_results_timeout,
        settle_seconds=settings.scraper_settle_seconds,
    )
    return MarketplaceScraper(config, headless=settings.scraper_headless)


def _load_details(load) -> Dict:
    return load.to_dict() if isinstance(load, ScrapedLoad) else dict(load)


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def upsert_loads(db: Session, criteria_id: int, loads: List) -> Tuple[int, int]:
    """
    Persist one scan's loads for a criteria.

    Every load is appended to load_history. Unseen marketplace IDs become new
    found_loads rows; already-seen ones get fresh details and a bumped
    scan_count. Repeated IDs within the batch collapse to the last one.

    Returns:
        (new, updated)
    """
    batch: Dict[str, Dict] = {}
    for load in loads:
        details = _load_details(load)
        load_id = str(details.get('id') or '')
        if not load_id:
            logger.warning(f"Skipping load without an ID for criteria {criteria_id}")
            continue
        batch[load_id] = details

    if not batch:
        return 0, 0

    existing: Dict[str, FoundLoad] = {}
    for chunk in _chunks(list(batch), BATCH_SIZE):
        rows = db.query(FoundLoad).filter(
            FoundLoad.criteria_id == criteria_id,
            FoundLoad.marketplace_load_id.in_(chunk),
        ).all()
        existing.update({row.marketplace_load_id: row for row in rows})

    now = utc_now()
    new = updated = 0
    for load_id, details in batch.items():
        db.add(LoadHistory(
            criteria_id=criteria_id,
            marketplace_load_id=load_id,
            details=details,
            scanned_at=now,
        ))

        row = existing.get(load_id)
        if row is None:
            db.add(FoundLoad(
                criteria_id=criteria_id,
                marketplace_load_id=load_id,
                details=details,
                status='found',
                scan_count=1,
            ))
            new += 1
        else:
            row.details = details
            row.scan_count = (row.scan_count or 0) + 1
            row.updated_at = now
            updated += 1

    db.commit()
    logger.info(f"Saved loads for criteria {criteria_id}: {new} new, {updated} updated")
    return new, updated


def save_new_loads(db: Session, criteria_id: int, loads: List) -> int:
    """Persist a scan's loads; returns how many marketplace IDs were new for the criteria."""
    if not loads:
        return 0
    new, _ = upsert_loads(db, criteria_id, loads)
    return new


def _set_scan_status(db: Session, criteria: SearchCriteria, status: ScanStatus, **fields):
    criteria.scan_status = status.value
    for name, value in fields.items():
        setattr(criteria, name, value)
    db.commit()


async def scan_criteria(
    db: Session,
    criteria: SearchCriteria,
    credentials: UserCredentials,
    scraper: MarketplaceScraper,
) -> ScrapeResult:
    """
    Scan one criteria and record the outcome on its row.

    Scraper failures are recorded on the row and returned in the result.

    Raises:
        SessionExpiredError: After marking the user's credentials invalid;
            the remaining criteria would fail the same way.
    """
    result = ScrapeResult(criteria_id=str(criteria.id), started_at=datetime.now(timezone.utc))
    _set_scan_status(
        db, criteria, ScanStatus.SCANNING,
        scan_error=None,
        last_scanned_at=utc_now(),
    )

    logger.info(f"Processing criteria {criteria.id}: {criteria.origin_city or 'Any'} -> {criteria.dest_city or 'Any'}")

    try:
        loads = await scraper.scrape_loads(
            credentials.email,
            credentials.cookie,
            build_criteria(criteria),
            csrf_token=credentials.csrf_token,
        )
        result.total = len(loads)
        if loads:
            result.new, result.updated = upsert_loads(db, criteria.id, loads)
        else:
            logger.info(f"No loads found for criteria {criteria.id}")

        _set_scan_status(
            db, criteria, ScanStatus.SUCCESS,
            last_scan_loads_found=result.saved,
            scan_error=None,
        )
        return result.finish()

    except SessionExpiredError as e:
        db.rollback()
        _set_scan_status(db, criteria, ScanStatus.ERROR, scan_error=str(e), last_scan_loads_found=0)
        mark_credentials_invalid(db, criteria.user_id, str(e))
        result.finish(str(e))
        raise

    except asyncio.CancelledError:
        db.rollback()
        _set_scan_status(db, criteria, ScanStatus.ERROR, scan_error="Scan cancelled", last_scan_loads_found=0)
        raise

    except Exception as e:
        db.rollback()
        logger.error(f"Error processing criteria {criteria.id}: {e}")
        _set_scan_status(db, criteria, ScanStatus.ERROR, scan_error=str(e), last_scan_loads_found=0)
        return result.finish(str(e))


def get_active_criteria(
    db: Session,
    user_id: str,
    criteria_id: Optional[int] = None,
    scope: ScanScope = ScanScope.ALL,
) -> List[SearchCriteria]:
    query = db.query(SearchCriteria).filter(
        SearchCriteria.user_id == user_id,
        SearchCriteria.active == True,  # noqa: E712
        SearchCriteria.deleted_at.is_(None),
    )

    scope = ScanScope(scope)
    if scope == ScanScope.FRONTHAUL:
        query = query.filter((SearchCriteria.is_backhaul.is_(None)) | (SearchCriteria.is_backhaul == False))  # noqa: E712
    elif scope == ScanScope.BACKHAUL:
        query = query.filter(SearchCriteria.is_backhaul == True)  # noqa: E712

    if criteria_id is not None:
        query = query.filter(SearchCriteria.id == criteria_id)

    return query.order_by(SearchCriteria.id).all()


async def scan_loads_for_user(
    db: Session,
    user_id: str,
    criteria_id: Optional[int] = None,
    scope: ScanScope = ScanScope.ALL,
    scraper: Optional[MarketplaceScraper] = None,
    guest: bool = False,
) -> ScanSummary:
    """
    Scan every active criteria for a user.

    A failure on one criteria does not stop the others. The summary only
    reports failure when something failed and no criteria saved any load,
    new or re-seen.

    Args:
        criteria_id: Scan just this criteria
        scope: all, fronthaul (is_backhaul unset/false) or backhaul
        guest: Use the shared sandbox credentials instead of the user's own
    """
    logger.info(f"Starting scan for user {user_id} (scope={ScanScope(scope).value})")

    try:
        credentials = get_guest_credentials(db) if guest else get_user_credentials(db, user_id)
    except (CredentialsNotFoundError, CryptoError) as e:
        logger.error(f"Scan aborted for user {user_id}: {e}")
        return ScanSummary(success=False, error=str(e))

    criteria_list = get_active_criteria(db, user_id, criteria_id, scope)
    if not criteria_list:
        logger.info(f"No active criteria for user {user_id}")
        return ScanSummary(success=True)

    logger.info(f"Found {len(criteria_list)} active criteria for user {user_id}")
    scraper = scraper or get_scraper()

    total_saved = 0
    errors: List[str] = []
    for criteria in criteria_list:
        try:
            result = await scan_criteria(db, criteria, credentials, scraper)
        except SessionExpiredError as e:
            logger.warning(f"Session expired for user {user_id}, stopping scan")
            return ScanSummary(success=False, loads_found=total_saved, error=str(e),
                               criteria_scanned=len(criteria_list))
        total_saved += result.saved
        if result.error:
            errors.append(result.error)

    if errors and total_saved == 0:
        return ScanSummary(success=False, error=f"Scraper failed: {errors[0]}",
                           criteria_scanned=len(criteria_list))

    logger.info(f"Scan complete for user {user_id}. Saved {total_saved} loads.")
    return ScanSummary(success=True, loads_found=total_saved, criteria_scanned=len(criteria_list))


async def scan_loads_for_all_users(
    db: Session,
    scraper: Optional[MarketplaceScraper] = None,
) -> Dict[str, ScanSummary]:
    """Scheduled path: scan every user whose stored session is still valid."""
    user_ids = [
        row.user_id for row in
        db.query(Credential.user_id).filter(Credential.is_valid == True).all()  # noqa: E712
    ]
    logger.info(f"Scheduled scan for {len(user_ids)} user(s)")

    scraper = scraper or get_scraper()
    results = {}
    for user_id in user_ids:
        results[user_id] = await scan_loads_for_user(db, user_id, scraper=scraper)

    succeeded = sum(1 for s in results.values() if s.success)
    logger.info(f"Scheduled scan complete: {succeeded}/{len(results)} succeeded")
    return results
