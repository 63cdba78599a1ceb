from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging
import asyncio
import re

from api.config import settings
from api.database import get_db, init_db, engine, SessionLocal, SearchCriteria, InterestedLoad, UserPreferences
from api.credentials import (
    CredentialsNotFoundError,
    store_credentials,
    get_user_credentials,
    credentials_status,
    mark_credentials_invalid,
    check_all_credentials,
)
from api.crypto import DecryptionError, EncryptionKeyMissingError
from api.scanner import get_scraper, scan_loads_for_user, scan_loads_for_all_users
from api.backhaul import BackhaulPreferences, generate_backhaul_suggestion, scan_backhauls_for_user
from scrapers.base import InterestedStatus, ScanScope, SessionExpiredError
from scrapers.manager import ScanJob, ScanManager
from pydantic import BaseModel, Field

# Setup logging directory
settings.log_dir.mkdir(parents=True, exist_ok=True)


# Custom formatter to strip ANSI color codes from file logs
class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)


# Setup logging with color support for console, stripped for file
file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
file_handler.setFormatter(ColorStripFormatter(settings.log_format))

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter(settings.log_format))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[file_handler, console_handler],
    force=True  # Override any existing configuration
)

# Marketplace scrapers log under scraper.<short_name>; give them their own
# handlers and stop propagation so each line appears once
scraper_logger = logging.getLogger('scraper')
scraper_logger.propagate = False
# Only add handlers if not already present (prevents duplicates on module reload)
if not scraper_logger.handlers:
    scraper_file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
    scraper_file_handler.setFormatter(ColorStripFormatter(settings.log_format))
    scraper_logger.addHandler(scraper_file_handler)

    scraper_console_handler = logging.StreamHandler()
    scraper_console_handler.setFormatter(logging.Formatter(settings.log_format))
    scraper_logger.addHandler(scraper_console_handler)
scraper_logger.setLevel(getattr(logging, settings.log_level.upper()))

logger = logging.getLogger(__name__)


# Filter to suppress noisy polling endpoint access logs
class PollingEndpointFilter(logging.Filter):
    # Clients poll these while a scan runs
    SUPPRESSED_ENDPOINTS = ['/status', '/api/jobs/']

    def filter(self, record):
        try:
            msg = record.getMessage()
        except Exception:
            msg = str(record.msg)
        for endpoint in self.SUPPRESSED_ENDPOINTS:
            if endpoint in msg:
                return False
        return True


# Apply filter to uvicorn access logger at module load time
uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.addFilter(PollingEndpointFilter())


# Background scan jobs for the lifetime of the process
scan_manager = ScanManager()


def get_scan_manager() -> ScanManager:
    return scan_manager


async def cleanup_resources():
    """Clean up all resources on shutdown."""
    logger.info("Cleaning up resources...")

    await scan_manager.shutdown(timeout=3.0)

    try:
        logger.info("Closing database connections...")
        await asyncio.wait_for(
            asyncio.get_running_loop().run_in_executor(None, lambda: engine.dispose(close=True)),
            timeout=2.0
        )
        logger.info("Database connections closed")
    except asyncio.TimeoutError:
        logger.warning("Database cleanup timed out")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")

    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info("LoadScout Backend Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"Marketplace: {settings.marketplace}")
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY is not set; credential operations will fail until it is")
    init_db()
    logger.info("Database initialized successfully")
    logger.info("Backend ready to accept requests")

    yield  # Application runs here

    logger.info("=" * 60)
    logger.info("LoadScout Backend Shutting Down")
    logger.info("=" * 60)

    try:
        await asyncio.wait_for(cleanup_resources(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    except Exception as e:
        logger.error(f"Error during shutdown cleanup: {e}")

    logger.info("Shutdown complete")


app = FastAPI(
    title="LoadScout API",
    version="1.0.0",
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

@app.exception_handler(SessionExpiredError)
async def session_expired_handler(request: Request, exc: SessionExpiredError):
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": str(exc)})


@app.exception_handler(CredentialsNotFoundError)
async def credentials_not_found_handler(request: Request, exc: CredentialsNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(EncryptionKeyMissingError)
async def encryption_key_missing_handler(request: Request, exc: EncryptionKeyMissingError):
    logger.error(str(exc))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Server encryption is not configured"})


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError):
    logger.error(f"Stored credentials could not be decrypted: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Failed to decrypt credentials"})


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity; authentication itself happens upstream."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for API requests/responses
class CredentialsRequest(BaseModel):
    email: str
    session_cookie: str
    csrf_token: Optional[str] = None


class CredentialsStatusResponse(BaseModel):
    connected: bool
    is_valid: bool
    last_validated_at: Optional[datetime]
    validation_error: Optional[str]


class ScanRequest(BaseModel):
    criteria_id: Optional[int] = None
    scope: ScanScope = ScanScope.ALL
    guest: bool = False


class CriteriaRequest(BaseModel):
    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    pickup_distance: Optional[int] = Field(None, gt=0)
    dest_city: Optional[str] = None
    destination_state: Optional[str] = None
    equipment_type: Optional[str] = None
    min_rate: Optional[float] = Field(None, ge=0)
    min_weight: Optional[int] = Field(None, ge=0)
    max_weight: Optional[int] = Field(None, ge=0)
    booking_type: Optional[str] = None
    pickup_date: Optional[str] = None
    is_backhaul: bool = False


class CriteriaStatusResponse(BaseModel):
    id: int
    scan_status: Optional[str]
    scan_error: Optional[str]
    last_scan_loads_found: Optional[int]
    last_scanned_at: Optional[datetime]

    class Config:
        from_attributes = True


class InterestedRequest(BaseModel):
    marketplace_load_id: str
    details: Dict[str, Any] = {}


class JobResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    meta: Dict[str, Any] = {}
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


# Background job bodies. Each opens its own session: the request's session
# is closed before the job runs.

async def run_user_scan(user_id: str, criteria_id: Optional[int], scope: ScanScope, guest: bool):
    db = SessionLocal()
    try:
        return await scan_loads_for_user(db, user_id, criteria_id=criteria_id, scope=scope, guest=guest)
    finally:
        db.close()


async def run_all_users_scan():
    db = SessionLocal()
    try:
        results = await scan_loads_for_all_users(db)
        return {user_id: summary.to_dict() for user_id, summary in results.items()}
    finally:
        db.close()


async def run_backhaul_suggestion(user_id: str, saved_load_id: int):
    db = SessionLocal()
    try:
        saved_load = db.query(InterestedLoad).filter(InterestedLoad.id == saved_load_id).first()
        if saved_load is None:
            raise ValueError(f"Saved load {saved_load_id} no longer exists")
        prefs = BackhaulPreferences.from_row(
            db.query(UserPreferences).filter(UserPreferences.user_id == user_id).first()
        )
        return await generate_backhaul_suggestion(db, user_id, saved_load, prefs)
    finally:
        db.close()


async def run_backhaul_scan(user_id: str):
    db = SessionLocal()
    try:
        return await scan_backhauls_for_user(db, user_id)
    finally:
        db.close()


# API Endpoints

@app.get("/")
async def root():
    return {"message": "LoadScout API", "version": "1.0.0"}


@app.post("/api/credentials", response_model=CredentialsStatusResponse)
def connect_credentials(
    payload: CredentialsRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Store the user's marketplace session, encrypted at rest"""
    store_credentials(db, user_id, payload.email, payload.session_cookie, payload.csrf_token)
    return credentials_status(db, user_id)


@app.get("/api/credentials/status", response_model=CredentialsStatusResponse)
def get_credentials_status(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return credentials_status(db, user_id)


@app.post("/api/credentials/check")
async def check_credentials(db: Session = Depends(get_db)):
    """Ping the marketplace with every stored session and record which have expired"""
    scraper = get_scraper()
    return await check_all_credentials(db, scraper.verify_session)


@app.post("/api/scan", status_code=status.HTTP_202_ACCEPTED)
async def trigger_scan(
    payload: ScanRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    manager: ScanManager = Depends(get_scan_manager),
):
    """Start a background scan of the user's active criteria; poll the returned job"""
    if not payload.guest:
        # Fail fast with 404 instead of a job that can only fail
        get_user_credentials(db, user_id)

    job = manager.submit(
        'user_scan',
        lambda: run_user_scan(user_id, payload.criteria_id, payload.scope, payload.guest),
        user_id=user_id,
        criteria_id=payload.criteria_id,
        scope=payload.scope.value,
    )
    return {"job_id": job.job_id, "status": job.status.value}


@app.post("/api/criteria", status_code=status.HTTP_201_CREATED)
async def create_criteria(
    payload: CriteriaRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    manager: ScanManager = Depends(get_scan_manager),
):
    """Save a search criteria and scan it in the background right away"""
    if payload.min_weight and payload.max_weight and payload.min_weight > payload.max_weight:
        raise HTTPException(status_code=400, detail="min_weight cannot exceed max_weight")

    criteria = SearchCriteria(user_id=user_id, active=True, **payload.model_dump())
    db.add(criteria)
    db.commit()
    db.refresh(criteria)
    logger.info(f"Created criteria {criteria.id} for user {user_id}")

    criteria_id = criteria.id
    scope = ScanScope.BACKHAUL if criteria.is_backhaul else ScanScope.FRONTHAUL
    job = manager.submit(
        'criteria_scan',
        lambda: run_user_scan(user_id, criteria_id, scope, False),
        user_id=user_id,
        criteria_id=criteria_id,
    )
    return {"id": criteria_id, "job_id": job.job_id}


@app.get("/api/criteria/{criteria_id}/status", response_model=CriteriaStatusResponse)
def get_criteria_status(
    criteria_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Scan status side channel polled by the client"""
    criteria = db.query(SearchCriteria).filter(
        SearchCriteria.id == criteria_id,
        SearchCriteria.user_id == user_id,
    ).first()
    if not criteria:
        raise HTTPException(status_code=404, detail="Criteria not found")
    return criteria


@app.get("/api/jobs", response_model=List[JobResponse])
def list_jobs(
    user_id: str = Depends(current_user_id),
    manager: ScanManager = Depends(get_scan_manager),
):
    return [job.to_dict() for job in manager.list_jobs() if job.meta.get('user_id') == user_id]


def _user_job(manager: ScanManager, job_id: str, user_id: str) -> ScanJob:
    """The caller's job; other users' jobs are reported as missing."""
    job = manager.get(job_id)
    if not job or job.meta.get('user_id') != user_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/api/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    user_id: str = Depends(current_user_id),
    manager: ScanManager = Depends(get_scan_manager),
):
    return _user_job(manager, job_id, user_id).to_dict()


@app.delete("/api/jobs/{job_id}")
def cancel_job(
    job_id: str,
    user_id: str = Depends(current_user_id),
    manager: ScanManager = Depends(get_scan_manager),
):
    _user_job(manager, job_id, user_id)
    if not manager.cancel(job_id):
        raise HTTPException(status_code=409, detail="Job already finished")
    return {"job_id": job_id, "cancelled": True}


@app.post("/api/interested", status_code=status.HTTP_201_CREATED)
async def save_interested_load(
    payload: InterestedRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    manager: ScanManager = Depends(get_scan_manager),
):
    """Save a load the driver is interested in and look for a backhaul from its destination"""
    saved = db.query(InterestedLoad).filter(
        InterestedLoad.user_id == user_id,
        InterestedLoad.marketplace_load_id == payload.marketplace_load_id,
    ).first()
    if saved is None:
        saved = InterestedLoad(user_id=user_id, marketplace_load_id=payload.marketplace_load_id)
        db.add(saved)
    saved.details = payload.details
    saved.status = InterestedStatus.INTERESTED.value
    db.commit()
    db.refresh(saved)

    saved_id = saved.id
    job = manager.submit(
        'backhaul_suggestion',
        lambda: run_backhaul_suggestion(user_id, saved_id),
        user_id=user_id,
        saved_load_id=saved_id,
    )
    return {"id": saved_id, "marketplace_load_id": saved.marketplace_load_id, "job_id": job.job_id}


@app.post("/api/backhauls/scan", status_code=status.HTTP_202_ACCEPTED)
async def trigger_backhaul_scan(
    user_id: str = Depends(current_user_id),
    manager: ScanManager = Depends(get_scan_manager),
):
    job = manager.submit('backhaul_scan', lambda: run_backhaul_scan(user_id), user_id=user_id)
    return {"job_id": job.job_id, "status": job.status.value}


@app.post("/api/cron/scan", status_code=status.HTTP_202_ACCEPTED)
async def trigger_scheduled_scan(manager: ScanManager = Depends(get_scan_manager)):
    """Scheduled entry point: scan every user with a valid session"""
    job = manager.submit('scheduled_scan', run_all_users_scan)
    return {"job_id": job.job_id, "status": job.status.value}


@app.post("/api/bookings/sync")
async def sync_bookings(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    """Scrape the driver's booked loads from the marketplace jobs page"""
    credentials = get_user_credentials(db, user_id)
    try:
        loads = await get_scraper().scrape_booked_loads(credentials.cookie)
    except SessionExpiredError as e:
        mark_credentials_invalid(db, user_id, str(e))
        raise
    return {"count": len(loads), "loads": [load.to_dict() for load in loads]}
