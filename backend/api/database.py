from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, Boolean, Text, ForeignKey, Index, JSON, UniqueConstraint
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from datetime import datetime, timezone
from pathlib import Path


def utc_now():
    """Return current UTC time (timezone-aware). Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC so they compare with utc_now()."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


Base = declarative_base()


class Credential(Base):
    __tablename__ = 'marketplace_credentials'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, unique=True, nullable=False, index=True)

    # All three hold salt:iv:tag:ciphertext hex blobs, never plaintext
    encrypted_email = Column(Text, nullable=False)
    encrypted_session_cookie = Column(Text, nullable=False)
    encrypted_csrf_token = Column(Text)

    is_valid = Column(Boolean, default=True, index=True)
    last_validated_at = Column(DateTime)
    validation_error = Column(Text)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class SearchCriteria(Base):
    __tablename__ = 'search_criteria'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)

    # Lane
    origin_city = Column(String)
    origin_state = Column(String)
    pickup_distance = Column(Integer)  # miles, None = platform default
    dest_city = Column(String)
    destination_state = Column(String)

    # Constraints
    equipment_type = Column(String)  # Dry Van, Reefer, Flatbed, Any
    min_rate = Column(Float)
    min_weight = Column(Integer)
    max_weight = Column(Integer)
    booking_type = Column(String)  # ALL, INSTANT, STANDARD
    pickup_date = Column(String)

    is_backhaul = Column(Boolean, default=False, index=True)
    active = Column(Boolean, default=True, index=True)
    deleted_at = Column(DateTime)  # Soft delete

    # Scan status side channel, polled by the client
    scan_status = Column(String)  # scanning, success, error
    scan_error = Column(Text)
    last_scan_loads_found = Column(Integer, default=0)
    last_scanned_at = Column(DateTime)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    found_loads = relationship("FoundLoad", back_populates="criteria", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_criteria_user_active', 'user_id', 'active'),
    )


class FoundLoad(Base):
    __tablename__ = 'found_loads'

    id = Column(Integer, primary_key=True)
    criteria_id = Column(Integer, ForeignKey('search_criteria.id'), nullable=False, index=True)
    marketplace_load_id = Column(String, nullable=False)
    details = Column(JSON)  # ScrapedLoad as dict
    status = Column(String, default='found')
    scan_count = Column(Integer, default=1)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    criteria = relationship("SearchCriteria", back_populates="found_loads")

    __table_args__ = (
        UniqueConstraint('criteria_id', 'marketplace_load_id', name='uq_found_load_criteria_load'),
    )


class LoadHistory(Base):
    """Every scanned load, appended per scan, so rate changes over time survive upserts."""
    __tablename__ = 'load_history'

    id = Column(Integer, primary_key=True)
    criteria_id = Column(Integer, ForeignKey('search_criteria.id'), nullable=False, index=True)
    marketplace_load_id = Column(String, nullable=False, index=True)
    details = Column(JSON)
    status = Column(String, default='found')
    scanned_at = Column(DateTime, default=utc_now, index=True)


class InterestedLoad(Base):
    __tablename__ = 'interested_loads'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    marketplace_load_id = Column(String, nullable=False)
    details = Column(JSON)
    status = Column(String, default='interested', index=True)  # interested, trash

    created_at = Column(DateTime, default=utc_now, index=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('user_id', 'marketplace_load_id', name='uq_interested_user_load'),
    )


class SuggestedBackhaul(Base):
    __tablename__ = 'suggested_backhauls'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    saved_load_id = Column(Integer, ForeignKey('interested_loads.id'))
    saved_load_marketplace_id = Column(String, nullable=False)

    # Backhaul origin is the saved load's destination
    origin_city = Column(String)
    origin_state = Column(String)
    target_states = Column(JSON)

    status = Column(String, default='pending', index=True)
    loads_found = Column(Integer, default=0)
    best_rate = Column(Float)
    best_rpm = Column(Float)
    avg_rate = Column(Float)
    avg_rpm = Column(Float)
    top_loads = Column(JSON)  # Up to 10 loads, best RPM first
    error_message = Column(Text)

    last_searched_at = Column(DateTime)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('user_id', 'saved_load_marketplace_id', name='uq_backhaul_user_load'),
    )


class UserPreferences(Base):
    __tablename__ = 'user_preferences'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, unique=True, nullable=False, index=True)

    preferred_destination_states = Column(JSON)  # ["TX", "IL"]
    avoid_states = Column(JSON)
    backhaul_max_deadhead = Column(Integer, default=100)  # miles
    backhaul_min_rpm = Column(Float, default=0.0)
    preferred_max_weight = Column(Integer)
    preferred_equipment_type = Column(String)
    preferred_pickup_distance = Column(Integer)
    auto_suggest_backhauls = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


# Database setup - import settings for database URL
from api.config import settings


def _engine_kwargs() -> dict:
    if settings.is_sqlite:
        # Sessions hop between the request threadpool and background jobs
        return {'connect_args': {'check_same_thread': False}}
    return {
        'pool_size': settings.db_pool_size,
        'max_overflow': settings.db_max_overflow,
        'pool_pre_ping': True,  # stale connections after idle periods
        'pool_recycle': settings.db_pool_recycle,
    }


engine = create_engine(settings.database_url, echo=False, **_engine_kwargs())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    if settings.database_url.startswith('sqlite:///') and ':memory:' not in settings.database_url:
        Path(settings.database_url[len('sqlite:///'):]).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
