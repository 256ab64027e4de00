from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint
from datetime import datetime

from habitsync.database import Base
from habitsync.constants import (
    DEFAULT_TIMEZONE, DEFAULT_GRACE_PERIOD_MINUTES, DEFAULT_MAX_HABITS,
    DEFAULT_MAX_REWARDED_ADS_PER_DAY, DEFAULT_SYNC_MAX_RETRIES,
    DEFAULT_SYNC_QUEUE_CAPACITY, DEFAULT_SYNC_TIMEOUT_SECONDS,
    DEFAULT_SYNC_RETRY_DELAY_SECONDS, DEFAULT_SYNC_MAX_BACKOFF_SECONDS,
    DEFAULT_SYNCED_RETENTION_DAYS, DEFAULT_FAILED_RETENTION_DAYS,
    DEFAULT_SYNC_INTERVAL_MINUTES
)


class StoredRecord(Base):
    """Durable JSON document keyed by (entity_type, entity_id)"""
    __tablename__ = "stored_records"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_stored_records_entity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, nullable=False, index=True)
    payload = Column(Text, nullable=False)  # JSON document
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Settings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)

    # Logical date
    timezone = Column(String, default=DEFAULT_TIMEZONE)  # IANA name, e.g. "Europe/Berlin"
    grace_period_minutes = Column(Integer, default=DEFAULT_GRACE_PERIOD_MINUTES)

    # Habit and XP limits
    max_habits = Column(Integer, default=DEFAULT_MAX_HABITS)
    max_rewarded_ads_per_day = Column(Integer, default=DEFAULT_MAX_REWARDED_ADS_PER_DAY)

    # Sync queue
    sync_max_retries = Column(Integer, default=DEFAULT_SYNC_MAX_RETRIES)
    sync_queue_capacity = Column(Integer, default=DEFAULT_SYNC_QUEUE_CAPACITY)
    sync_timeout_seconds = Column(Integer, default=DEFAULT_SYNC_TIMEOUT_SECONDS)
    sync_retry_delay_seconds = Column(Integer, default=DEFAULT_SYNC_RETRY_DELAY_SECONDS)
    sync_max_backoff_seconds = Column(Integer, default=DEFAULT_SYNC_MAX_BACKOFF_SECONDS)
    synced_retention_days = Column(Integer, default=DEFAULT_SYNCED_RETENTION_DAYS)
    failed_retention_days = Column(Integer, default=DEFAULT_FAILED_RETENTION_DAYS)
    sync_interval_minutes = Column(Integer, default=DEFAULT_SYNC_INTERVAL_MINUTES)

    # Updated timestamp
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
