from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import Optional, List, Dict, Any

from habitsync.constants import (
    DecayTier, GrowthTier, WeatherCondition, XpEventType, SyncStatus,
    OperationKind, HabitFrequency
)


# Persisted records. Field names are the wire contract shared with the
# remote schema: snake_case, serialized with model_dump(mode="json").

class Habit(BaseModel):
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    frequency: HabitFrequency = HabitFrequency.DAILY
    specific_days: List[int] = Field(default_factory=list)  # ISO weekdays, Monday=1
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    def is_scheduled_on(self, day: date) -> bool:
        """Whether this habit is due on the given logical date"""
        if not self.is_active:
            return False
        if self.frequency == HabitFrequency.DAILY:
            return True
        return day.isoweekday() in self.specific_days


class CompletionRecord(BaseModel):
    id: str
    habit_id: str
    user_id: str
    occurred_at: datetime
    logical_date: date
    xp_awarded: int = 0
    was_bonus_day: bool = False
    was_milestone: bool = False
    notes: Optional[str] = None
    created_at: datetime
    synced_at: Optional[datetime] = None


class XpEvent(BaseModel):
    id: str
    user_id: str
    type: XpEventType
    amount: int
    habit_id: Optional[str] = None
    logical_date: date
    description: Optional[str] = None
    earned_at: datetime
    created_at: datetime


class SyncOperation(BaseModel):
    id: str
    kind: OperationKind
    entity_type: str
    entity_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: SyncStatus = SyncStatus.PENDING
    enqueued_at: datetime
    sequence: int = 0  # tie-breaker for operations enqueued at the same instant
    last_attempt_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    abandoned_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None

    @property
    def is_abandoned(self) -> bool:
        return self.abandoned_at is not None


class HabitProgressSnapshot(BaseModel):
    """Materialized view over a habit's completion log. Never authoritative."""
    habit_id: str
    current_streak: int = 0
    longest_streak: int = 0
    is_streak_active: bool = False
    decay_tier: DecayTier = DecayTier.HEALTHY
    days_missed: int = 0
    recovery_required: int = 0
    recovery_progress: int = 0
    growth_tier: GrowthTier = GrowthTier.SEEDLING
    last_completion_logical_date: Optional[date] = None
    total_completions: int = 0
    next_milestone: Optional[int] = None
    computed_at: datetime


# API request bodies

class HabitCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    frequency: HabitFrequency = HabitFrequency.DAILY
    specific_days: List[int] = Field(default_factory=list)


class HabitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    frequency: Optional[HabitFrequency] = None
    specific_days: Optional[List[int]] = None
    is_active: Optional[bool] = None


class CompleteHabitRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class RewardedAdRequest(BaseModel):
    ad_id: str = Field(..., min_length=1)


class ManualXpRequest(BaseModel):
    amount: int
    description: str = Field(..., min_length=1, max_length=200)


# API responses

class HabitResponse(Habit):
    sync_backlogged: bool = False


class LevelInfo(BaseModel):
    total_xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    xp_remaining: int
    progress: float


class XpStatistics(LevelInfo):
    xp_today: int = 0
    xp_this_week: int = 0
    xp_this_month: int = 0
    breakdown: Dict[str, int] = Field(default_factory=dict)


class XpAwardResponse(BaseModel):
    events: List[XpEvent] = Field(default_factory=list)
    xp_awarded: int = 0
    total_xp: int
    level: int
    leveled_up: bool = False
    sync_backlogged: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CompletionResponse(BaseModel):
    record: CompletionRecord
    xp_events: List[XpEvent] = Field(default_factory=list)
    xp_awarded: int = 0
    snapshot: HabitProgressSnapshot
    total_xp: int
    level: int
    duplicate: bool = False
    sync_backlogged: bool = False


class WeatherResponse(BaseModel):
    logical_date: date
    scheduled: int
    completed: int
    completion_rate: float
    condition: WeatherCondition


class SyncStatusResponse(BaseModel):
    pending: int
    retryable: int
    abandoned: int
    synced: int
    capacity: int
    backlogged: bool


class DrainResponse(BaseModel):
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    abandoned: int = 0
    coalesced: bool = False


# Settings schemas
class SettingsUpdate(BaseModel):
    timezone: Optional[str] = None
    grace_period_minutes: Optional[int] = Field(None, ge=0, le=720)
    max_habits: Optional[int] = Field(None, ge=1, le=999)
    max_rewarded_ads_per_day: Optional[int] = Field(None, ge=0, le=50)
    sync_max_retries: Optional[int] = Field(None, ge=1, le=20)
    sync_queue_capacity: Optional[int] = Field(None, ge=1)
    sync_timeout_seconds: Optional[int] = Field(None, ge=1, le=600)
    sync_retry_delay_seconds: Optional[int] = Field(None, ge=0, le=3600)
    sync_max_backoff_seconds: Optional[int] = Field(None, ge=0, le=86400)
    synced_retention_days: Optional[int] = Field(None, ge=0)
    failed_retention_days: Optional[int] = Field(None, ge=0)
    sync_interval_minutes: Optional[int] = Field(None, ge=1, le=60)


class SettingsResponse(BaseModel):
    id: int
    timezone: str
    grace_period_minutes: int
    max_habits: int
    max_rewarded_ads_per_day: int
    sync_max_retries: int
    sync_queue_capacity: int
    sync_timeout_seconds: int
    sync_retry_delay_seconds: int
    sync_max_backoff_seconds: int
    synced_retention_days: int
    failed_retention_days: int
    sync_interval_minutes: int
    updated_at: datetime

    class Config:
        from_attributes = True
