"""
Application constants.
Closed enums for tiers, XP event types and sync states, plus the award
table and default limits.
"""
from enum import Enum


class DecayTier(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CLOUDY = "cloudy"
    STORMY = "stormy"


class GrowthTier(str, Enum):
    SEEDLING = "seedling"
    GROWING = "growing"
    FLOURISHING = "flourishing"


class WeatherCondition(str, Enum):
    RAINBOW = "rainbow"
    SUNNY = "sunny"
    PARTLY_CLOUDY = "partlyCloudy"
    CLOUDY = "cloudy"
    STORMY = "stormy"


class XpEventType(str, Enum):
    HABIT_COMPLETION = "habitCompletion"
    ALL_DAILY_BONUS = "allDailyBonus"
    STREAK_7 = "streak7"
    STREAK_30 = "streak30"
    DAILY_LOGIN = "dailyLogin"
    REWARDED_AD = "rewardedAd"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    HABIT = "habit"
    COMPLETION = "completion"
    XP_EVENT = "xp_event"
    HABIT_PROGRESS = "habit_progress"
    SYNC_OPERATION = "sync_operation"


class HabitFrequency(str, Enum):
    DAILY = "daily"
    SPECIFIC_DAYS = "specific_days"


class ProgressEventType(str, Enum):
    STREAK_MILESTONE = "streak_milestone"
    DECAY_TIER_CHANGED = "decay_tier_changed"
    LEVEL_UP = "level_up"
    ALL_DAILY_BONUS = "all_daily_bonus"


# XP award table
XP_HABIT_COMPLETION = 10
XP_ALL_DAILY_BONUS = 50
XP_STREAK_7 = 100
XP_STREAK_30 = 500
XP_DAILY_LOGIN = 5
XP_REWARDED_AD = 50
XP_MANUAL_MAX = 10000
XP_PER_LEVEL = 100

# Streak milestones and the event type each one awards
STREAK_MILESTONES = {
    7: XpEventType.STREAK_7,
    30: XpEventType.STREAK_30,
}

# Growth thresholds (minimum current streak per tier)
GROWTH_GROWING_MIN_STREAK = 15
GROWTH_FLOURISHING_MIN_STREAK = 30

# Decay thresholds (days missed)
DECAY_WARNING_DAYS = 1
DECAY_CLOUDY_MIN_DAYS = 2
DECAY_STORMY_MIN_DAYS = 4

# Weather thresholds (lower bound inclusive)
WEATHER_RAINBOW_THRESHOLD = 1.0
WEATHER_SUNNY_THRESHOLD = 0.75
WEATHER_PARTLY_CLOUDY_THRESHOLD = 0.50
WEATHER_CLOUDY_THRESHOLD = 0.25
REST_DAY_WEATHER = WeatherCondition.SUNNY

# Logical date
DEFAULT_GRACE_PERIOD_MINUTES = 180
DEFAULT_TIMEZONE = "UTC"

# Habits
HABIT_NAME_MIN_LENGTH = 2
HABIT_NAME_MAX_LENGTH = 50
HABIT_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_,.!?]+$"
DEFAULT_MAX_HABITS = 7

# XP limits
DEFAULT_MAX_REWARDED_ADS_PER_DAY = 5

# Sync queue
DEFAULT_SYNC_MAX_RETRIES = 3
DEFAULT_SYNC_QUEUE_CAPACITY = 1000
DEFAULT_SYNC_TIMEOUT_SECONDS = 30
DEFAULT_SYNC_RETRY_DELAY_SECONDS = 5
DEFAULT_SYNC_MAX_BACKOFF_SECONDS = 300
DEFAULT_SYNCED_RETENTION_DAYS = 7
DEFAULT_FAILED_RETENTION_DAYS = 30
DEFAULT_SYNC_INTERVAL_MINUTES = 1

# Logging
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/habitsync"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"

# CORS
CORS_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]
