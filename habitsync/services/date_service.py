"""
Date calculation and manipulation service.
Handles the injectable clock, logical dates (grace period after local
midnight) and calendar arithmetic used by the progress engines.
"""
from datetime import datetime, timedelta, date, timezone, tzinfo
from typing import List, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from habitsync.constants import DEFAULT_GRACE_PERIOD_MINUTES, DEFAULT_TIMEZONE
from habitsync.models import Settings


class Clock(Protocol):
    """Supplies the current instant"""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in a fixed IANA timezone"""

    def __init__(self, tz_name: str = DEFAULT_TIMEZONE):
        self.tz = DateService.resolve_timezone(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock:
    """Manually driven clock for tests and replays"""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = instant

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by timedelta(**kwargs)"""
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


class DateService:
    """Service for date-related operations"""

    @staticmethod
    def resolve_timezone(tz_name: Optional[str]) -> tzinfo:
        """Resolve an IANA name, falling back to UTC for unknown or empty names"""
        if not tz_name:
            return timezone.utc
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return timezone.utc

    @staticmethod
    def is_within_grace_period(
        instant: datetime,
        grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
        tz: Optional[tzinfo] = None
    ) -> bool:
        """
        Check whether an instant falls in the window after local midnight
        that still counts toward the previous day.

        The window is [00:00, 00:00 + grace) in local time.
        """
        local = DateService.to_local(instant, tz)
        since_midnight = timedelta(
            hours=local.hour,
            minutes=local.minute,
            seconds=local.second,
            microseconds=local.microsecond
        )
        return since_midnight < timedelta(minutes=grace_period_minutes)

    @staticmethod
    def get_logical_date(
        instant: datetime,
        grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
        tz: Optional[tzinfo] = None
    ) -> date:
        """
        Get the calendar day a completion at `instant` counts toward.

        Example: with the default 3 hour grace period, a completion at
        00:45 local time on the 10th belongs to the 9th, while one at
        03:01 belongs to the 10th.

        Args:
            instant: Moment of the completion
            grace_period_minutes: Length of the window after local midnight
            tz: User timezone; aware instants are converted into it

        Returns:
            Logical date
        """
        local = DateService.to_local(instant, tz)
        if DateService.is_within_grace_period(local, grace_period_minutes):
            return local.date() - timedelta(days=1)
        return local.date()

    @staticmethod
    def to_local(instant: datetime, tz: Optional[tzinfo] = None) -> datetime:
        """Convert an aware instant into tz; naive instants are taken as local already"""
        if tz is not None and instant.tzinfo is not None:
            return instant.astimezone(tz)
        return instant

    @staticmethod
    def get_effective_date(settings: Settings, clock: Clock) -> date:
        """Current logical date for the configured timezone and grace period"""
        return DateService.logical_date_for(clock.now(), settings)

    @staticmethod
    def logical_date_for(instant: datetime, settings: Settings) -> date:
        """Logical date of an instant under the user's settings"""
        tz = DateService.resolve_timezone(settings.timezone)
        grace = settings.grace_period_minutes
        if grace is None:
            grace = DEFAULT_GRACE_PERIOD_MINUTES
        return DateService.get_logical_date(instant, grace, tz)

    @staticmethod
    def days_between(start: date, end: date) -> int:
        """Signed number of days from start to end"""
        return (end - start).days

    @staticmethod
    def get_week_start(target_date: date) -> date:
        """Monday of the ISO week containing target_date"""
        return target_date - timedelta(days=target_date.weekday())

    @staticmethod
    def get_month_start(target_date: date) -> date:
        return target_date.replace(day=1)

    @staticmethod
    def get_date_range(start: date, end: date) -> List[date]:
        """All dates from start to end inclusive"""
        if end < start:
            return []
        return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
