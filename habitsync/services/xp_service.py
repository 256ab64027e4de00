"""
XP ledger service.
Total XP and level are always derived from the append-only XP event log;
awards are fixed amounts with per-day idempotency guards.
"""
import uuid
from datetime import date
from typing import Iterable, List, Optional, Set

from habitsync.constants import (
    XpEventType,
    XP_HABIT_COMPLETION,
    XP_ALL_DAILY_BONUS,
    XP_STREAK_7,
    XP_STREAK_30,
    XP_DAILY_LOGIN,
    XP_REWARDED_AD,
    XP_MANUAL_MAX,
    XP_PER_LEVEL,
    STREAK_MILESTONES,
    DEFAULT_MAX_REWARDED_ADS_PER_DAY
)
from habitsync.exceptions import DailyLimitException, ValidationException
from habitsync.models import Settings
from habitsync.repositories.local_store import LocalStore
from habitsync.repositories.xp_repository import XpEventRepository
from habitsync.schemas import Habit, LevelInfo, XpEvent, XpStatistics
from habitsync.services.date_service import Clock, DateService

# Fixed award per event type; manual awards carry their own amount
XP_AWARDS = {
    XpEventType.HABIT_COMPLETION: XP_HABIT_COMPLETION,
    XpEventType.ALL_DAILY_BONUS: XP_ALL_DAILY_BONUS,
    XpEventType.STREAK_7: XP_STREAK_7,
    XpEventType.STREAK_30: XP_STREAK_30,
    XpEventType.DAILY_LOGIN: XP_DAILY_LOGIN,
    XpEventType.REWARDED_AD: XP_REWARDED_AD,
}


class XpService:
    """Service for XP awards and level calculation"""

    def __init__(self, store: LocalStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.xp_repo = XpEventRepository()
        self.date_service = DateService()

    @staticmethod
    def calculate_level(total_xp: int) -> int:
        """Level = floor(total_xp / 100) + 1"""
        return max(0, total_xp) // XP_PER_LEVEL + 1

    @staticmethod
    def level_info(total_xp: int) -> LevelInfo:
        """Level and progress toward the next one"""
        level = XpService.calculate_level(total_xp)
        xp_into_level = max(0, total_xp) - (level - 1) * XP_PER_LEVEL
        return LevelInfo(
            total_xp=total_xp,
            level=level,
            xp_into_level=xp_into_level,
            xp_for_level=XP_PER_LEVEL,
            xp_remaining=XP_PER_LEVEL - xp_into_level,
            progress=round(xp_into_level / XP_PER_LEVEL, 4)
        )

    def total_xp(self, user_id: str) -> int:
        """Sum of every XP event amount for the user"""
        return self.xp_repo.total_for_user(self.store, user_id)

    def today(self) -> date:
        return self.date_service.get_effective_date(self.settings, self.clock)

    def build_event(
        self,
        user_id: str,
        event_type: XpEventType,
        logical_date: date,
        amount: Optional[int] = None,
        habit_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> XpEvent:
        """Create (but do not store) an XP event stamped with the clock"""
        now = self.clock.now()
        return XpEvent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=event_type,
            amount=XP_AWARDS[event_type] if amount is None else amount,
            habit_id=habit_id,
            logical_date=logical_date,
            description=description,
            earned_at=now,
            created_at=now
        )

    def append(self, events: Iterable[XpEvent]) -> List[XpEvent]:
        """Append events to the ledger"""
        stored = []
        for event in events:
            stored.append(self.xp_repo.append(self.store, event))
        return stored

    def completion_awards(
        self,
        user_id: str,
        habit_id: str,
        logical_date: date,
        current_streak: int,
        scheduled_habits: List[Habit],
        completed_habit_ids: Set[str]
    ) -> List[XpEvent]:
        """
        Compute the XP events earned by one habit completion, in order:

        1. Base completion award.
        2. All-daily bonus when every habit scheduled for the day is now
           completed (once per user per logical date).
        3. Milestone award when the recomputed streak is exactly 7 or 30
           (once per habit per logical date, so a deleted and redone
           completion cannot earn it twice).

        Args:
            user_id: Owner of the habit
            habit_id: Completed habit
            logical_date: Logical date of the completion
            current_streak: Streak including this completion
            scheduled_habits: Habits scheduled for logical_date
            completed_habit_ids: Habits completed on logical_date, including this one

        Returns:
            Events to append (not yet stored)
        """
        events = [
            self.build_event(
                user_id, XpEventType.HABIT_COMPLETION, logical_date, habit_id=habit_id,
                description="Habit completed"
            )
        ]

        scheduled_ids = {habit.id for habit in scheduled_habits}
        if scheduled_ids and scheduled_ids <= completed_habit_ids:
            already_awarded = self.xp_repo.get_for_user_on(
                self.store, user_id, logical_date, XpEventType.ALL_DAILY_BONUS
            )
            if not already_awarded:
                events.append(self.build_event(
                    user_id, XpEventType.ALL_DAILY_BONUS, logical_date, habit_id=habit_id,
                    description=f"All {len(scheduled_ids)} daily habits completed"
                ))

        milestone_type = STREAK_MILESTONES.get(current_streak)
        if milestone_type is not None:
            same_day = self.xp_repo.get_for_user_on(self.store, user_id, logical_date, milestone_type)
            if not any(event.habit_id == habit_id for event in same_day):
                events.append(self.build_event(
                    user_id, milestone_type, logical_date, habit_id=habit_id,
                    description=f"{current_streak}-day streak milestone"
                ))

        return events

    def award_daily_login(self, user_id: str) -> List[XpEvent]:
        """
        Award the daily login bonus at most once per logical date.

        Returns:
            The appended event, or an empty list if already claimed today
        """
        today = self.today()
        if self.xp_repo.get_for_user_on(self.store, user_id, today, XpEventType.DAILY_LOGIN):
            return []
        event = self.build_event(user_id, XpEventType.DAILY_LOGIN, today, description="Daily login")
        return self.append([event])

    def rewarded_ads_watched(self, user_id: str, logical_date: date) -> int:
        return len(self.xp_repo.get_for_user_on(
            self.store, user_id, logical_date, XpEventType.REWARDED_AD
        ))

    def max_rewarded_ads(self) -> int:
        limit = self.settings.max_rewarded_ads_per_day
        return DEFAULT_MAX_REWARDED_ADS_PER_DAY if limit is None else limit

    def award_rewarded_ad(self, user_id: str, ad_id: str) -> List[XpEvent]:
        """
        Award XP for a watched rewarded ad, capped per logical date.

        Raises:
            DailyLimitException: If the daily cap is already reached
        """
        today = self.today()
        watched = self.rewarded_ads_watched(user_id, today)
        limit = self.max_rewarded_ads()
        if watched >= limit:
            raise DailyLimitException("rewarded ads", watched, limit)
        event = self.build_event(
            user_id, XpEventType.REWARDED_AD, today, description=f"Rewarded ad {ad_id}"
        )
        return self.append([event])

    def award_manual(self, user_id: str, amount: int, description: str) -> List[XpEvent]:
        """
        Award a manual (admin/promotional) amount.

        Raises:
            ValidationException: If amount is outside 1..10000
        """
        if amount < 1 or amount > XP_MANUAL_MAX:
            raise ValidationException("amount", f"must be between 1 and {XP_MANUAL_MAX}")
        event = self.build_event(
            user_id, XpEventType.MANUAL, self.today(), amount=amount, description=description
        )
        return self.append([event])

    def get_statistics(self, user_id: str) -> XpStatistics:
        """Totals for today, this ISO week and this month plus a per-type breakdown"""
        events = self.xp_repo.get_for_user(self.store, user_id)
        today = self.today()
        week_start = self.date_service.get_week_start(today)
        month_start = self.date_service.get_month_start(today)

        total = sum(event.amount for event in events)
        breakdown = {event_type.value: 0 for event_type in XpEventType}
        for event in events:
            breakdown[event.type.value] += event.amount

        info = self.level_info(total)
        return XpStatistics(
            **info.model_dump(),
            xp_today=sum(e.amount for e in events if e.logical_date == today),
            xp_this_week=sum(e.amount for e in events if week_start <= e.logical_date <= today),
            xp_this_month=sum(e.amount for e in events if month_start <= e.logical_date <= today),
            breakdown=breakdown
        )
