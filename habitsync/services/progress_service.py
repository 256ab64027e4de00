"""
Progress service.
Rebuilds a habit's HabitProgressSnapshot wholesale from its completion log
and derives the user's daily weather from the habit set.
"""
from datetime import date
from typing import List, Optional, Set

from habitsync.models import Settings
from habitsync.repositories.completion_repository import CompletionRepository
from habitsync.repositories.habit_repository import HabitRepository, ProgressSnapshotRepository
from habitsync.repositories.local_store import LocalStore
from habitsync.schemas import Habit, HabitProgressSnapshot, WeatherResponse
from habitsync.services.date_service import Clock, DateService
from habitsync.services.decay_service import DecayService
from habitsync.services.growth_service import GrowthService
from habitsync.services.streak_service import StreakService
from habitsync.services.weather_service import WeatherService


class ProgressService:
    """Service for derived habit progress"""

    def __init__(self, store: LocalStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.habit_repo = HabitRepository()
        self.completion_repo = CompletionRepository()
        self.snapshot_repo = ProgressSnapshotRepository()
        self.date_service = DateService()
        self.streak_service = StreakService()
        self.decay_service = DecayService()
        self.growth_service = GrowthService()
        self.weather_service = WeatherService()

    def today(self) -> date:
        return self.date_service.get_effective_date(self.settings, self.clock)

    def completion_dates(self, habit_id: str) -> List[date]:
        return [record.logical_date for record in self.completion_repo.get_for_habit(self.store, habit_id)]

    def compute_snapshot(self, habit_id: str, today: Optional[date] = None) -> HabitProgressSnapshot:
        """
        Compute (without storing) the progress of a habit from its log.

        Args:
            habit_id: Habit to compute
            today: Logical date to evaluate at (defaults to the clock's)

        Returns:
            Freshly computed snapshot
        """
        today = today or self.today()
        dates = self.completion_dates(habit_id)

        current = self.streak_service.current_streak(dates, today)
        decay = self.decay_service.evaluate(dates, today)

        return HabitProgressSnapshot(
            habit_id=habit_id,
            current_streak=current,
            longest_streak=self.streak_service.longest_streak(dates),
            is_streak_active=self.streak_service.is_streak_active(dates, today),
            decay_tier=decay.tier,
            days_missed=decay.days_missed,
            recovery_required=decay.recovery_required,
            recovery_progress=decay.recovery_progress,
            growth_tier=self.growth_service.tier_for_streak(current),
            last_completion_logical_date=self.streak_service.last_completion_date(dates),
            total_completions=len(set(dates)),
            next_milestone=self.streak_service.next_milestone(current),
            computed_at=self.clock.now()
        )

    def recompute(self, habit_id: str, today: Optional[date] = None) -> HabitProgressSnapshot:
        """Recompute the snapshot and replace the cached one"""
        snapshot = self.compute_snapshot(habit_id, today)
        return self.snapshot_repo.replace(self.store, snapshot)

    def get_snapshot(self, habit_id: str) -> HabitProgressSnapshot:
        """
        Current progress of a habit.

        The cache is only trusted when it was computed on the current
        logical date; decay advances with the calendar even when the log
        does not change.
        """
        today = self.today()
        cached = self.snapshot_repo.get(self.store, habit_id)
        if cached is not None and self.date_service.logical_date_for(cached.computed_at, self.settings) == today:
            return cached
        return self.compute_snapshot(habit_id, today)

    def scheduled_habits(self, user_id: str, day: date) -> List[Habit]:
        """Active habits due on a logical date"""
        return [
            habit for habit in self.habit_repo.get_for_user(self.store, user_id, active_only=True)
            if habit.is_scheduled_on(day)
        ]

    def completed_habit_ids(self, user_id: str, day: date) -> Set[str]:
        return {record.habit_id for record in self.completion_repo.get_for_user_on(self.store, user_id, day)}

    def get_weather(self, user_id: str, day: Optional[date] = None) -> WeatherResponse:
        """Weather for a logical date from scheduled vs completed habits"""
        day = day or self.today()
        scheduled = self.scheduled_habits(user_id, day)
        completed_ids = self.completed_habit_ids(user_id, day)
        completed = sum(1 for habit in scheduled if habit.id in completed_ids)

        rate = self.weather_service.completion_rate(completed, len(scheduled))
        return WeatherResponse(
            logical_date=day,
            scheduled=len(scheduled),
            completed=completed,
            completion_rate=rate,
            condition=self.weather_service.condition_for_day(completed, len(scheduled))
        )
