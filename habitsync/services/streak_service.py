"""
Streak calculation service.
Streaks are never stored as counters; they are rebuilt from the logical
dates of a habit's completion log every time they are needed.
"""
from datetime import date, timedelta
from typing import Iterable, List, Optional

from habitsync.constants import STREAK_MILESTONES


class StreakService:
    """Pure streak reconstruction over logical dates"""

    @staticmethod
    def current_streak(completion_dates: Iterable[date], today: date) -> int:
        """
        Calculate the current streak ending today or yesterday.

        1. Empty history gives 0.
        2. If the newest logical date is neither today nor yesterday the
           streak is broken (0).
        3. Counting starts at today if completed today, else yesterday.
        4. Walk dates newest first; each date equal to the expected day
           extends the streak, duplicates are skipped and the first date
           before the expected day is a gap that ends the walk.

        Args:
            completion_dates: Logical dates of completions (any order, duplicates allowed)
            today: Current logical date

        Returns:
            Current streak length in days
        """
        # Entries dated after today (clock skew) cannot belong to the current run
        ordered = sorted((day for day in completion_dates if day <= today), reverse=True)
        if not ordered:
            return 0

        yesterday = today - timedelta(days=1)
        latest = ordered[0]
        if latest != today and latest != yesterday:
            return 0

        expected = today if today in ordered else yesterday
        streak = 0
        for day in ordered:
            if day > expected:
                # Duplicate of a date already counted
                continue
            if day == expected:
                streak += 1
                expected = expected - timedelta(days=1)
            else:
                break
        return streak

    @staticmethod
    def longest_streak(completion_dates: Iterable[date]) -> int:
        """
        Calculate the longest run of consecutive logical dates ever recorded.

        Args:
            completion_dates: Logical dates of completions (any order, duplicates allowed)

        Returns:
            Longest streak length in days (0 for no completions)
        """
        unique = sorted(set(completion_dates))
        if not unique:
            return 0

        longest = 1
        run = 1
        for previous, current in zip(unique, unique[1:]):
            if (current - previous).days == 1:
                run += 1
                longest = max(longest, run)
            else:
                run = 1
        return longest

    @staticmethod
    def is_streak_active(completion_dates: Iterable[date], today: date) -> bool:
        """Completed today or yesterday"""
        yesterday = today - timedelta(days=1)
        return any(day == today or day == yesterday for day in completion_dates)

    @staticmethod
    def is_completed_on(completion_dates: Iterable[date], target_date: date) -> bool:
        return any(day == target_date for day in completion_dates)

    @staticmethod
    def last_completion_date(completion_dates: Iterable[date]) -> Optional[date]:
        return max(completion_dates, default=None)

    @staticmethod
    def next_milestone(current_streak: int) -> Optional[int]:
        """Next streak length that awards milestone XP, or None past the last one"""
        for milestone in sorted(STREAK_MILESTONES):
            if current_streak < milestone:
                return milestone
        return None

    @staticmethod
    def days_until_next_milestone(current_streak: int) -> Optional[int]:
        milestone = StreakService.next_milestone(current_streak)
        if milestone is None:
            return None
        return milestone - current_streak

    @staticmethod
    def is_milestone(current_streak: int) -> bool:
        return current_streak in STREAK_MILESTONES

    @staticmethod
    def completion_count(completion_dates: Iterable[date], start: date, end: date) -> int:
        """Number of distinct logical dates completed within [start, end]"""
        return len({day for day in completion_dates if start <= day <= end})

    @staticmethod
    def weekly_completion_rate(completion_dates: Iterable[date], today: date) -> float:
        """Share of the seven days of today's ISO week that were completed (0.0 to 1.0)"""
        week_start = today - timedelta(days=today.weekday())
        week_end = week_start + timedelta(days=6)
        return StreakService.completion_count(completion_dates, week_start, week_end) / 7.0

    @staticmethod
    def unique_dates(completion_dates: Iterable[date]) -> List[date]:
        """Distinct logical dates, oldest first"""
        return sorted(set(completion_dates))
