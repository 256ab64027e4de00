"""
Growth tier mapping from current streak length.
"""
from habitsync.constants import (
    GrowthTier, GROWTH_GROWING_MIN_STREAK, GROWTH_FLOURISHING_MIN_STREAK
)


class GrowthService:
    """Pure growth tier logic"""

    @staticmethod
    def tier_for_streak(current_streak: int) -> GrowthTier:
        """
        0-14 -> seedling, 15-29 -> growing, 30+ -> flourishing.

        No hysteresis: the tier follows the streak down as well as up.
        """
        if current_streak >= GROWTH_FLOURISHING_MIN_STREAK:
            return GrowthTier.FLOURISHING
        if current_streak >= GROWTH_GROWING_MIN_STREAK:
            return GrowthTier.GROWING
        return GrowthTier.SEEDLING

    @staticmethod
    def days_until_next_tier(current_streak: int):
        """Streak days still needed for the next tier, or None at the top"""
        if current_streak < GROWTH_GROWING_MIN_STREAK:
            return GROWTH_GROWING_MIN_STREAK - current_streak
        if current_streak < GROWTH_FLOURISHING_MIN_STREAK:
            return GROWTH_FLOURISHING_MIN_STREAK - current_streak
        return None
