"""
Decay calculation service.
Maps missed logical days to a decay tier and rebuilds recovery progress
from the completion log instead of keeping a mutable counter.
"""
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from habitsync.constants import (
    DecayTier, DECAY_WARNING_DAYS, DECAY_CLOUDY_MIN_DAYS, DECAY_STORMY_MIN_DAYS
)

# Completions needed to return to healthy from each tier
RECOVERY_REQUIREMENTS = {
    DecayTier.HEALTHY: 0,
    DecayTier.WARNING: 1,
    DecayTier.CLOUDY: 2,
    DecayTier.STORMY: 3,
}

SEVERITY = {
    DecayTier.HEALTHY: 0,
    DecayTier.WARNING: 1,
    DecayTier.CLOUDY: 2,
    DecayTier.STORMY: 3,
}


@dataclass(frozen=True)
class DecayStatus:
    tier: DecayTier
    days_missed: int
    recovery_required: int
    recovery_progress: int

    @property
    def is_healthy(self) -> bool:
        return self.tier == DecayTier.HEALTHY


class DecayService:
    """Pure decay tier logic"""

    @staticmethod
    def days_missed(last_completion: Optional[date], today: date) -> int:
        """
        Logical days strictly between the last completion and today.

        No completion yet counts as nothing missed.
        """
        if last_completion is None:
            return 0
        return max(0, (today - last_completion).days - 1)

    @staticmethod
    def tier_for_days_missed(days_missed: int) -> DecayTier:
        """
        0 -> healthy, 1 -> warning, 2-3 -> cloudy, 4+ -> stormy
        """
        if days_missed >= DECAY_STORMY_MIN_DAYS:
            return DecayTier.STORMY
        if days_missed >= DECAY_CLOUDY_MIN_DAYS:
            return DecayTier.CLOUDY
        if days_missed >= DECAY_WARNING_DAYS:
            return DecayTier.WARNING
        return DecayTier.HEALTHY

    @staticmethod
    def recovery_required(tier: DecayTier) -> int:
        return RECOVERY_REQUIREMENTS[tier]

    @staticmethod
    def worse(first: DecayTier, second: DecayTier) -> DecayTier:
        return first if SEVERITY[first] >= SEVERITY[second] else second

    @staticmethod
    def evaluate(completion_dates: Iterable[date], today: date) -> DecayStatus:
        """
        Rebuild the decay state of a habit from its logical completion dates.

        Replays the log oldest first. A gap before a completion drops the
        habit into the tier for that gap (never improving a worse tier) and
        restarts recovery; each completion while decayed counts toward the
        tier's requirement and the habit is healthy again once it is met.
        Days missed since the last completion are applied the same way.

        Args:
            completion_dates: Logical dates of completions
            today: Current logical date

        Returns:
            DecayStatus for today
        """
        tier = DecayTier.HEALTHY
        progress = 0
        previous = None

        for day in sorted(set(completion_dates)):
            if day > today:
                break
            if previous is not None:
                gap_tier = DecayService.tier_for_days_missed(DecayService.days_missed(previous, day))
                if gap_tier != DecayTier.HEALTHY:
                    tier = DecayService.worse(tier, gap_tier)
                    progress = 0
            if tier != DecayTier.HEALTHY:
                progress += 1
                if progress >= RECOVERY_REQUIREMENTS[tier]:
                    tier = DecayTier.HEALTHY
                    progress = 0
            previous = day

        missed = DecayService.days_missed(previous, today)
        current_gap_tier = DecayService.tier_for_days_missed(missed)
        if current_gap_tier != DecayTier.HEALTHY:
            tier = DecayService.worse(tier, current_gap_tier)
            progress = 0

        return DecayStatus(
            tier=tier,
            days_missed=missed,
            recovery_required=RECOVERY_REQUIREMENTS[tier],
            recovery_progress=progress
        )
