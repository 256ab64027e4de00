"""
Tests for the tier engines: DecayService, GrowthService, WeatherService.

Tests cover:
1. Decay tier table and days-missed counting
2. Recovery rebuilt from the completion log
3. Growth thresholds
4. Weather thresholds (inclusive lower bounds) and completion rate
"""
import pytest
from datetime import timedelta

from habitsync.constants import DecayTier, GrowthTier, WeatherCondition
from habitsync.services.decay_service import DecayService
from habitsync.services.growth_service import GrowthService
from habitsync.services.weather_service import WeatherService


class TestDecayTiers:
    """Tests for tier_for_days_missed and days_missed"""

    @pytest.mark.parametrize("days_missed,tier", [
        (0, DecayTier.HEALTHY),
        (1, DecayTier.WARNING),
        (2, DecayTier.CLOUDY),
        (3, DecayTier.CLOUDY),
        (4, DecayTier.STORMY),
        (30, DecayTier.STORMY),
    ])
    def test_tier_table(self, days_missed, tier):
        """Should map days missed to the decay tier table"""
        assert DecayService.tier_for_days_missed(days_missed) == tier

    @pytest.mark.parametrize("tier,required", [
        (DecayTier.HEALTHY, 0),
        (DecayTier.WARNING, 1),
        (DecayTier.CLOUDY, 2),
        (DecayTier.STORMY, 3),
    ])
    def test_recovery_requirements(self, tier, required):
        """Should require 0, 1, 2 and 3 completions to recover"""
        assert DecayService.recovery_required(tier) == required

    def test_days_missed_excludes_both_ends(self, today):
        """Completed yesterday means nothing missed yet"""
        assert DecayService.days_missed(today - timedelta(days=1), today) == 0
        assert DecayService.days_missed(today - timedelta(days=3), today) == 2

    def test_no_history_misses_nothing(self, today):
        """Should count no days missed without history"""
        assert DecayService.days_missed(None, today) == 0

    def test_worse(self):
        """Should pick the more severe tier"""
        assert DecayService.worse(DecayTier.WARNING, DecayTier.STORMY) == DecayTier.STORMY
        assert DecayService.worse(DecayTier.CLOUDY, DecayTier.HEALTHY) == DecayTier.CLOUDY


class TestDecayEvaluation:
    """Tests for evaluate (recovery reconstruction)"""

    def test_empty_log_is_healthy(self, today):
        """Should treat a habit without completions as healthy"""
        status = DecayService.evaluate([], today)
        assert status.tier == DecayTier.HEALTHY
        assert status.is_healthy

    def test_completed_today_is_healthy(self, today):
        """Should be healthy when completed today"""
        assert DecayService.evaluate([today], today).tier == DecayTier.HEALTHY

    @pytest.mark.parametrize("last_offset,tier", [
        (1, DecayTier.HEALTHY),
        (2, DecayTier.WARNING),
        (3, DecayTier.CLOUDY),
        (4, DecayTier.CLOUDY),
        (5, DecayTier.STORMY),
    ])
    def test_current_gap_sets_tier(self, today, last_offset, tier):
        """Should derive the tier from the gap since the last completion"""
        status = DecayService.evaluate([today - timedelta(days=last_offset)], today)
        assert status.tier == tier
        assert status.days_missed == last_offset - 1
        assert status.recovery_progress == 0

    def test_warning_recovers_with_one_completion(self, today):
        """A single completion after one missed day is enough"""
        dates = [today - timedelta(days=3), today - timedelta(days=1)]
        assert DecayService.evaluate(dates, today).tier == DecayTier.HEALTHY

    def test_cloudy_needs_two_completions(self, today):
        """The first completion after a cloudy gap does not restore health"""
        dates = [today - timedelta(days=4), today]
        status = DecayService.evaluate(dates, today)
        assert status.tier == DecayTier.CLOUDY
        assert status.recovery_required == 2
        assert status.recovery_progress == 1

    def test_stormy_needs_three_completions(self, today):
        """Two completions after a stormy gap are not enough"""
        dates = [today - timedelta(days=10), today - timedelta(days=1), today]
        status = DecayService.evaluate(dates, today)
        assert status.tier == DecayTier.STORMY
        assert status.recovery_progress == 2

    def test_stormy_recovers_after_three_completions(self, today):
        """Should recover from stormy on the third completion"""
        dates = [today - timedelta(days=10)] + [today - timedelta(days=n) for n in (2, 1, 0)]
        status = DecayService.evaluate(dates, today)
        assert status.tier == DecayTier.HEALTHY
        assert status.recovery_progress == 0

    def test_short_gap_during_recovery_keeps_worse_tier(self, today):
        """A missed day while stormy does not soften the tier to warning"""
        dates = [today - timedelta(days=n) for n in (10, 5, 3, 2)]
        status = DecayService.evaluate(dates, today)
        assert status.tier == DecayTier.STORMY
        assert status.recovery_progress == 0

    def test_duplicate_dates_count_once(self, today):
        """Two records on the same logical day are one completion toward recovery"""
        dates = [today - timedelta(days=10), today, today]
        status = DecayService.evaluate(dates, today)
        assert status.recovery_progress == 1


class TestGrowthTiers:
    """Tests for GrowthService"""

    @pytest.mark.parametrize("streak,tier", [
        (0, GrowthTier.SEEDLING),
        (14, GrowthTier.SEEDLING),
        (15, GrowthTier.GROWING),
        (29, GrowthTier.GROWING),
        (30, GrowthTier.FLOURISHING),
        (365, GrowthTier.FLOURISHING),
    ])
    def test_tier_for_streak(self, streak, tier):
        """Should map the streak to its growth tier"""
        assert GrowthService.tier_for_streak(streak) == tier

    def test_tier_falls_with_streak(self):
        """No hysteresis: a shorter streak drops the tier again"""
        assert GrowthService.tier_for_streak(31) == GrowthTier.FLOURISHING
        assert GrowthService.tier_for_streak(2) == GrowthTier.SEEDLING

    def test_days_until_next_tier(self):
        """Should count days to the next growth tier"""
        assert GrowthService.days_until_next_tier(10) == 5
        assert GrowthService.days_until_next_tier(20) == 10
        assert GrowthService.days_until_next_tier(30) is None


class TestWeather:
    """Tests for WeatherService"""

    @pytest.mark.parametrize("rate,condition", [
        (1.0, WeatherCondition.RAINBOW),
        (0.99, WeatherCondition.SUNNY),
        (0.75, WeatherCondition.SUNNY),
        (0.74, WeatherCondition.PARTLY_CLOUDY),
        (0.50, WeatherCondition.PARTLY_CLOUDY),
        (0.25, WeatherCondition.CLOUDY),
        (0.24, WeatherCondition.STORMY),
        (0.0, WeatherCondition.STORMY),
    ])
    def test_condition_thresholds(self, rate, condition):
        """Should treat each threshold as an inclusive lower bound"""
        assert WeatherService.condition_for_rate(rate) == condition

    def test_completion_rate(self):
        """Should divide completed by scheduled"""
        assert WeatherService.completion_rate(3, 4) == 0.75

    def test_nothing_scheduled_rates_zero(self):
        """Should rate a day with nothing scheduled as 0.0"""
        assert WeatherService.completion_rate(0, 0) == 0.0

    def test_rest_day_is_sunny(self):
        """Should show sunny when nothing was scheduled"""
        assert WeatherService.condition_for_day(0, 0) == WeatherCondition.SUNNY

    def test_day_with_habits_uses_rate(self):
        """Should fall back to the rate thresholds when habits were scheduled"""
        assert WeatherService.condition_for_day(0, 3) == WeatherCondition.STORMY
        assert WeatherService.condition_for_day(3, 3) == WeatherCondition.RAINBOW

    def test_rate_is_clamped(self):
        """Should clamp the rate to 1.0"""
        assert WeatherService.completion_rate(5, 4) == 1.0

    def test_partly_cloudy_serializes_camel_case(self):
        """Should serialize partly cloudy in camelCase"""
        assert WeatherCondition.PARTLY_CLOUDY.value == "partlyCloudy"
