"""
Weather condition from the share of today's scheduled habits completed.
"""
from habitsync.constants import (
    WeatherCondition,
    WEATHER_RAINBOW_THRESHOLD,
    WEATHER_SUNNY_THRESHOLD,
    WEATHER_PARTLY_CLOUDY_THRESHOLD,
    WEATHER_CLOUDY_THRESHOLD,
    REST_DAY_WEATHER
)


class WeatherService:
    """Pure weather logic"""

    @staticmethod
    def completion_rate(completed: int, scheduled: int) -> float:
        """
        Completed / scheduled, clamped to [0, 1].

        A day with nothing scheduled rates 0.0.
        """
        if scheduled <= 0:
            return 0.0
        return max(0.0, min(1.0, completed / scheduled))

    @staticmethod
    def condition_for_rate(rate: float) -> WeatherCondition:
        """
        Lower bounds are inclusive:
        1.0 rainbow, 0.75 sunny, 0.50 partly cloudy, 0.25 cloudy, else stormy.
        """
        if rate >= WEATHER_RAINBOW_THRESHOLD:
            return WeatherCondition.RAINBOW
        if rate >= WEATHER_SUNNY_THRESHOLD:
            return WeatherCondition.SUNNY
        if rate >= WEATHER_PARTLY_CLOUDY_THRESHOLD:
            return WeatherCondition.PARTLY_CLOUDY
        if rate >= WEATHER_CLOUDY_THRESHOLD:
            return WeatherCondition.CLOUDY
        return WeatherCondition.STORMY

    @staticmethod
    def condition_for_day(completed: int, scheduled: int) -> WeatherCondition:
        """
        Weather for a whole day. A rest day (nothing scheduled) is sunny:
        a day off is not a missed day.
        """
        if scheduled <= 0:
            return REST_DAY_WEATHER
        return WeatherService.condition_for_rate(WeatherService.completion_rate(completed, scheduled))
