"""Weather and place-name data sources."""

from .base import CallableWeatherProvider, WeatherProvider
from .open_meteo_client import (
    GeocodeResult,
    condition_for_code,
    fetch_current_snapshot,
    reverse_place,
    search_place,
)


def build_weather_provider() -> WeatherProvider:
    """Return the Open-Meteo backed provider."""
    return CallableWeatherProvider(current=fetch_current_snapshot)


__all__ = [
    "build_weather_provider",
    "CallableWeatherProvider",
    "WeatherProvider",
    "GeocodeResult",
    "condition_for_code",
    "fetch_current_snapshot",
    "reverse_place",
    "search_place",
]
