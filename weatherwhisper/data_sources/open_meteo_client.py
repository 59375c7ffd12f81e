"""Helpers for fetching current weather and place names from Open-Meteo and Nominatim."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests_cache

from weatherwhisper.config import settings
from weatherwhisper.domain import WeatherSnapshot
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="open_meteo_client")

# Response cache only, no retry adapter: callers own the retry policy.
session = requests_cache.CachedSession(
    settings.weather_cache_name,
    expire_after=settings.weather_cache_seconds,
)

OPEN_METEO_WEATHER_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"

CURRENT_VARS = [
    "temperature_2m",
    "apparent_temperature",
    "precipitation_probability",
    "weather_code",
    "wind_speed_10m",
    "wind_gusts_10m",
    "is_day",
]

EXPECTED_UNITS = {
    "temperature_2m": "°C",
    "apparent_temperature": "°C",
    "precipitation_probability": "%",
    "wind_speed_10m": "km/h",
    "wind_gusts_10m": "km/h",
}

# WMO weather interpretation codes -> normalized condition strings
WMO_CONDITIONS = {
    0: "clear",
    1: "mostly_clear",
    2: "partly_cloudy",
    3: "overcast",
    45: "fog",
    48: "rime_fog",
    51: "light_drizzle",
    53: "drizzle",
    55: "dense_drizzle",
    56: "freezing_drizzle",
    57: "freezing_drizzle",
    61: "light_rain",
    63: "rain",
    65: "heavy_rain",
    66: "freezing_rain",
    67: "freezing_rain",
    71: "light_snow",
    73: "snow",
    75: "heavy_snow",
    77: "snow_grains",
    80: "rain_showers",
    81: "rain_showers",
    82: "heavy_rain",
    85: "snow_showers",
    86: "heavy_snow",
    95: "thunderstorm",
    96: "thunderstorm_hail",
    99: "thunderstorm_hail",
}


@dataclass
class GeocodeResult:
    """A place resolved from free text."""
    display_name: str
    latitude: float
    longitude: float
    timezone: Optional[str] = None


def condition_for_code(code: Optional[int]) -> str:
    """Translate a WMO weather code into a condition string ('unknown' when absent)."""
    if code is None:
        return "unknown"
    return WMO_CONDITIONS.get(int(code), "unknown")


def _iso_to_dt_with_tz(s: str, tz_name: str) -> dt.datetime:
    """Interpret Open-Meteo local time string as being in tz_name."""
    naive = dt.datetime.fromisoformat(s)
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone from Open-Meteo; using UTC", extra={"tz_name": tz_name})
        tz = ZoneInfo("UTC")
    return naive.replace(tzinfo=tz)


def _warn_on_unexpected_units(units: dict, *, context: str) -> None:
    """Log a warning if Open-Meteo returns units we did not request."""
    if not units:
        return
    for field, expected in EXPECTED_UNITS.items():
        actual = units.get(field)
        if actual and actual != expected:
            logger.warning(
                "Unexpected Open-Meteo unit",
                extra={"context": context, "field": field, "unit": actual, "expected": expected},
            )


def _percent_to_fraction(value) -> Optional[float]:
    if value is None:
        return None
    return max(0.0, min(1.0, float(value) / 100.0))


def _normalize_is_day(value) -> Optional[bool]:
    if value is None:
        return None
    return bool(int(value))


def fetch_current_snapshot(latitude: float, longitude: float, *, timeout: float | None = None) -> WeatherSnapshot:
    """Fetch current conditions for the coordinates and normalize them into a WeatherSnapshot.

    Raises requests exceptions on transport/HTTP failures and KeyError/ValueError
    when the payload is missing required fields; callers translate those.
    """
    params = {
        "latitude": latitude,
        "longitude": longitude,
        "current": ",".join(CURRENT_VARS),
        "timezone": "auto",
        "temperature_unit": "celsius",
        "wind_speed_unit": "kmh",
    }
    resp = session.get(
        OPEN_METEO_WEATHER_URL,
        params=params,
        timeout=timeout if timeout is not None else settings.weather_timeout_seconds,
    )
    resp.raise_for_status()
    data = resp.json()

    current = data["current"]
    _warn_on_unexpected_units(data.get("current_units") or {}, context="weather_current")
    tz_name = data.get("timezone") or "UTC"
    code = current.get("weather_code")

    return WeatherSnapshot(
        condition=condition_for_code(code),
        weather_code=code,
        temperature=float(current["temperature_2m"]),
        feels_like=current.get("apparent_temperature"),
        precip_chance=_percent_to_fraction(current.get("precipitation_probability")),
        wind_speed=current.get("wind_speed_10m"),
        wind_gusts=current.get("wind_gusts_10m"),
        is_day=_normalize_is_day(current.get("is_day")),
        captured_at=_iso_to_dt_with_tz(current["time"], tz_name),
        timezone=tz_name,
    )


def search_place(query: str, *, language: str = "en", timeout: float | None = None) -> Optional[GeocodeResult]:
    """Forward-geocode free text with the Open-Meteo geocoding API; None when nothing matches."""
    resp = session.get(
        OPEN_METEO_GEOCODING_URL,
        params={"name": query, "count": 1, "language": language, "format": "json"},
        timeout=timeout if timeout is not None else settings.weather_timeout_seconds,
    )
    resp.raise_for_status()
    results = resp.json().get("results") or []
    if not results:
        return None
    first = results[0]
    # city, then region, then place name, then what the user typed
    display_name = first.get("name") or first.get("admin1") or first.get("admin2") or query
    return GeocodeResult(
        display_name=display_name,
        latitude=float(first["latitude"]),
        longitude=float(first["longitude"]),
        timezone=first.get("timezone"),
    )


def reverse_place(
    latitude: float,
    longitude: float,
    *,
    language: str = "en",
    timeout: float | None = None,
) -> Optional[str]:
    """Reverse-geocode coordinates with Nominatim; None when no place is known."""
    resp = session.get(
        NOMINATIM_REVERSE_URL,
        params={
            "lat": round(latitude, 6),
            "lon": round(longitude, 6),
            "format": "jsonv2",
            "zoom": 10,
            "accept-language": language,
        },
        headers={"User-Agent": settings.geocoding_user_agent},
        timeout=timeout if timeout is not None else settings.weather_timeout_seconds,
    )
    resp.raise_for_status()
    data = resp.json()
    if not data or data.get("error"):
        return None
    address = data.get("address") or {}
    return (
        address.get("city")
        or address.get("town")
        or address.get("village")
        or address.get("state")
        or data.get("name")
        or None
    )
