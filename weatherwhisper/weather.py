"""Single-shot resolution of a recipient's location into a weather snapshot."""

from __future__ import annotations

from typing import Protocol

import requests
from pydantic import ValidationError

from weatherwhisper.config import settings
from weatherwhisper.data_sources import WeatherProvider, build_weather_provider
from weatherwhisper.domain import WeatherSnapshot
from weatherwhisper.errors import InvalidRequest, WeatherUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_resolver")


class Located(Protocol):
    """Anything with a latitude/longitude pair (Recipient, GeocodeResult, ...)."""
    latitude: float
    longitude: float


class WeatherSnapshotResolver:
    """Turn a location into a WeatherSnapshot or raise WeatherUnavailable.

    No retries happen here; the refresh loop that calls the resolver owns
    the retry policy and treats a failure as stale weather.
    """

    def __init__(self, provider: WeatherProvider | None = None, *, timeout: float | None = None) -> None:
        self.provider = provider or build_weather_provider()
        self.timeout = timeout if timeout is not None else settings.weather_timeout_seconds

    def resolve(self, location: Located) -> WeatherSnapshot:
        latitude, longitude = location.latitude, location.longitude
        if latitude == 0 or longitude == 0:
            raise InvalidRequest("Location has no resolved coordinates")

        try:
            snapshot = self.provider.fetch_current(latitude, longitude, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            logger.warning("Weather fetch timed out after %.1fs for (%.4f, %.4f)", self.timeout, latitude, longitude)
            raise WeatherUnavailable(f"Weather provider timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Weather fetch failed for (%.4f, %.4f): %s", latitude, longitude, exc)
            raise WeatherUnavailable(str(exc)) from exc
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Weather payload could not be normalized: %s", exc)
            raise WeatherUnavailable(f"Unusable weather payload: {exc}") from exc

        logger.debug(
            "Resolved weather for (%.4f, %.4f): condition=%s temp=%.1f",
            latitude,
            longitude,
            snapshot.condition,
            snapshot.temperature,
        )
        return snapshot
