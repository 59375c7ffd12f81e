"""Interfaces and helpers for weather data sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from weatherwhisper.domain import WeatherSnapshot


class WeatherProvider(Protocol):
    """Interface for anything that can provide current weather for a coordinate pair."""

    def fetch_current(self, latitude: float, longitude: float, *, timeout: float | None = None) -> WeatherSnapshot:
        """Return the current weather snapshot."""
        ...


@dataclass
class CallableWeatherProvider(WeatherProvider):
    """Wrap a plain function so it can be swapped for a different backend."""

    current: Callable[..., WeatherSnapshot]

    def fetch_current(self, latitude: float, longitude: float, *, timeout: float | None = None) -> WeatherSnapshot:
        """Delegate to the configured callable."""
        return self.current(latitude, longitude, timeout=timeout)
