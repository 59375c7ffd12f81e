"""Forward and reverse geocoding with the pipeline's error taxonomy."""

from __future__ import annotations

from typing import Callable, Optional

import requests

from weatherwhisper.config import settings
from weatherwhisper.data_sources import GeocodeResult, reverse_place, search_place
from weatherwhisper.errors import InvalidRequest, LocationNotFound, TransportError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="geocoding")


class GeocodingService:
    """Resolve city text to coordinates and coordinates back to a display name."""

    def __init__(
        self,
        *,
        search: Callable[..., Optional[GeocodeResult]] = search_place,
        reverse: Callable[..., Optional[str]] = reverse_place,
        timeout: float | None = None,
    ) -> None:
        self._search = search
        self._reverse = reverse
        self.timeout = timeout if timeout is not None else settings.weather_timeout_seconds

    def forward(self, query: str) -> GeocodeResult:
        trimmed = (query or "").strip()
        if not trimmed:
            raise InvalidRequest("Please enter a city or address.")
        try:
            result = self._search(trimmed, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            logger.warning("Forward geocoding failed for %r: %s", trimmed, exc)
            raise TransportError(str(exc)) from exc
        if result is None:
            raise LocationNotFound(f"No matching location found for {trimmed!r}. Please refine your input.")
        logger.info("Geocoded %r -> %s (%.4f, %.4f)", trimmed, result.display_name, result.latitude, result.longitude)
        return result

    def reverse(self, latitude: float, longitude: float) -> str:
        try:
            name = self._reverse(latitude, longitude, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            logger.warning("Reverse geocoding failed for (%.4f, %.4f): %s", latitude, longitude, exc)
            raise TransportError(str(exc)) from exc
        if not name:
            raise LocationNotFound(f"No place known at ({latitude:.4f}, {longitude:.4f})")
        return name
