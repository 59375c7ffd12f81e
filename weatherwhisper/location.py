"""
Current-location lookup over a callback-driven location manager.

Platform location APIs report through delegate callbacks: one for
authorization changes and one for location fixes or failures. Each step
here is a single Future that the first terminal callback resolves; any later
or duplicate callback finds no pending Future and is dropped.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

from weatherwhisper.data_sources import GeocodeResult
from weatherwhisper.errors import (
    LocationNotFound,
    LocationPermissionDenied,
    LocationUnavailable,
    TransportError,
)
from weatherwhisper.geocoding import GeocodingService
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="location")

CURRENT_LOCATION_LABEL = "Current location"


class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


class LocationManager(Protocol):
    """Platform location manager; results arrive via the fetcher's callback methods."""

    def authorization_status(self) -> AuthorizationStatus:
        ...

    def request_authorization(self) -> None:
        ...

    def request_location(self) -> None:
        ...


class CurrentLocationFetcher:
    """Turns authorization and location callbacks into one blocking request per call."""

    def __init__(self, manager: LocationManager, *, timeout: float = 15.0) -> None:
        self.manager = manager
        self.timeout = timeout
        self._lock = threading.Lock()
        self._auth_future: Optional[Future] = None
        self._location_future: Optional[Future] = None

    def request_location(self, timeout: float | None = None) -> Coordinates:
        timeout = self.timeout if timeout is None else timeout
        status = self.manager.authorization_status()
        if status == AuthorizationStatus.NOT_DETERMINED:
            self._await_authorization(timeout)
        elif status in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED):
            raise LocationPermissionDenied("Location permission is required. Please allow access in Settings.")

        future: Future = Future()
        with self._lock:
            self._location_future = future
        self.manager.request_location()
        return self._wait(future, timeout, "_location_future", "Unable to get current location. Please try again.")

    def _await_authorization(self, timeout: float) -> None:
        future: Future = Future()
        with self._lock:
            self._auth_future = future
        self.manager.request_authorization()
        self._wait(future, timeout, "_auth_future", "Location authorization was not answered.")

    def _wait(self, future: Future, timeout: float, slot: str, message: str):
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            with self._lock:
                if getattr(self, slot) is future:
                    setattr(self, slot, None)
            raise LocationUnavailable(message) from exc

    def _take(self, slot: str) -> Optional[Future]:
        with self._lock:
            future = getattr(self, slot)
            setattr(self, slot, None)
            return future

    # -- delegate callbacks -------------------------------------------------

    def authorization_changed(self, status: AuthorizationStatus) -> None:
        if status == AuthorizationStatus.NOT_DETERMINED:
            return
        future = self._take("_auth_future")
        if future is None:
            return
        if status == AuthorizationStatus.AUTHORIZED:
            future.set_result(None)
        else:
            future.set_exception(
                LocationPermissionDenied("Location permission is required. Please allow access in Settings.")
            )

    def locations_updated(self, locations: Sequence[Coordinates]) -> None:
        future = self._take("_location_future")
        if future is None:
            logger.debug("Dropping location update with no pending request")
            return
        if locations:
            future.set_result(locations[0])
        else:
            future.set_exception(LocationUnavailable("Unable to get current location. Please try again."))

    def location_failed(self, error: BaseException) -> None:
        future = self._take("_location_future")
        if future is None:
            return
        future.set_exception(error)


def resolve_current_place(fetcher: CurrentLocationFetcher, geocoder: GeocodingService) -> GeocodeResult:
    """Locate the device and name the place; an unnamed place is labelled 'Current location'."""
    coords = fetcher.request_location()
    try:
        name = geocoder.reverse(coords.latitude, coords.longitude)
    except (LocationNotFound, TransportError) as exc:
        logger.info("Reverse geocoding unavailable, using generic label: %s", exc)
        name = CURRENT_LOCATION_LABEL
    return GeocodeResult(display_name=name, latitude=coords.latitude, longitude=coords.longitude)
