"""
Recipient save/delete flow.

A form can be seeded from the device location. Saving validates the draft,
geocodes when the city changed or coordinates are unset, persists, tells
subscribers, republishes the widget index and then refreshes the recipient's
weather tile in the background.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List

from weatherwhisper.domain import Recipient, RelationType
from weatherwhisper.errors import InvalidRequest, RecipientNotFound, WhisperError
from weatherwhisper.geocoding import GeocodingService
from weatherwhisper.location import CurrentLocationFetcher, resolve_current_place
from weatherwhisper.recipients.store import RecipientStore
from weatherwhisper.triggers import resolve_trigger
from weatherwhisper.weather import WeatherSnapshotResolver
from weatherwhisper.widget_sync import WidgetSyncPublisher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="recipients/service")

Subscriber = Callable[[str, str], None]


@dataclass(frozen=True)
class RecipientDraft:
    """Form input for creating or editing a recipient."""
    nickname: str
    city_name: str
    latitude: float = 0.0
    longitude: float = 0.0
    avatar: bytes | None = None
    relation_type: RelationType = RelationType.FRIEND
    # City text the coordinates were resolved for, e.g. by the current-location flow.
    original_city_name: str | None = None


def _same_city(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def needs_geocoding(draft: RecipientDraft, existing: Recipient | None) -> bool:
    """
    A changed city always re-geocodes; otherwise only unset coordinates do.

    The city is compared against the name the draft's coordinates came from:
    `original_city_name` when the draft carries one, else the saved city.
    """
    baseline = draft.original_city_name
    if baseline is None and existing is not None:
        baseline = existing.city_name
    if baseline is not None and not _same_city(draft.city_name, baseline):
        return True
    return draft.latitude == 0 or draft.longitude == 0


class RecipientEvents:
    """Observer list notified with (event, recipient_id) after each change."""

    SAVED = "saved"
    DELETED = "deleted"

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; the returned function unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str, recipient_id: str) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, recipient_id)
            except Exception as exc:
                logger.warning("Recipient subscriber failed on %s: %s", event, exc)


class RecipientService:
    """Create, edit and delete recipients, keeping the widget in step."""

    def __init__(
        self,
        store: RecipientStore,
        geocoder: GeocodingService,
        publisher: WidgetSyncPublisher,
        resolver: WeatherSnapshotResolver,
        *,
        events: RecipientEvents | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.publisher = publisher
        self.resolver = resolver
        self.events = events or RecipientEvents()
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="recipient-weather")

    def list_recipients(self) -> List[Recipient]:
        return self.store.list_recipients()

    def get(self, recipient_id: str) -> Recipient:
        recipient = self.store.get(recipient_id)
        if recipient is None:
            raise RecipientNotFound(f"Unknown recipient {recipient_id}")
        return recipient

    def draft_from_current_location(
        self, fetcher: CurrentLocationFetcher, existing: Recipient | None = None
    ) -> RecipientDraft:
        """Seed a form from the device location, keeping the other fields of an edited recipient."""
        place = resolve_current_place(fetcher, self.geocoder)
        logger.info("Current location resolved to %s", place.display_name)
        return RecipientDraft(
            nickname=existing.nickname if existing is not None else "",
            city_name=place.display_name,
            latitude=place.latitude,
            longitude=place.longitude,
            avatar=existing.avatar if existing is not None else None,
            relation_type=existing.relation_type if existing is not None else RelationType.FRIEND,
            original_city_name=place.display_name,
        )

    def save(self, draft: RecipientDraft, existing: Recipient | None = None) -> Recipient:
        nickname = (draft.nickname or "").strip()
        city = (draft.city_name or "").strip()
        if not nickname:
            raise InvalidRequest("Please enter a nickname.")
        if not city:
            raise InvalidRequest("Please enter a city or address.")

        latitude, longitude = draft.latitude, draft.longitude
        if needs_geocoding(draft, existing):
            place = self.geocoder.forward(city)
            latitude, longitude = place.latitude, place.longitude
            city = place.display_name

        fields = dict(
            nickname=nickname,
            city_name=city,
            latitude=latitude,
            longitude=longitude,
            avatar=draft.avatar,
            relation_type=draft.relation_type,
            updated_at=datetime.now(timezone.utc),
        )
        if existing is None:
            recipient = Recipient(**fields)
        else:
            recipient = existing.model_copy(update=fields)

        self.store.upsert(recipient)
        logger.info("Saved recipient %s (%s)", recipient.id, recipient.city_name)

        self.events.publish(RecipientEvents.SAVED, recipient.id)
        self.publisher.publish_recipients_index(self.store.list_recipients())
        if recipient.has_coordinates:
            self._schedule_weather(recipient)
        return recipient

    def delete(self, recipient_id: str) -> bool:
        removed = self.store.delete(recipient_id)
        if removed:
            logger.info("Deleted recipient %s", recipient_id)
            self.events.publish(RecipientEvents.DELETED, recipient_id)
        self.publisher.publish_recipients_index(self.store.list_recipients())
        return removed

    def _schedule_weather(self, recipient: Recipient) -> None:
        try:
            self._executor.submit(self._publish_weather, recipient)
        except RuntimeError as exc:
            logger.warning("Weather publish for %s not scheduled: %s", recipient.id, exc)

    def _publish_weather(self, recipient: Recipient) -> None:
        try:
            snapshot = self.resolver.resolve(recipient)
        except WhisperError as exc:
            logger.warning("Weather for %s unavailable after save: %s", recipient.id, exc)
            return
        self.publisher.publish_weather(recipient, snapshot, resolve_trigger(snapshot))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
