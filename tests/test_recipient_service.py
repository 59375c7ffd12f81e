import unittest
from concurrent.futures import Executor, Future
from datetime import datetime, timezone

from weatherwhisper.data_sources import GeocodeResult
from weatherwhisper.domain import Recipient, RelationType, WeatherSnapshot
from weatherwhisper.errors import InvalidRequest, LocationNotFound, RecipientNotFound, WeatherUnavailable
from weatherwhisper.geocoding import GeocodingService
from weatherwhisper.location import CURRENT_LOCATION_LABEL, AuthorizationStatus, Coordinates, CurrentLocationFetcher
from weatherwhisper.recipients import InMemoryRecipientStore, RecipientDraft, RecipientEvents, RecipientService, needs_geocoding
from weatherwhisper.widget_sync import InMemoryWidgetSurface, WidgetSyncPublisher


class InlineExecutor(Executor):
    """Runs submitted work immediately so background steps are observable."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class FakeResolver:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def resolve(self, location):
        self.calls.append(location)
        if self.error is not None:
            raise self.error
        return WeatherSnapshot(
            condition="clear",
            temperature=24.0,
            captured_at=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc),
        )


class FakeGeocoder:
    def __init__(self, places=None, names=None):
        self.places = places or {}
        self.names = names or {}
        self.queries = []
        self.reverse_queries = []

    def search(self, query, *, timeout=None):
        self.queries.append(query)
        return self.places.get(query.lower())

    def reverse(self, latitude, longitude, *, timeout=None):
        self.reverse_queries.append((latitude, longitude))
        return self.names.get((latitude, longitude))


class FixedLocationManager:
    """Answers every location request with one fix."""

    def __init__(self, coords):
        self.coords = coords
        self.fetcher = None

    def authorization_status(self):
        return AuthorizationStatus.AUTHORIZED

    def request_authorization(self):
        pass

    def request_location(self):
        self.fetcher.locations_updated([self.coords])


def _fetcher(latitude, longitude):
    manager = FixedLocationManager(Coordinates(latitude, longitude))
    fetcher = CurrentLocationFetcher(manager, timeout=0.5)
    manager.fetcher = fetcher
    return fetcher

class TestNeedsGeocoding(unittest.TestCase):
    def setUp(self):
        self.existing = Recipient(nickname="Mom", city_name="Shanghai", latitude=31.23, longitude=121.47)

    def test_new_draft_without_coordinates(self):
        self.assertTrue(needs_geocoding(RecipientDraft("Mom", "Shanghai"), None))

    def test_new_draft_with_coordinates(self):
        self.assertFalse(needs_geocoding(RecipientDraft("Mom", "Shanghai", 31.23, 121.47), None))

    def test_same_city_ignoring_case_and_whitespace(self):
        draft = RecipientDraft("Mom", "  shanghai ", 31.23, 121.47)
        self.assertFalse(needs_geocoding(draft, self.existing))

    def test_changed_city_wins_over_present_coordinates(self):
        draft = RecipientDraft("Mom", "Suzhou", 31.23, 121.47)
        self.assertTrue(needs_geocoding(draft, self.existing))

    def test_city_matching_original_name_keeps_coordinates(self):
        draft = RecipientDraft("Mom", "Pudong", 31.2211, 121.5444, original_city_name="Pudong")
        self.assertFalse(needs_geocoding(draft, self.existing))

    def test_city_edited_after_location_pick_regeocodes(self):
        draft = RecipientDraft("Mom", "Suzhou", 31.2211, 121.5444, original_city_name="Pudong")
        self.assertTrue(needs_geocoding(draft, None))


class TestRecipientService(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecipientStore()
        self.geo = FakeGeocoder(
            {
                "shanghai": GeocodeResult("Shanghai", 31.23, 121.47),
                "suzhou": GeocodeResult("Suzhou", 31.3, 120.62),
            }
        )
        self.surface = InMemoryWidgetSurface()
        self.resolver = FakeResolver()
        self.events = RecipientEvents()
        self.seen_events = []
        self.events.subscribe(lambda event, rid: self.seen_events.append((event, rid)))
        self.service = RecipientService(
            self.store,
            GeocodingService(search=self.geo.search, reverse=self.geo.reverse),
            WidgetSyncPublisher(self.surface),
            self.resolver,
            events=self.events,
            executor=InlineExecutor(),
        )

    def test_create_geocodes_and_publishes(self):
        recipient = self.service.save(RecipientDraft(" Mom ", "shanghai", relation_type=RelationType.FAMILY))

        self.assertEqual(recipient.nickname, "Mom")
        self.assertEqual(recipient.city_name, "Shanghai")
        self.assertEqual((recipient.latitude, recipient.longitude), (31.23, 121.47))
        self.assertEqual(self.store.get(recipient.id), recipient)
        self.assertEqual(self.seen_events, [(RecipientEvents.SAVED, recipient.id)])

        doc = self.surface.read()
        self.assertEqual([r["id"] for r in doc["recipients"]], [recipient.id])
        self.assertEqual(doc["weather"][recipient.id]["condition"], "clear")

    def test_supplied_coordinates_skip_geocoding(self):
        self.service.save(RecipientDraft("Dad", "Somewhere", 39.9, 116.4))
        self.assertEqual(self.geo.queries, [])

    def test_edit_with_changed_city_regeocodes(self):
        original = self.service.save(RecipientDraft("Mom", "shanghai"))
        draft = RecipientDraft("Mom", "Suzhou", original.latitude, original.longitude)

        edited = self.service.save(draft, existing=original)

        self.assertEqual(edited.id, original.id)
        self.assertEqual((edited.city_name, edited.latitude), ("Suzhou", 31.3))
        self.assertGreaterEqual(edited.updated_at, original.updated_at)
        self.assertEqual(len(self.store.list_recipients()), 1)

    def test_current_location_draft_saves_without_forward_geocoding(self):
        self.geo.names[(31.2211, 121.5444)] = "Pudong"
        original = self.service.save(RecipientDraft("Mom", "shanghai", relation_type=RelationType.FAMILY))
        self.geo.queries.clear()

        draft = self.service.draft_from_current_location(_fetcher(31.2211, 121.5444), existing=original)
        edited = self.service.save(draft, existing=original)

        self.assertEqual(draft.original_city_name, "Pudong")
        self.assertEqual((draft.nickname, draft.relation_type), ("Mom", RelationType.FAMILY))
        self.assertEqual(self.geo.queries, [])
        self.assertEqual((edited.city_name, edited.latitude, edited.longitude), ("Pudong", 31.2211, 121.5444))

    def test_unnamed_current_location_uses_generic_label(self):
        draft = self.service.draft_from_current_location(_fetcher(45.0, 7.0))

        self.assertEqual(draft.city_name, CURRENT_LOCATION_LABEL)
        self.assertEqual(draft.original_city_name, CURRENT_LOCATION_LABEL)
        self.assertEqual((draft.latitude, draft.longitude), (45.0, 7.0))
        self.assertEqual(draft.nickname, "")

    def test_unknown_city_saves_nothing(self):
        with self.assertRaises(LocationNotFound):
            self.service.save(RecipientDraft("Mom", "Atlantis"))
        self.assertEqual(self.store.list_recipients(), [])
        self.assertEqual(self.seen_events, [])

    def test_blank_fields_are_invalid(self):
        with self.assertRaises(InvalidRequest):
            self.service.save(RecipientDraft("  ", "Shanghai"))
        with self.assertRaises(InvalidRequest):
            self.service.save(RecipientDraft("Mom", "   "))

    def test_weather_failure_does_not_block_save(self):
        self.resolver.error = WeatherUnavailable("provider down")
        recipient = self.service.save(RecipientDraft("Mom", "shanghai"))
        self.assertIsNotNone(self.store.get(recipient.id))
        self.assertEqual(self.surface.read()["weather"], {})

    def test_recipient_at_zero_coordinates_is_indexed_without_weather(self):
        self.geo.places["null island"] = GeocodeResult("Null Island", 0.0, 0.0)

        recipient = self.service.save(RecipientDraft("Buoy", "Null Island"))

        doc = self.surface.read()
        self.assertEqual([r["id"] for r in doc["recipients"]], [recipient.id])
        self.assertEqual(doc["weather"], {})
        self.assertEqual(self.resolver.calls, [])

    def test_delete_notifies_and_republishes(self):
        recipient = self.service.save(RecipientDraft("Mom", "shanghai"))
        self.assertTrue(self.service.delete(recipient.id))

        self.assertEqual(self.seen_events[-1], (RecipientEvents.DELETED, recipient.id))
        doc = self.surface.read()
        self.assertEqual(doc["recipients"], [])
        self.assertEqual(doc["weather"], {})

    def test_get_unknown_recipient(self):
        with self.assertRaises(RecipientNotFound):
            self.service.get("missing")


class TestRecipientEvents(unittest.TestCase):
    def test_unsubscribe_and_failing_subscriber(self):
        events = RecipientEvents()
        received = []

        def broken(event, rid):
            raise RuntimeError("subscriber bug")

        events.subscribe(broken)
        unsubscribe = events.subscribe(lambda event, rid: received.append(rid))

        events.publish(RecipientEvents.SAVED, "r-1")
        unsubscribe()
        events.publish(RecipientEvents.SAVED, "r-2")

        self.assertEqual(received, ["r-1"])


if __name__ == "__main__":
    unittest.main()
