import unittest

from fastapi.testclient import TestClient

import weatherwhisper.api as api_mod
from weatherwhisper.config import Settings
from weatherwhisper.data_sources import GeocodeResult
from weatherwhisper.domain import CardGroup, Tone
from weatherwhisper.errors import RequestRejected, ServiceUnavailable, Unauthenticated
from weatherwhisper.geocoding import GeocodingService
from weatherwhisper.main import app as fastapi_app
from weatherwhisper.recipients import InMemoryRecipientStore, RecipientService
from weatherwhisper.services import Services
from weatherwhisper.widget_sync import InMemoryWidgetSurface, WidgetSyncPublisher


def _group():
    return CardGroup.model_validate(
        {
            "groupId": "g-1",
            "triggerType": "rain",
            "cards": [{"cardId": "c-1", "text": "Umbrella!", "tone": "warm", "triggerType": "rain", "source": "llm"}],
            "meta": {"model": "card-writer-1", "latencyMs": 300},
        }
    )


class FakePipeline:
    def __init__(self):
        self.error = None
        self.calls = []

    def refresh(self, recipient, *, tone=None, locale=None, constraints=None):
        self.calls.append({"recipient": recipient, "tone": tone, "locale": locale, "constraints": constraints})
        if self.error is not None:
            raise self.error
        return _group()

    def shutdown(self, wait=True):
        pass


class FakeResolver:
    def resolve(self, location):
        raise ServiceUnavailable("weather not needed here")


class TestApi(unittest.TestCase):
    def setUp(self):
        self._orig_api_key = api_mod.settings.api_key
        api_mod.settings.api_key = None

        places = {"shanghai": GeocodeResult("Shanghai", 31.23, 121.47)}
        self.surface = InMemoryWidgetSurface()
        publisher = WidgetSyncPublisher(self.surface)
        store = InMemoryRecipientStore()
        self.pipeline = FakePipeline()
        self.services = Services(
            config=Settings(),
            store=store,
            recipients=RecipientService(
                store,
                GeocodingService(search=lambda q, timeout=None: places.get(q.lower())),
                publisher,
                FakeResolver(),
            ),
            pipeline=self.pipeline,
            surface=self.surface,
            publisher=publisher,
        )
        api_mod.use_services_for_tests(self.services)
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        api_mod.settings.api_key = self._orig_api_key
        self.services.recipients.shutdown()
        api_mod.use_services_for_tests(None)

    def _create(self, **overrides):
        body = {"nickname": "Mom", "cityName": "shanghai", "relationType": "family"}
        body.update(overrides)
        return self.client.post("/v1/recipients", json=body)

    def test_create_and_list_recipients(self):
        resp = self._create()
        self.assertEqual(resp.status_code, 201)
        created = resp.json()
        self.assertEqual(created["cityName"], "Shanghai")
        self.assertEqual(created["latitude"], 31.23)
        self.assertEqual(created["relationType"], "family")

        listed = self.client.get("/v1/recipients").json()
        self.assertEqual([r["id"] for r in listed], [created["id"]])

    def test_create_unknown_city_is_404(self):
        resp = self._create(cityName="Atlantis")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"]["kind"], "not_found")

    def test_create_blank_nickname_is_400(self):
        resp = self._create(nickname="  ")
        self.assertEqual(resp.status_code, 400)

    def test_create_with_bad_avatar_is_400(self):
        resp = self._create(avatar="***not base64***")
        self.assertEqual(resp.status_code, 400)

    def test_update_recipient(self):
        created = self._create().json()
        resp = self.client.put(
            f"/v1/recipients/{created['id']}",
            json={"nickname": "Mama", "cityName": "Shanghai", "latitude": 31.23, "longitude": 121.47},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["nickname"], "Mama")
        self.assertEqual(resp.json()["id"], created["id"])

    def test_update_with_located_place_keeps_coordinates(self):
        created = self._create().json()
        resp = self.client.put(
            f"/v1/recipients/{created['id']}",
            json={
                "nickname": "Mom",
                "cityName": "Pudong",
                "originalCityName": "Pudong",
                "latitude": 31.2211,
                "longitude": 121.5444,
            },
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["cityName"], "Pudong")
        self.assertEqual(resp.json()["latitude"], 31.2211)

    def test_update_unknown_recipient_is_404(self):
        resp = self.client.put("/v1/recipients/missing", json={"nickname": "X", "cityName": "shanghai"})
        self.assertEqual(resp.status_code, 404)

    def test_delete_recipient(self):
        created = self._create().json()
        self.assertEqual(self.client.delete(f"/v1/recipients/{created['id']}").status_code, 204)
        self.assertEqual(self.client.delete(f"/v1/recipients/{created['id']}").status_code, 404)
        self.assertEqual(self.client.get("/v1/widget").json()["recipients"], [])

    def test_generate_cards(self):
        created = self._create().json()
        resp = self.client.post(
            f"/v1/recipients/{created['id']}/cards",
            json={"tone": "playful", "cardsCount": 3, "locale": "en-US"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["groupId"], "g-1")
        self.assertEqual(body["cards"][0]["text"], "Umbrella!")

        call = self.pipeline.calls[0]
        self.assertEqual(call["tone"], Tone.PLAYFUL)
        self.assertEqual(call["locale"], "en-US")
        self.assertEqual(call["constraints"].cards_count, 3)
        self.assertEqual(call["constraints"].max_chars_per_card, Settings().default_max_chars_per_card)

    def test_generate_cards_without_body_uses_defaults(self):
        created = self._create().json()
        resp = self.client.post(f"/v1/recipients/{created['id']}/cards")
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(self.pipeline.calls[0]["tone"])

    def test_generate_cards_error_mapping(self):
        created = self._create().json()
        cases = [
            (ServiceUnavailable("down"), 503),
            (RequestRejected("bad"), 502),
            (Unauthenticated("expired"), 401),
        ]
        for error, expected in cases:
            with self.subTest(error=type(error).__name__):
                self.pipeline.error = error
                resp = self.client.post(f"/v1/recipients/{created['id']}/cards", json={})
                self.assertEqual(resp.status_code, expected)
                self.assertEqual(resp.json()["detail"]["kind"], error.kind)

    def test_generate_cards_unknown_recipient_is_404(self):
        resp = self.client.post("/v1/recipients/missing/cards", json={})
        self.assertEqual(resp.status_code, 404)

    def test_widget_snapshot(self):
        created = self._create().json()
        doc = self.client.get("/v1/widget").json()
        self.assertEqual(doc["recipients"][0]["id"], created["id"])

    def test_requires_api_key_when_configured(self):
        api_mod.settings.api_key = "secret"
        self.assertEqual(self.client.get("/v1/recipients").status_code, 401)
        self.assertEqual(self.client.get("/v1/recipients", headers={"X-API-Key": "wrong"}).status_code, 401)
        self.assertEqual(self.client.get("/v1/recipients", headers={"X-API-Key": "secret"}).status_code, 200)


if __name__ == "__main__":
    unittest.main()
