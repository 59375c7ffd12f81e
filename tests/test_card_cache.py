import threading
import unittest
from datetime import date

from weatherwhisper.cache_manager import CardCache
from weatherwhisper.card_cache import CardCacheKey, InMemoryCardCacheStore
from weatherwhisper.domain import CARD_SOURCE_CACHE, CardGroup, TriggerType


def _group(group_id="g-1", trigger=TriggerType.RAIN, text="Umbrella today!"):
    return CardGroup.model_validate(
        {
            "groupId": group_id,
            "triggerType": trigger.value,
            "cards": [{"cardId": "c-1", "text": text, "tone": "warm", "triggerType": trigger.value, "source": "llm"}],
            "meta": {"model": "card-writer-1", "latencyMs": 300},
        }
    )


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingStore(InMemoryCardCacheStore):
    def __init__(self):
        super().__init__()
        self.purges = []

    def purge_before(self, cutoff):
        self.purges.append(cutoff)
        return super().purge_before(cutoff)


class TestInMemoryCardCacheStore(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryCardCacheStore()
        self.key = CardCacheKey("r-1", TriggerType.RAIN, date(2024, 6, 1))

    def test_put_then_get(self):
        group = _group()
        self.assertTrue(self.store.put(self.key, group, written_at=10.0))
        entry = self.store.get(self.key)
        self.assertEqual(entry.group, group)
        self.assertEqual(entry.written_at, 10.0)

    def test_older_write_does_not_replace_newer(self):
        self.store.put(self.key, _group("new"), written_at=20.0)
        self.assertFalse(self.store.put(self.key, _group("old"), written_at=10.0))
        self.assertEqual(self.store.get(self.key).group.group_id, "new")

    def test_purge_before_drops_only_older_days(self):
        old = CardCacheKey("r-1", TriggerType.RAIN, date(2024, 5, 20))
        self.store.put(old, _group("old"), written_at=1.0)
        self.store.put(self.key, _group("fresh"), written_at=2.0)
        self.assertEqual(self.store.purge_before(date(2024, 5, 25)), 1)
        self.assertIsNone(self.store.get(old))
        self.assertIsNotNone(self.store.get(self.key))


class TestCardCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = CardCache(InMemoryCardCacheStore(), retention_days=7, clock=self.clock)
        self.day = date(2024, 6, 1)

    def test_miss_returns_none(self):
        self.assertIsNone(self.cache.lookup("r-1", TriggerType.RAIN, self.day))

    def test_store_then_lookup_returns_group_tagged_as_cached(self):
        group = _group()
        self.cache.store(CardCacheKey("r-1", TriggerType.RAIN, self.day), group)

        hit = self.cache.lookup("r-1", TriggerType.RAIN, self.day)

        self.assertEqual(hit, group.as_cached())
        self.assertTrue(hit.meta.cached)
        self.assertTrue(all(card.source == CARD_SOURCE_CACHE for card in hit.cards))
        self.assertEqual([c.text for c in hit.cards], [c.text for c in group.cards])

    def test_keys_are_independent(self):
        self.cache.store(CardCacheKey("r-1", TriggerType.RAIN, self.day), _group())
        self.assertIsNone(self.cache.lookup("r-1", TriggerType.WINDY, self.day))
        self.assertIsNone(self.cache.lookup("r-2", TriggerType.RAIN, self.day))
        self.assertIsNone(self.cache.lookup("r-1", TriggerType.RAIN, date(2024, 6, 2)))

    def test_latest_write_supersedes(self):
        key = CardCacheKey("r-1", TriggerType.RAIN, self.day)
        self.cache.store(key, _group("first"))
        self.clock.now += 5
        self.cache.store(key, _group("second"))
        self.assertEqual(self.cache.lookup("r-1", TriggerType.RAIN, self.day).group_id, "second")

    def test_store_evicts_entries_past_retention(self):
        self.cache.store(CardCacheKey("r-1", TriggerType.RAIN, date(2024, 5, 1)), _group("ancient"))
        self.cache.store(CardCacheKey("r-1", TriggerType.RAIN, self.day), _group("today"))
        self.assertIsNone(self.cache.lookup("r-1", TriggerType.RAIN, date(2024, 5, 1)))
        self.assertIsNotNone(self.cache.lookup("r-1", TriggerType.RAIN, self.day))

    def test_eviction_runs_once_per_day(self):
        store = CountingStore()
        cache = CardCache(store, retention_days=7, clock=self.clock)
        for recipient_id in ("r-1", "r-2", "r-3"):
            cache.store(CardCacheKey(recipient_id, TriggerType.RAIN, self.day), _group())
        self.assertEqual(store.purges, [date(2024, 5, 25)])

        cache.store(CardCacheKey("r-1", TriggerType.RAIN, date(2024, 6, 2)), _group())
        cache.store(CardCacheKey("r-2", TriggerType.RAIN, self.day), _group())
        self.assertEqual(store.purges, [date(2024, 5, 25), date(2024, 5, 26)])

    def test_concurrent_readers_see_whole_groups(self):
        key = CardCacheKey("r-1", TriggerType.RAIN, self.day)
        groups = {f"g-{i}": _group(f"g-{i}", text=f"text {i}") for i in range(20)}
        self.cache.store(key, groups["g-0"])
        seen = []

        def writer():
            for i in range(1, 20):
                self.clock.now += 1
                self.cache.store(key, groups[f"g-{i}"])

        def reader():
            for _ in range(200):
                seen.append(self.cache.lookup("r-1", TriggerType.RAIN, self.day))

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for hit in seen:
            self.assertIsNotNone(hit)
            self.assertEqual(hit, groups[hit.group_id].as_cached())


if __name__ == "__main__":
    unittest.main()
