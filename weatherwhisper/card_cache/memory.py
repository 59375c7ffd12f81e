"""In-memory card cache, intended for a single process and for tests."""

import threading
from datetime import date
from typing import Optional

from weatherwhisper.card_cache.base import CachedCardGroup, CardCacheKey, CardCacheStore
from weatherwhisper.domain import CardGroup
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="card_cache/in_memory_card_cache")


class InMemoryCardCacheStore(CardCacheStore):
    """Thread-safe dict of immutable entries; a put swaps the whole entry under the lock."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryCardCacheStore")
        self._entries: dict[CardCacheKey, CachedCardGroup] = {}
        self._lock = threading.Lock()

    def get(self, key: CardCacheKey) -> Optional[CachedCardGroup]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: CardCacheKey, group: CardGroup, *, written_at: float) -> bool:
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current.written_at > written_at:
                logger.debug("Ignoring older write for %s", key.as_string())
                return False
            self._entries[key] = CachedCardGroup(group=group, written_at=written_at)
            return True

    def purge_before(self, cutoff: date) -> int:
        with self._lock:
            stale = [key for key in self._entries if key.day < cutoff]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
