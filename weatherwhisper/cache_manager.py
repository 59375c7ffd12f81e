"""Card cache facade: dedup lookups, atomic stores and opportunistic eviction."""
from __future__ import annotations

import threading
import time
from datetime import date, timedelta
from typing import Callable, Optional

import redis

from weatherwhisper.card_cache import CardCacheKey, CardCacheStore, InMemoryCardCacheStore, RedisCardCacheStore
from weatherwhisper.config import Settings, settings as default_settings
from weatherwhisper.domain import CardGroup, TriggerType
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache_manager")


class CardCache:
    """Short-circuits duplicate generation for the same (recipient, trigger, day)."""

    def __init__(
        self,
        store: CardCacheStore | None = None,
        *,
        retention_days: int = 7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store_backend = store or InMemoryCardCacheStore()
        self.retention_days = retention_days
        self._clock = clock
        self._last_evicted: Optional[date] = None
        self._evict_lock = threading.Lock()

    def lookup(self, recipient_id: str, trigger: TriggerType, day: date) -> Optional[CardGroup]:
        """Return the cached group tagged as served from cache, or None on a miss."""
        key = CardCacheKey(recipient_id=recipient_id, trigger_type=TriggerType(trigger), day=day)
        entry = self.store_backend.get(key)
        if entry is None:
            logger.debug("Card cache miss for %s", key.as_string())
            return None
        logger.info("Card cache hit for %s (group=%s)", key.as_string(), entry.group.group_id)
        return entry.group.as_cached()

    def store(self, key: CardCacheKey, group: CardGroup) -> None:
        """Supersede the entry for key; last writer by wall-clock time wins."""
        written = self.store_backend.put(key, group, written_at=self._clock())
        if written:
            logger.debug("Stored card group %s under %s", group.group_id, key.as_string())
        self._evict_stale(key.day)

    def purge(self, today: date) -> int:
        """Drop entries older than the retention window relative to today."""
        return self.store_backend.purge_before(today - timedelta(days=self.retention_days))

    def clear(self) -> None:
        self.store_backend.clear()

    def _evict_stale(self, today: date) -> None:
        # at most one eviction pass per calendar day per process
        with self._evict_lock:
            if self._last_evicted is not None and today <= self._last_evicted:
                return
            self._last_evicted = today
        try:
            removed = self.purge(today)
        except redis.exceptions.RedisError as exc:
            logger.warning("Card cache eviction failed: %s", exc)
            return
        if removed:
            logger.info("Evicted %d stale card group(s)", removed)


def build_card_cache(config: Settings | None = None) -> CardCache:
    """Pick the cache backend from configuration, falling back to memory when Redis is down."""
    config = config or default_settings
    logger.debug(f"Initializing card cache: redis_url='{config.cache_redis_url or 'None'}'")
    if config.cache_redis_url:
        try:
            client = redis.Redis.from_url(config.cache_redis_url)
            client.ping()
            logger.info("Using RedisCardCacheStore")
            return CardCache(
                RedisCardCacheStore(client, retention_days=config.cache_retention_days),
                retention_days=config.cache_retention_days,
            )
        except redis.exceptions.RedisError as exc:
            logger.warning("Falling back to InMemoryCardCacheStore (Redis unavailable)", extra={"error": str(exc)})
    return CardCache(InMemoryCardCacheStore(), retention_days=config.cache_retention_days)
