"""Redis-backed card cache with a retention TTL."""

import json
from datetime import date
from typing import Optional

import redis
from pydantic import ValidationError

from weatherwhisper.card_cache.base import CachedCardGroup, CardCacheKey, CardCacheStore
from weatherwhisper.domain import CardGroup
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="card_cache/redis_card_cache")


class RedisCardCacheStore(CardCacheStore):
    """Cards stored as JSON under one key per (recipient, trigger, day).

    A single SET replaces the value, so readers see either the previous
    entry or the new one. Entries expire after the retention window.
    """

    def __init__(self, client, *, retention_days: int = 7, prefix: str = "cards:") -> None:
        logger.debug("Initializing RedisCardCacheStore")
        self.client = client
        self.ttl = max(1, int(retention_days)) * 86400
        self.prefix = prefix

    def _key(self, key: CardCacheKey) -> str:
        return f"{self.prefix}{key.as_string()}"

    @staticmethod
    def _dump(group: CardGroup, written_at: float) -> bytes:
        return json.dumps({"group": group.to_payload(), "written_at": written_at}).encode("utf-8")

    @staticmethod
    def _load(raw) -> Optional[CachedCardGroup]:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
            return CachedCardGroup(
                group=CardGroup.model_validate(data["group"]),
                written_at=float(data.get("written_at") or 0.0),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.error("Failed to deserialize cached card group: %s", exc)
            return None

    def get(self, key: CardCacheKey) -> Optional[CachedCardGroup]:
        try:
            raw = self.client.get(self._key(key))
        except redis.exceptions.RedisError as exc:
            logger.error("Failed to read card group from Redis: %s", exc)
            return None
        if not raw:
            return None
        return self._load(raw)

    def put(self, key: CardCacheKey, group: CardGroup, *, written_at: float) -> bool:
        try:
            self.client.setex(self._key(key), self.ttl, self._dump(group, written_at))
        except redis.exceptions.RedisError as exc:
            logger.error("Failed to write card group %s to Redis: %s", group.group_id, exc)
            return False
        return True

    def purge_before(self, cutoff: date) -> int:
        removed = 0
        try:
            for redis_key in self.client.scan_iter(f"{self.prefix}*"):
                name = redis_key.decode("utf-8") if isinstance(redis_key, bytes) else redis_key
                try:
                    day = date.fromisoformat(name.rsplit(":", 1)[-1])
                except ValueError:
                    continue
                if day < cutoff:
                    self.client.delete(redis_key)
                    removed += 1
        except redis.exceptions.RedisError as exc:
            logger.warning("Failed to purge card groups from Redis: %s", exc)
        return removed

    def clear(self) -> None:
        try:
            for redis_key in self.client.scan_iter(f"{self.prefix}*"):
                self.client.delete(redis_key)
        except redis.exceptions.RedisError as exc:
            logger.error("Failed to clear card groups from Redis: %s", exc)
