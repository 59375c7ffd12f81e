"""Card cache storage backends."""

from .base import CachedCardGroup, CardCacheKey, CardCacheStore
from .memory import InMemoryCardCacheStore
from .redis import RedisCardCacheStore

__all__ = [
    "CachedCardGroup",
    "CardCacheKey",
    "CardCacheStore",
    "InMemoryCardCacheStore",
    "RedisCardCacheStore",
]
