"""Shared protocol and types for card cache backends."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from weatherwhisper.domain import CardGroup, TriggerType


@dataclass(frozen=True)
class CardCacheKey:
    """(recipient, trigger, local calendar day); at most one live entry per key."""
    recipient_id: str
    trigger_type: TriggerType
    day: date

    def as_string(self) -> str:
        """Stable string form used by key-value backends."""
        return f"{self.recipient_id}:{TriggerType(self.trigger_type).value}:{self.day.isoformat()}"


@dataclass(frozen=True)
class CachedCardGroup:
    """A stored group with the wall-clock time it was written."""
    group: CardGroup
    written_at: float


class CardCacheStore(Protocol):
    """Protocol for card cache backends."""

    def get(self, key: CardCacheKey) -> Optional[CachedCardGroup]:
        """Return the live entry for key, or None."""

    def put(self, key: CardCacheKey, group: CardGroup, *, written_at: float) -> bool:
        """Replace the entry for key atomically; False when a newer write already landed."""

    def purge_before(self, cutoff: date) -> int:
        """Drop entries whose day is before cutoff and return how many were removed."""

    def clear(self) -> None:
        """Remove every entry."""
