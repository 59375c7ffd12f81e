"""Domain vocabulary and wire schemas for the card pipeline.

This module is the stable contract between the pipeline stages and the remote
card generator: enums, the recipient and weather records the pipeline reads,
and the camelCase request/response models that go over the wire. No
resolution or transport logic lives here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CARD_SOURCE_LLM = "llm"
CARD_SOURCE_CACHE = "cache"


class _StrictBaseModel(BaseModel):
    """Immutable base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class _WireModel(BaseModel):
    """Immutable camelCase model used for the generation endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class TriggerType(str, Enum):
    """Weather situation a card group is written for."""
    STORM = "storm"
    SNOW = "snow"
    RAIN = "rain"
    WINDY = "windy"
    HEAT = "heat"
    COLD = "cold"
    CLEAR = "clear"


class Tone(str, Enum):
    """Voice the generated cards should use."""
    WARM = "warm"
    PLAYFUL = "playful"
    GENTLE = "gentle"
    PRACTICAL = "practical"
    POETIC = "poetic"


class RelationType(str, Enum):
    """How the user relates to a recipient."""
    FAMILY = "family"
    PARTNER = "partner"
    FRIEND = "friend"
    COLLEAGUE = "colleague"
    OTHER = "other"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Recipient(_StrictBaseModel):
    """A person cards are written for, with the place whose weather matters."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    nickname: str
    avatar: bytes | None = None
    city_name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    relation_type: RelationType = RelationType.FRIEND
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_coordinates(self) -> bool:
        """False when either coordinate still holds the 0 sentinel."""
        return self.latitude != 0 and self.longitude != 0


class WeatherSnapshot(_StrictBaseModel):
    """Normalized current weather for one recipient at one point in time.

    Units: temperatures in °C, wind in km/h, precipitation chance as a
    fraction between 0 and 1.
    """
    condition: str
    weather_code: int | None = None
    temperature: float
    feels_like: float | None = None
    precip_chance: float | None = Field(default=None, ge=0.0, le=1.0)
    wind_speed: float | None = None
    wind_gusts: float | None = None
    is_day: bool | None = None
    captured_at: datetime
    timezone: str = "UTC"

    def local_day(self) -> date:
        """Calendar day of the capture time in the location's own zone."""
        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return self.captured_at.date()
        ts = self.captured_at if self.captured_at.tzinfo else self.captured_at.replace(tzinfo=tz)
        return ts.astimezone(tz).date()


@dataclass(frozen=True)
class CardConstraints:
    """Caller-supplied limits; validated by the request builder, never clamped."""
    cards_count: int = 5
    max_chars_per_card: int = 60
    allow_emoji: bool = True


# ---------------------------------------------------------------------------
# Request body for POST /cards-generate
# ---------------------------------------------------------------------------


class RecipientProfile(_WireModel):
    nickname: str
    relation_type: RelationType


class CityInfo(_WireModel):
    name: str
    lat: float
    lon: float


class WeatherPayload(_WireModel):
    trigger_type: TriggerType
    condition: str
    temperature: float
    feels_like: float | None = None
    precip_chance: float | None = None
    wind_speed: float | None = None
    captured_at: datetime


class RequestConstraints(_WireModel):
    max_chars_per_card: int
    allow_emoji: bool = True


class CardRequest(_WireModel):
    """One generation attempt. A retry resends the same instance; a rebuild gets a new id."""
    request_id: str
    recipient_id: str = Field(exclude=True)
    locale: str
    cards_count: int
    recipient: RecipientProfile
    tone: Tone
    city: CityInfo
    weather: WeatherPayload
    constraints: RequestConstraints

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON body."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Response body
# ---------------------------------------------------------------------------


class Card(_WireModel):
    card_id: str
    text: str
    tone: Tone
    trigger_type: TriggerType
    source: str


class CardMeta(_WireModel):
    model: str
    latency_ms: int
    cached: bool = False


class CardGroup(_WireModel):
    """Atomic unit that is cached and displayed; groups are never merged."""
    group_id: str
    trigger_type: TriggerType
    cards: List[Card] = Field(min_length=1)
    meta: CardMeta

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON shape used on the wire and in caches."""
        return self.model_dump(by_alias=True, mode="json")

    def as_cached(self) -> CardGroup:
        """Copy tagged as served from cache: card sources and meta.cached."""
        cards = [
            card if card.source == CARD_SOURCE_CACHE else card.model_copy(update={"source": CARD_SOURCE_CACHE})
            for card in self.cards
        ]
        meta = self.meta.model_copy(update={"cached": True})
        return self.model_copy(update={"cards": cards, "meta": meta})
