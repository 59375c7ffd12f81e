"""Assemble validated generation requests from recipient, weather and caller options."""

from __future__ import annotations

import re
import uuid

from pydantic import ValidationError

from weatherwhisper.domain import (
    CardConstraints,
    CardRequest,
    CityInfo,
    Recipient,
    RecipientProfile,
    RequestConstraints,
    Tone,
    TriggerType,
    WeatherPayload,
    WeatherSnapshot,
)
from weatherwhisper.errors import InvalidRequest
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="request_builder")

MIN_CARDS = 1
MAX_CARDS = 10
MIN_CHARS_PER_CARD = 1
MAX_CHARS_PER_CARD = 500

_LOCALE_RE = re.compile(r"^[A-Za-z]{2,3}([-_][A-Za-z0-9]{2,8})*$")


def _new_request_id() -> str:
    return str(uuid.uuid4())


def validate_constraints(constraints: CardConstraints) -> None:
    """Raise InvalidRequest when a limit falls outside the fixed bounds."""
    count = constraints.cards_count
    if not isinstance(count, int) or isinstance(count, bool) or not MIN_CARDS <= count <= MAX_CARDS:
        raise InvalidRequest(f"cards_count must be between {MIN_CARDS} and {MAX_CARDS}, got {count!r}")
    max_chars = constraints.max_chars_per_card
    if (
        not isinstance(max_chars, int)
        or isinstance(max_chars, bool)
        or not MIN_CHARS_PER_CARD <= max_chars <= MAX_CHARS_PER_CARD
    ):
        raise InvalidRequest(
            f"max_chars_per_card must be between {MIN_CHARS_PER_CARD} and {MAX_CHARS_PER_CARD}, got {max_chars!r}"
        )


def _coerce_tone(tone: Tone | str) -> Tone:
    try:
        return Tone(tone)
    except ValueError as exc:
        raise InvalidRequest(f"Unknown tone {tone!r}") from exc


def build_request(
    recipient: Recipient,
    snapshot: WeatherSnapshot,
    trigger: TriggerType,
    *,
    locale: str,
    tone: Tone | str,
    constraints: CardConstraints | None = None,
) -> CardRequest:
    """
    Build an immutable CardRequest with a fresh request id.

    Every call mints a new id, even for identical inputs; retrying a failed
    send must reuse the returned instance instead of building again.
    """
    constraints = constraints or CardConstraints()
    validate_constraints(constraints)

    nickname = (recipient.nickname or "").strip()
    if not nickname:
        raise InvalidRequest("Recipient nickname is required")
    if not recipient.has_coordinates:
        raise InvalidRequest(f"Recipient {recipient.id} has no resolved coordinates")
    locale = (locale or "").strip()
    if not _LOCALE_RE.match(locale):
        raise InvalidRequest(f"Invalid locale {locale!r}")

    try:
        request = CardRequest(
            request_id=_new_request_id(),
            recipient_id=recipient.id,
            locale=locale,
            cards_count=constraints.cards_count,
            recipient=RecipientProfile(nickname=nickname, relation_type=recipient.relation_type),
            tone=_coerce_tone(tone),
            city=CityInfo(name=recipient.city_name, lat=recipient.latitude, lon=recipient.longitude),
            weather=WeatherPayload(
                trigger_type=TriggerType(trigger),
                condition=snapshot.condition,
                temperature=snapshot.temperature,
                feels_like=snapshot.feels_like,
                precip_chance=snapshot.precip_chance,
                wind_speed=snapshot.wind_speed,
                captured_at=snapshot.captured_at,
            ),
            constraints=RequestConstraints(
                max_chars_per_card=constraints.max_chars_per_card,
                allow_emoji=constraints.allow_emoji,
            ),
        )
    except (ValidationError, ValueError) as exc:
        raise InvalidRequest(f"Could not build card request: {exc}") from exc

    logger.debug(
        "Built card request %s for recipient %s (trigger=%s, cards=%d)",
        request.request_id,
        recipient.id,
        request.weather.trigger_type.value,
        request.cards_count,
    )
    return request
