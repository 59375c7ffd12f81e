"""Map a weather snapshot to the single trigger type a card group is written for."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Tuple

from weatherwhisper.domain import TriggerType, WeatherSnapshot

# Severe before mild before ambient; the first matching entry wins.
TRIGGER_PRECEDENCE: Tuple[TriggerType, ...] = (
    TriggerType.STORM,
    TriggerType.SNOW,
    TriggerType.RAIN,
    TriggerType.WINDY,
    TriggerType.HEAT,
    TriggerType.COLD,
    TriggerType.CLEAR,
)

STORM_TOKENS: FrozenSet[str] = frozenset({"thunderstorm", "storm", "hail", "tornado", "typhoon", "hurricane"})
SNOW_TOKENS: FrozenSet[str] = frozenset({"snow", "sleet", "blizzard", "ice", "freezing"})
RAIN_TOKENS: FrozenSet[str] = frozenset({"rain", "drizzle", "showers"})
WIND_TOKENS: FrozenSet[str] = frozenset({"windy", "gale"})

# Matched inside compound words such as "rainstorm" or "snowfall".
STORM_STEMS: Tuple[str, ...] = ("storm", "thunder")
SNOW_STEMS: Tuple[str, ...] = ("snow",)


@dataclass(frozen=True)
class TriggerThresholds:
    """Numeric cut-offs; units match WeatherSnapshot (°C, km/h, fraction)."""
    rain_chance: float = 0.6
    windy_speed_kmh: float = 40.0
    windy_gust_kmh: float = 60.0
    heat_c: float = 32.0
    cold_c: float = 5.0


DEFAULT_THRESHOLDS = TriggerThresholds()


def _condition_tokens(condition: str) -> FrozenSet[str]:
    """Split a condition like 'heavy_rain' or 'Thunderstorm with hail' into lowercase tokens."""
    normalized = (condition or "").strip().lower().replace("-", "_").replace(" ", "_")
    return frozenset(tok for tok in normalized.split("_") if tok)


def _has_stem(tokens: FrozenSet[str], stems: Tuple[str, ...]) -> bool:
    return any(stem in tok for tok in tokens for stem in stems)


def _felt_temperature(snapshot: WeatherSnapshot) -> float:
    return snapshot.feels_like if snapshot.feels_like is not None else snapshot.temperature


def _is_storm(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    return bool(tokens & STORM_TOKENS) or _has_stem(tokens, STORM_STEMS)


def _is_snow(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    return bool(tokens & SNOW_TOKENS) or _has_stem(tokens, SNOW_STEMS)


def _is_rain(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    if tokens & RAIN_TOKENS:
        return True
    return s.precip_chance is not None and s.precip_chance >= t.rain_chance


def _is_windy(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    if tokens & WIND_TOKENS:
        return True
    if s.wind_speed is not None and s.wind_speed >= t.windy_speed_kmh:
        return True
    return s.wind_gusts is not None and s.wind_gusts >= t.windy_gust_kmh


def _is_heat(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    return _felt_temperature(s) >= t.heat_c


def _is_cold(s: WeatherSnapshot, tokens: FrozenSet[str], t: TriggerThresholds) -> bool:
    return _felt_temperature(s) <= t.cold_c


_MATCHERS: Dict[TriggerType, Callable[[WeatherSnapshot, FrozenSet[str], TriggerThresholds], bool]] = {
    TriggerType.STORM: _is_storm,
    TriggerType.SNOW: _is_snow,
    TriggerType.RAIN: _is_rain,
    TriggerType.WINDY: _is_windy,
    TriggerType.HEAT: _is_heat,
    TriggerType.COLD: _is_cold,
}


def matching_triggers(snapshot: WeatherSnapshot, thresholds: TriggerThresholds = DEFAULT_THRESHOLDS) -> list[TriggerType]:
    """Every trigger the snapshot satisfies, in precedence order (clear excluded)."""
    tokens = _condition_tokens(snapshot.condition)
    return [
        trigger
        for trigger in TRIGGER_PRECEDENCE
        if trigger in _MATCHERS and _MATCHERS[trigger](snapshot, tokens, thresholds)
    ]


def resolve_trigger(snapshot: WeatherSnapshot, thresholds: TriggerThresholds = DEFAULT_THRESHOLDS) -> TriggerType:
    """Return the highest-precedence trigger for the snapshot, falling back to clear."""
    matched = matching_triggers(snapshot, thresholds)
    return matched[0] if matched else TriggerType.CLEAR
