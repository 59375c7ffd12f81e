"""Best-effort publishing of recipients and weather to the home-screen widget surface.

The widget reads one JSON document: the full recipients index (most recently
updated first) plus the latest weather entry per recipient. Publishing never
raises; a dropped publish is repaired by the next full index.
"""

from __future__ import annotations

import base64
import copy
import json
import os
import tempfile
import threading
from concurrent.futures import Executor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Protocol

from weatherwhisper.config import Settings, settings as default_settings
from weatherwhisper.domain import Recipient, TriggerType, WeatherSnapshot
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="widget_sync")


def _empty_snapshot() -> Dict[str, Any]:
    return {"recipients": [], "weather": {}, "updatedAt": None}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _apply_index(doc: Dict[str, Any], entries: List[Dict[str, Any]]) -> None:
    doc["recipients"] = entries
    live = {entry["id"] for entry in entries}
    # weather for recipients that left the index would show a ghost tile
    doc["weather"] = {rid: w for rid, w in (doc.get("weather") or {}).items() if rid in live}
    doc["updatedAt"] = _now_iso()


def _apply_weather(doc: Dict[str, Any], recipient_id: str, entry: Dict[str, Any]) -> None:
    doc.setdefault("weather", {})[recipient_id] = entry
    doc["updatedAt"] = _now_iso()


class WidgetSurface(Protocol):
    """Read-only external display surface fed by the publisher."""

    def write_recipients_index(self, entries: List[Dict[str, Any]]) -> None:
        ...

    def write_weather(self, recipient_id: str, entry: Dict[str, Any]) -> None:
        ...

    def read(self) -> Dict[str, Any]:
        ...


class InMemoryWidgetSurface(WidgetSurface):
    """Process-local surface, used by the HTTP layer and tests."""

    def __init__(self) -> None:
        self._doc = _empty_snapshot()
        self._lock = threading.Lock()

    def write_recipients_index(self, entries: List[Dict[str, Any]]) -> None:
        with self._lock:
            _apply_index(self._doc, entries)

    def write_weather(self, recipient_id: str, entry: Dict[str, Any]) -> None:
        with self._lock:
            _apply_weather(self._doc, recipient_id, entry)

    def read(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._doc)


class JsonFileWidgetSurface(WidgetSurface):
    """Shared JSON file replaced atomically, so the widget never reads a half-written document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return _empty_snapshot()
        except (OSError, ValueError) as exc:
            logger.warning("Widget snapshot at %s unreadable; starting fresh: %s", self.path, exc)
            return _empty_snapshot()

    def _save(self, doc: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".widget-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def write_recipients_index(self, entries: List[Dict[str, Any]]) -> None:
        with self._lock:
            doc = self._load()
            _apply_index(doc, entries)
            self._save(doc)

    def write_weather(self, recipient_id: str, entry: Dict[str, Any]) -> None:
        with self._lock:
            doc = self._load()
            _apply_weather(doc, recipient_id, entry)
            self._save(doc)

    def read(self) -> Dict[str, Any]:
        with self._lock:
            return self._load()


def recipient_index_entry(recipient: Recipient) -> Dict[str, Any]:
    return {
        "id": recipient.id,
        "nickname": recipient.nickname,
        "cityName": recipient.city_name,
        "latitude": recipient.latitude,
        "longitude": recipient.longitude,
        "avatar": base64.b64encode(recipient.avatar).decode("ascii") if recipient.avatar else None,
        "updatedAt": recipient.updated_at.isoformat(),
    }


def weather_entry(recipient: Recipient, snapshot: WeatherSnapshot, trigger: TriggerType) -> Dict[str, Any]:
    return {
        "recipientId": recipient.id,
        "cityName": recipient.city_name,
        "condition": snapshot.condition,
        "temperature": snapshot.temperature,
        "feelsLike": snapshot.feels_like,
        "triggerType": TriggerType(trigger).value,
        "capturedAt": snapshot.captured_at.isoformat(),
    }


class WidgetSyncPublisher:
    """Fire-and-forget publisher; failures are logged and never reach the caller."""

    def __init__(self, surface: WidgetSurface, *, executor: Executor | None = None) -> None:
        self.surface = surface
        self.executor = executor

    def publish_recipients_index(self, recipients: Iterable[Recipient]) -> None:
        """Republish the full index, most recently updated first."""
        batch = list(recipients)

        def write() -> None:
            ordered = sorted(batch, key=lambda r: r.updated_at, reverse=True)
            self.surface.write_recipients_index([recipient_index_entry(r) for r in ordered])

        self._dispatch("recipients index", write)

    def publish_weather(self, recipient: Recipient, snapshot: WeatherSnapshot, trigger: TriggerType) -> None:
        """Publish the latest weather tile; skipped for recipients without coordinates."""
        if not recipient.has_coordinates:
            logger.debug("Skipping widget weather for %s: no coordinates", recipient.id)
            return
        self._dispatch(
            "weather",
            lambda: self.surface.write_weather(recipient.id, weather_entry(recipient, snapshot, trigger)),
        )

    def _dispatch(self, what: str, action: Callable[[], None]) -> None:
        if self.executor is None:
            self._run(what, action)
            return
        try:
            self.executor.submit(self._run, what, action)
        except RuntimeError as exc:
            logger.warning("Widget %s publish not scheduled: %s", what, exc)

    @staticmethod
    def _run(what: str, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception as exc:
            logger.warning("Widget %s publish failed: %s", what, exc)
        else:
            logger.debug("Published widget %s", what)


def build_widget_surface(config: Settings | None = None) -> WidgetSurface:
    """Use the shared snapshot file when configured, else an in-memory surface."""
    config = config or default_settings
    if config.widget_snapshot_path:
        logger.info("Publishing widget snapshot to %s", config.widget_snapshot_path)
        return JsonFileWidgetSurface(config.widget_snapshot_path)
    return InMemoryWidgetSurface()
