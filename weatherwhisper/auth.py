"""Session token access and the per-install device identifier."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from weatherwhisper.errors import Unauthenticated
from utils.logging_utils import get_tagged_logger, mask_token

logger = get_tagged_logger(__name__, tag="auth")

_device_id_lock = threading.Lock()


class SessionTokenProvider(Protocol):
    """Anything that can hand out the current bearer token."""

    def current_token(self) -> str:
        """Return a valid token or raise Unauthenticated."""
        ...


class StaticTokenProvider(SessionTokenProvider):
    """Token supplied by configuration or by an outer session manager."""

    def __init__(
        self,
        token: str | None,
        *,
        expires_at: datetime | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._token = token
        self._expires_at = expires_at
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current_token(self) -> str:
        if not self._token:
            raise Unauthenticated("No session token available")
        if self._expires_at is not None and self._clock() >= self._expires_at:
            logger.info("Session token %s expired at %s", mask_token(self._token), self._expires_at.isoformat())
            raise Unauthenticated("Session token expired")
        return self._token


def load_or_create_device_id(path: str | Path) -> str:
    """
    Return the install's device id, creating and persisting one on first use.

    An unreadable or corrupt file is replaced with a fresh id.
    """
    target = Path(path)
    with _device_id_lock:
        existing = _read_device_id(target)
        if existing:
            return existing
        device_id = str(uuid.uuid4())
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(device_id, encoding="utf-8")
        logger.info("Created device id file at %s", target)
        return device_id


def _read_device_id(path: Path) -> Optional[str]:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Could not read device id file %s: %s", path, exc)
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        logger.warning("Device id file %s is corrupt; regenerating", path)
        return None
