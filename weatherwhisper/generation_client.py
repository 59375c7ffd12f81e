"""Client for the remote card generation endpoint."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Dict

import requests
from pydantic import ValidationError

from weatherwhisper.auth import SessionTokenProvider
from weatherwhisper.config import settings
from weatherwhisper.domain import CardGroup, CardRequest
from weatherwhisper.errors import (
    MalformedResponse,
    RequestRejected,
    ServiceUnavailable,
    TransportError,
    Unauthenticated,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="generation_client")

CARDS_ENDPOINT_PATH = "/cards-generate"


class CardGenerationClient:
    """Send one CardRequest, classify the outcome, return a validated CardGroup.

    The client never retries and never touches the cache; both are the
    caller's decisions. Concurrent calls for the same request id share a
    single network call.
    """

    def __init__(
        self,
        token_provider: SessionTokenProvider,
        device_id: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = f"{(base_url or settings.cards_base_url).rstrip('/')}{CARDS_ENDPOINT_PATH}"
        self.token_provider = token_provider
        self.device_id = device_id
        self.timeout = timeout if timeout is not None else settings.generation_timeout_seconds
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def generate(self, request: CardRequest) -> CardGroup:
        """Return the generated group, or raise one classified error."""
        with self._lock:
            pending = self._inflight.get(request.request_id)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[request.request_id] = pending

        if not owner:
            logger.info("Request %s already in flight; waiting for its result", request.request_id)
            return pending.result()

        try:
            group = self._send(request)
        except BaseException as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(group)
            return group
        finally:
            with self._lock:
                self._inflight.pop(request.request_id, None)

    def _headers(self, request: CardRequest) -> dict:
        token = self.token_provider.current_token()
        return {
            "Authorization": f"Bearer {token}",
            "X-Device-Id": self.device_id,
            "X-Request-Id": request.request_id,
            "Content-Type": "application/json",
        }

    def _send(self, request: CardRequest) -> CardGroup:
        headers = self._headers(request)
        payload = request.to_payload()

        started = time.monotonic()
        try:
            logger.debug("POST %s request_id=%s", self.url, request.request_id)
            r = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            logger.warning("Card generation timed out after %.1fs (request_id=%s)", self.timeout, request.request_id)
            raise TransportError(f"Timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Card generation transport failure (request_id=%s): %s", request.request_id, exc)
            raise TransportError(str(exc)) from exc

        elapsed = time.monotonic() - started
        logger.info(
            "Card generation POST took %.2fs, status=%s (request_id=%s)",
            elapsed,
            r.status_code,
            request.request_id,
        )
        self._raise_for_status(r, request)
        return self._parse(r, request)

    @staticmethod
    def _raise_for_status(r, request: CardRequest) -> None:
        status = r.status_code
        if 200 <= status < 300:
            return
        error_text = (r.text or "")[:200]
        if status == 401:
            raise Unauthenticated(f"Generation endpoint rejected the session: {error_text}", status_code=status)
        if 400 <= status < 500:
            raise RequestRejected(
                f"Generation endpoint rejected request {request.request_id} with {status}: {error_text}",
                status_code=status,
            )
        if status >= 500:
            raise ServiceUnavailable(f"Generation endpoint returned {status}: {error_text}", status_code=status)
        raise MalformedResponse(f"Unexpected status {status} from generation endpoint", status_code=status)

    @staticmethod
    def _parse(r, request: CardRequest) -> CardGroup:
        try:
            data = r.json()
        except ValueError as exc:
            raise MalformedResponse(f"Generation endpoint returned non-JSON: {(r.text or '')[:200]}") from exc
        if not isinstance(data, dict):
            raise MalformedResponse("Generation response is not a JSON object")
        cards = data.get("cards")
        if not isinstance(cards, list) or not cards:
            raise MalformedResponse("Generation response has no cards")

        try:
            group = CardGroup.model_validate(data)
        except ValidationError as exc:
            raise MalformedResponse(f"Generation response failed validation: {exc.error_count()} error(s)") from exc

        expected = request.weather.trigger_type
        if group.trigger_type != expected:
            raise MalformedResponse(
                f"Generation response is for trigger {group.trigger_type.value}, requested {expected.value}"
            )

        limit = request.constraints.max_chars_per_card
        for card in group.cards:
            text = card.text.strip()
            if not text:
                raise MalformedResponse(f"Card {card.card_id} has empty text")
            if len(text) > limit:
                raise MalformedResponse(f"Card {card.card_id} exceeds {limit} characters")
        return group
