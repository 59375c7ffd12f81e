"""
Card refresh pipeline: weather -> trigger -> cache check -> generate -> store -> publish.

Steps for one recipient run strictly in sequence. Several recipients can be
refreshed at once through `submit`/`refresh_many`; runs for different
recipients have no ordering relative to each other.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from weatherwhisper.cache_manager import CardCache, build_card_cache
from weatherwhisper.card_cache import CardCacheKey
from weatherwhisper.config import Settings, settings as default_settings
from weatherwhisper.domain import CardConstraints, CardGroup, CardRequest, Recipient, Tone
from weatherwhisper.errors import InvalidRequest, ServiceUnavailable, TransportError
from weatherwhisper.generation_client import CardGenerationClient
from weatherwhisper.request_builder import build_request
from weatherwhisper.triggers import resolve_trigger
from weatherwhisper.weather import WeatherSnapshotResolver
from weatherwhisper.widget_sync import WidgetSyncPublisher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pipeline")

RETRYABLE_GENERATION_ERRORS = (TransportError, ServiceUnavailable)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient generation failures."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_backoff_sec,
            max_delay=config.retry_max_backoff_sec,
        )


class CardPipeline:
    """Resolve, dedupe, generate and publish cards for recipients."""

    def __init__(
        self,
        resolver: WeatherSnapshotResolver,
        client: CardGenerationClient,
        cache: CardCache,
        publisher: WidgetSyncPublisher,
        *,
        config: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.config = config or default_settings
        self.resolver = resolver
        self.client = client
        self.cache = cache
        self.publisher = publisher
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.config)
        self._sleep = sleep
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.pipeline_workers,
            thread_name_prefix="card-pipeline",
        )

    def _default_constraints(self) -> CardConstraints:
        return CardConstraints(
            cards_count=self.config.default_cards_count,
            max_chars_per_card=self.config.default_max_chars_per_card,
        )

    def refresh(
        self,
        recipient: Recipient,
        *,
        tone: Tone | str | None = None,
        locale: str | None = None,
        constraints: CardConstraints | None = None,
    ) -> CardGroup:
        """Run the pipeline once and return the card group, or raise one classified error."""
        if not recipient.has_coordinates:
            raise InvalidRequest(f"Recipient {recipient.id} has no resolved coordinates")

        snapshot = self.resolver.resolve(recipient)
        trigger = resolve_trigger(snapshot)
        day = snapshot.local_day()
        logger.info("Recipient %s: trigger=%s day=%s", recipient.id, trigger.value, day.isoformat())

        request = build_request(
            recipient,
            snapshot,
            trigger,
            locale=locale or self.config.default_locale,
            tone=tone or self.config.default_tone,
            constraints=constraints or self._default_constraints(),
        )

        cached = self.cache.lookup(recipient.id, trigger, day)
        if cached is not None:
            self.publisher.publish_weather(recipient, snapshot, trigger)
            return cached

        group = self.generate_with_retry(request)
        self.cache.store(CardCacheKey(recipient_id=recipient.id, trigger_type=trigger, day=day), group)
        self.publisher.publish_weather(recipient, snapshot, trigger)
        return group

    def generate_with_retry(self, request: CardRequest) -> CardGroup:
        """
        Send the request, resending the same instance on transient failures.

        The request id never changes between attempts, so the server can
        deduplicate a send whose response was lost.
        """
        policy = self.retry_policy
        attempt = 1
        while True:
            try:
                return self.client.generate(request)
            except RETRYABLE_GENERATION_ERRORS as exc:
                if attempt >= policy.max_attempts:
                    logger.error(
                        "Giving up on request %s after %d attempt(s): %s",
                        request.request_id,
                        attempt,
                        exc,
                    )
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    "Retrying request %s in %.2fs (attempt %d/%d): %s",
                    request.request_id,
                    delay,
                    attempt + 1,
                    policy.max_attempts,
                    exc,
                )
                self._sleep(delay)
                attempt += 1

    def submit(self, recipient: Recipient, **options) -> Future:
        """
        Schedule a refresh and return its future.

        Cancelling the future only prevents a run that has not started; a run
        already in flight completes and its cache write still lands.
        """
        return self._executor.submit(self.refresh, recipient, **options)

    def refresh_many(self, recipients: Iterable[Recipient], **options) -> Dict[str, Future]:
        """Refresh several recipients concurrently, keyed by recipient id."""
        return {recipient.id: self.submit(recipient, **options) for recipient in recipients}

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def build_pipeline(
    client: CardGenerationClient,
    publisher: WidgetSyncPublisher,
    *,
    cache: Optional[CardCache] = None,
    resolver: Optional[WeatherSnapshotResolver] = None,
    config: Settings | None = None,
) -> CardPipeline:
    """Wire a pipeline with configuration defaults for anything not supplied."""
    config = config or default_settings
    return CardPipeline(
        resolver or WeatherSnapshotResolver(timeout=config.weather_timeout_seconds),
        client,
        cache or build_card_cache(config),
        publisher,
        config=config,
    )
