"""Process-wide wiring of the pipeline, recipient service and widget publisher."""

from __future__ import annotations

from dataclasses import dataclass

from weatherwhisper.auth import StaticTokenProvider, load_or_create_device_id
from weatherwhisper.config import Settings, settings as default_settings
from weatherwhisper.generation_client import CardGenerationClient
from weatherwhisper.geocoding import GeocodingService
from weatherwhisper.pipeline import CardPipeline, build_pipeline
from weatherwhisper.recipients import RecipientService, RecipientStore, build_recipient_store
from weatherwhisper.weather import WeatherSnapshotResolver
from weatherwhisper.widget_sync import WidgetSurface, WidgetSyncPublisher, build_widget_surface
from utils.logging_utils import get_tagged_logger, mask_token

logger = get_tagged_logger(__name__, tag="services")


@dataclass
class Services:
    config: Settings
    store: RecipientStore
    recipients: RecipientService
    pipeline: CardPipeline
    surface: WidgetSurface
    publisher: WidgetSyncPublisher

    def shutdown(self) -> None:
        self.pipeline.shutdown(wait=False)
        self.recipients.shutdown(wait=False)


def build_services(config: Settings | None = None) -> Services:
    """Build every collaborator from configuration and republish the widget index."""
    config = config or default_settings
    surface = build_widget_surface(config)
    publisher = WidgetSyncPublisher(surface)
    resolver = WeatherSnapshotResolver(timeout=config.weather_timeout_seconds)

    device_id = load_or_create_device_id(config.device_id_path)
    logger.info("Card generation at %s (token %s)", config.cards_base_url, mask_token(config.api_token))
    client = CardGenerationClient(
        StaticTokenProvider(config.api_token),
        device_id,
        base_url=config.cards_base_url,
        timeout=config.generation_timeout_seconds,
    )
    pipeline = build_pipeline(client, publisher, resolver=resolver, config=config)

    store = build_recipient_store(config.recipients_database_url)
    recipients = RecipientService(
        store,
        GeocodingService(timeout=config.weather_timeout_seconds),
        publisher,
        resolver,
    )
    publisher.publish_recipients_index(store.list_recipients())
    return Services(
        config=config,
        store=store,
        recipients=recipients,
        pipeline=pipeline,
        surface=surface,
        publisher=publisher,
    )
