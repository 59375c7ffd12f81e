"""Application configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the card pipeline and its HTTP surface."""
    model_config = SettingsConfigDict(env_prefix="WHISPER_", extra="ignore")

    # card generation backend
    cards_base_url: str = "http://localhost:8787"
    generation_timeout_seconds: float = 15.0
    api_token: str | None = None
    device_id_path: str = ".weatherwhisper/device_id"

    # weather provider
    weather_timeout_seconds: float = 10.0
    weather_cache_seconds: int = 600
    weather_cache_name: str = ".weather_cache"
    geocoding_user_agent: str = "weatherwhisper/0.1"

    # request defaults
    default_locale: str = "zh-CN"
    default_tone: str = "warm"
    default_cards_count: int = 5
    default_max_chars_per_card: int = 60

    # retry policy for transient generation failures
    retry_max_attempts: int = 3
    retry_backoff_sec: float = 0.5
    retry_max_backoff_sec: float = 8.0
    pipeline_workers: int = 4

    # storage and publishing
    cache_retention_days: int = 7
    cache_redis_url: str | None = None
    recipients_database_url: str | None = None
    widget_snapshot_path: str | None = None

    # local HTTP surface
    api_key: str | None = None

    @field_validator("cards_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("retry_max_attempts", "pipeline_workers", mode="after")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        """Retry attempts and worker counts below one make no sense."""
        return max(1, int(v))


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4, exclude={'api_token', 'api_key'})}")
