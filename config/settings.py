from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment surface consumed by the delivery engine, read once per invocation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # State layout: channels.json, channel-events/, channel-idempotency.json, channel-rate/
    state_dir: str = Field(default=".courier", validation_alias="COURIER_STATE_DIR")

    # Delivery policy
    http_timeout_ms: int = Field(default=15_000, ge=1, validation_alias="COURIER_HTTP_TIMEOUT_MS")
    telegram_min_interval_ms: int = Field(
        default=800, ge=0, validation_alias="COURIER_TELEGRAM_MIN_INTERVAL_MS"
    )
    telegram_retry_after_default_ms: int = Field(
        default=1000, ge=0, validation_alias="COURIER_TELEGRAM_RETRY_AFTER_DEFAULT_MS"
    )
    idempotency_window_seconds: int = Field(
        default=86_400, ge=1, validation_alias="COURIER_IDEMPOTENCY_WINDOW_SECONDS"
    )

    # Logging
    log_level: str = Field(default="WARNING", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="text", validation_alias="LOG_FORMAT")
    log_file: str = Field(default="", validation_alias="COURIER_LOG_FILE")

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    @property
    def channels_file(self) -> Path:
        return self.state_path / "channels.json"

    @property
    def events_dir(self) -> Path:
        return self.state_path / "channel-events"

    @property
    def idempotency_file(self) -> Path:
        return self.state_path / "channel-idempotency.json"

    @property
    def rate_dir(self) -> Path:
        return self.state_path / "channel-rate"

    @property
    def json_logging(self) -> bool:
        return self.log_format.lower() == "json"
