"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Scheduling engine configuration. All values come from environment variables."""

    # Storage
    storage_backend: str = Field(default="sqlite")
    database_path: Path = Field(default=Path("data/study_alerts.db"))

    # Time
    timezone: str = Field(default="UTC")

    # Sweep
    check_interval_seconds: float = Field(default=30.0)
    min_check_interval_seconds: float = Field(default=10.0)
    claim_lease_seconds: float = Field(default=60.0)

    # Retries
    max_retries: int = Field(default=3)
    retry_backoff_seconds: float = Field(default=60.0)

    # Hint timers and the recently-processed guard
    hint_timers_enabled: bool = Field(default=True)
    recent_ids_capacity: int = Field(default=1000)

    # Alert planning
    default_alert_offsets: str = Field(default="30min,15min,5min")
    include_exact_alert: bool = Field(default=False)
    urgent_threshold_minutes: int = Field(default=5)

    # Channels
    default_channels: str = Field(default="dashboard")
    urgent_channels: str = Field(default="telegram")
    emergency_channels: str = Field(default="telegram,sms,dashboard")
    notifier_timeout_seconds: float = Field(default=10.0)

    # Telegram
    telegram_bot_token: str = Field(default="")

    # Slack
    slack_bot_token: str = Field(default="")

    # Telnyx (SMS)
    telnyx_api_key: str = Field(default="")
    telnyx_phone_number: str = Field(default="")

    # Agent read model
    agent_status_ttl_seconds: float = Field(default=5.0)
    performance_window_days: int = Field(default=30)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def effective_check_interval(self) -> float:
        """The sweep interval, never below the configured minimum."""
        return max(self.check_interval_seconds, self.min_check_interval_seconds)

    def get_default_alert_offsets(self) -> list[str]:
        """Parse DEFAULT_ALERT_OFFSETS into a list of offset strings."""
        return _split_csv(self.default_alert_offsets)

    def get_default_channels(self) -> list[str]:
        return _split_csv(self.default_channels)

    def get_urgent_channels(self) -> list[str]:
        return _split_csv(self.urgent_channels)

    def get_emergency_channels(self) -> list[str]:
        return _split_csv(self.emergency_channels)


settings = Settings()
