"""Environment-driven settings for the leaderboard jobs.

Each concern reads its own prefixed variables (and `.env`); `Settings`
aggregates them and builds the partition/channel mapping handed to the
stores and the materializer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

VARIANT_PRIVATE = "private"
VARIANT_PUBLIC = "public"


@dataclass(frozen=True)
class PartitionConfig:
    """Backend channel identifiers for every partition and auxiliary document.

    Attributes:
        partitions: Partition id (e.g. ``sol``) to the channel holding its database document.
        archive_channel: Cold-storage channel for monthly archive bundles.
        config_channel: Channel holding the pinned leaderboard config document.
        view_channels: Variant (``private``/``public``) to the channel views are published in.
        hall_of_fame_channel: Channel for the hall-of-fame view (defaults to the public view channel).
    """

    partitions: dict[str, str]
    archive_channel: str | None = None
    config_channel: str | None = None
    view_channels: dict[str, str] = field(default_factory=dict)
    hall_of_fame_channel: str | None = None

    def channel_for(self, partition: str) -> str:
        try:
            return self.partitions[partition]
        except KeyError:
            raise KeyError(f"Unknown partition: {partition}") from None

    @property
    def partition_ids(self) -> list[str]:
        return list(self.partitions)

    @property
    def variants(self) -> list[str]:
        return list(self.view_channels)


def _parse_mapping(value: object, *, name: str) -> dict[str, str]:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, str):
        result: dict[str, str] = {}
        for part in value.split(","):
            part = part.strip()
            if not part:
                continue
            if "=" not in part:
                raise ValueError(f"{name} entries must look like key=channel_id, got {part!r}")
            key, channel = part.split("=", 1)
            result[key.strip()] = channel.strip()
        return result
    raise TypeError(f"Invalid {name} type")


class TelegramSettings(BaseSettings):
    """Telegram Bot API settings for the object store backend."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    api_base: str = Field(
        default="https://api.telegram.org",
        alias="TELEGRAM_API_BASE",
        description="Bot API base URL",
    )
    requests_per_second: float = Field(
        default=20.0,
        alias="TELEGRAM_REQUESTS_PER_SECOND",
        gt=0.0,
        le=30.0,
        description="Client-side rate limit for Bot API calls",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="TELEGRAM_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="HTTP timeout for Bot API calls",
    )

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("TELEGRAM_API_BASE must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if the Telegram backend is configured."""
        return self.bot_token is not None


class ChannelSettings(BaseSettings):
    """Channel identifiers used as document storage and view destinations."""

    model_config = SettingsConfigDict(env_prefix="CHANNELS_", extra="ignore")

    partitions: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        alias="CHANNELS_PARTITIONS",
        description="Partition database channels (comma-separated key=channel_id)",
    )
    archive: str | None = Field(
        default=None,
        alias="CHANNELS_ARCHIVE",
        description="Cold-storage channel for archive bundles",
    )
    config: str | None = Field(
        default=None,
        alias="CHANNELS_CONFIG",
        description="Channel holding the leaderboard config document (defaults to CHANNELS_ARCHIVE)",
    )
    private: str | None = Field(
        default=None,
        alias="CHANNELS_PRIVATE",
        description="Private leaderboard channel",
    )
    public: str | None = Field(
        default=None,
        alias="CHANNELS_PUBLIC",
        description="Public leaderboard channel",
    )
    hall_of_fame: str | None = Field(
        default=None,
        alias="CHANNELS_HALL_OF_FAME",
        description="Hall-of-fame channel (defaults to CHANNELS_PUBLIC)",
    )

    @field_validator("partitions", mode="before")
    @classmethod
    def _parse_partitions(cls, v: object) -> dict[str, str]:
        return _parse_mapping(v, name="CHANNELS_PARTITIONS")


class RetentionSettings(BaseSettings):
    """Retention sweep settings."""

    model_config = SettingsConfigDict(env_prefix="RETENTION_", extra="ignore")

    max_age_days: int = Field(
        default=30,
        alias="RETENTION_MAX_AGE_DAYS",
        ge=1,
        le=3650,
        description="Default token retention when no grace window applies",
    )
    archive: bool = Field(
        default=True,
        alias="RETENTION_ARCHIVE",
        description="Write evicted entities to the archive channel before removal",
    )


class LeaderboardSettings(BaseSettings):
    """Leaderboard materialization settings."""

    model_config = SettingsConfigDict(env_prefix="LEADERBOARD_", extra="ignore")

    top_n: int = Field(
        default=10,
        alias="LEADERBOARD_TOP_N",
        ge=1,
        le=100,
        description="Rows per partition view",
    )
    period: str = Field(
        default="7d",
        alias="LEADERBOARD_PERIOD",
        description="Time window for the per-partition token view",
    )
    summary_size: int = Field(
        default=25,
        alias="LEADERBOARD_SUMMARY_SIZE",
        ge=1,
        le=200,
        description="Rows kept after cross-partition aggregation",
    )
    hall_of_fame_size: int = Field(
        default=50,
        alias="LEADERBOARD_HALL_OF_FAME_SIZE",
        ge=1,
        le=500,
        description="Maximum hall-of-fame entries kept in the config document",
    )
    ranking_strategy: Literal["weighted_factors"] = Field(
        default="weighted_factors",
        alias="LEADERBOARD_RANKING_STRATEGY",
        description="Wallet ranking strategy",
    )

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str) -> str:
        from signal_leaderboard.leaderboard.selection import parse_period

        parse_period(v)
        return v


class StoreSettings(BaseSettings):
    """Partition store behavior settings."""

    model_config = SettingsConfigDict(env_prefix="STORE_", extra="ignore")

    verify_pointer: bool = Field(
        default=False,
        alias="STORE_VERIFY_POINTER",
        description="Refuse to save when the pinned pointer changed since load",
    )
    partition_delay_seconds: float = Field(
        default=0.2,
        alias="STORE_PARTITION_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between partitions to respect backend rate limits",
    )
    save_retries: int = Field(
        default=2,
        alias="STORE_SAVE_RETRIES",
        ge=0,
        le=10,
        description="Retries for transient failures when saving a partition",
    )


class RedisSettings(BaseSettings):
    """Optional Redis lease used to keep overlapping jobs off the same partition."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (enables partition leases)",
    )
    lease_seconds: int = Field(
        default=300,
        alias="REDIS_LEASE_SECONDS",
        ge=5,
        le=3600,
        description="Partition lease TTL",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Require a redis:// or rediss:// URL."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from signal_leaderboard.config import get_settings

        settings = get_settings()
        partitions = settings.partition_config()
        print(partitions.partition_ids)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: nested groups ignore `.env` unless handed the same env_file.
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    channels: ChannelSettings = Field(
        default_factory=lambda: ChannelSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    retention: RetentionSettings = Field(
        default_factory=lambda: RetentionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    leaderboard: LeaderboardSettings = Field(
        default_factory=lambda: LeaderboardSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    store: StoreSettings = Field(
        default_factory=lambda: StoreSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run against an in-memory backend instead of Telegram",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def partition_config(self) -> PartitionConfig:
        """Build the partition/channel mapping injected into stores and jobs."""
        ch = self.channels
        views: dict[str, str] = {}
        if ch.private:
            views[VARIANT_PRIVATE] = ch.private
        if ch.public:
            views[VARIANT_PUBLIC] = ch.public
        return PartitionConfig(
            partitions=dict(ch.partitions),
            archive_channel=ch.archive,
            config_channel=ch.config or ch.archive,
            view_channels=views,
            hall_of_fame_channel=ch.hall_of_fame or ch.public,
        )

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Summarize the effective settings for startup logging.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "telegram": {
                "bot_token": "(set)" if self.telegram.bot_token else "(not set)",
                "api_base": self.telegram.api_base,
                "requests_per_second": str(self.telegram.requests_per_second),
            },
            "channels": {
                "partitions": ",".join(sorted(self.channels.partitions)) or "(none)",
                "archive": self.channels.archive or "(not set)",
                "config": self.channels.config or self.channels.archive or "(not set)",
                "private": self.channels.private or "(not set)",
                "public": self.channels.public or "(not set)",
            },
            "retention": {
                "max_age_days": str(self.retention.max_age_days),
                "archive": str(self.retention.archive),
            },
            "leaderboard": {
                "top_n": str(self.leaderboard.top_n),
                "period": self.leaderboard.period,
                "ranking_strategy": self.leaderboard.ranking_strategy,
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["leaderboard", "cleanup"]) -> None:
        """Validate command-specific requirements.

        A command refuses to run when a channel it writes to is not configured.

        Raises:
            ValueError: Naming the first missing setting.
        """
        if not self.channels.partitions:
            raise ValueError("CHANNELS_PARTITIONS must list at least one partition")
        if not self.dry_run and not self.telegram.enabled:
            raise ValueError("TELEGRAM_BOT_TOKEN is required unless DRY_RUN is set")
        if command == "leaderboard":
            if not (self.channels.config or self.channels.archive):
                raise ValueError("CHANNELS_CONFIG or CHANNELS_ARCHIVE is required for leaderboards")
            if not (self.channels.private or self.channels.public):
                raise ValueError("CHANNELS_PRIVATE or CHANNELS_PUBLIC is required for leaderboards")
        if command == "cleanup" and self.retention.archive and not self.channels.archive:
            raise ValueError("CHANNELS_ARCHIVE is required when RETENTION_ARCHIVE is enabled")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Mask the password component of a connection URL."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
