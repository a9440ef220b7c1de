"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Polymarket copy trader, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

CTF_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_CTF_EXCHANGE_ADDRESS = "0xC5d563A36AE78145C45a50134d48A1215220f80a"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./copytrader.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite (aiosqlite) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (block watermark checkpoint)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; unset keeps the watermark in memory",
    )
    watermark_key: str = Field(
        default="copytrader:chain:watermark",
        alias="REDIS_WATERMARK_KEY",
        description="Key holding the last contiguous processed block",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PolygonSettings(BaseSettings):
    """Polygon blockchain RPC settings."""

    model_config = SettingsConfigDict(env_prefix="POLYGON_", extra="ignore")

    rpc_url: str = Field(
        default="https://polygon-rpc.com",
        alias="POLYGON_RPC_URL",
        description="Primary Polygon RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="POLYGON_FALLBACK_RPC_URL",
        description="Fallback Polygon RPC endpoint",
    )
    ws_url: str = Field(
        default="wss://polygon-bor-rpc.publicnode.com",
        alias="POLYGON_WS_URL",
        description="WebSocket endpoint used for the newHeads subscription",
    )
    requests_per_second: float = Field(
        default=10.0,
        alias="POLYGON_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Client-side rate limit for HTTP RPC calls",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class ExchangeSettings(BaseSettings):
    """Exchange contracts whose logs are watched."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_", extra="ignore")

    contract_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(CTF_EXCHANGE_ADDRESS, NEG_RISK_CTF_EXCHANGE_ADDRESS),
        alias="EXCHANGE_CONTRACT_ADDRESSES",
        description="Exchange contract addresses to watch (comma-separated)",
    )

    @field_validator("contract_addresses", mode="before")
    @classmethod
    def _parse_addresses(cls, v: object) -> tuple[str, ...]:
        if isinstance(v, str):
            parts = tuple(p.strip() for p in v.split(",") if p.strip())
        elif isinstance(v, (list, tuple)):
            parts = tuple(str(x) for x in v)
        else:
            raise TypeError("Invalid EXCHANGE_CONTRACT_ADDRESSES type")
        if not parts:
            raise ValueError("EXCHANGE_CONTRACT_ADDRESSES must name at least one contract")
        for addr in parts:
            if not (addr.startswith("0x") and len(addr) == 42):
                raise ValueError(f"Invalid contract address: {addr}")
        return parts


class PolymarketSettings(BaseSettings):
    """Polymarket CLOB settings used by the execution backend."""

    model_config = SettingsConfigDict(env_prefix="POLYMARKET_", extra="ignore")

    clob_host: str = Field(
        default="https://clob.polymarket.com",
        alias="POLYMARKET_CLOB_HOST",
        description="CLOB HTTP API host",
    )
    clob_chain_id: int = Field(
        default=137,
        alias="POLYMARKET_CLOB_CHAIN_ID",
        description="Chain ID for signing (Polygon=137)",
    )
    clob_private_key: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_PRIVATE_KEY",
        description="Private key used to sign copy orders",
    )
    clob_api_key: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_KEY",
        description="CLOB API key (L2 auth)",
    )
    clob_api_secret: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_SECRET",
        description="CLOB API secret (L2 auth)",
    )
    clob_api_passphrase: SecretStr | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_API_PASSPHRASE",
        description="CLOB API passphrase (L2 auth)",
    )
    clob_signature_type: int | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_SIGNATURE_TYPE",
        description="Optional signature type override for order signing (advanced)",
    )
    clob_funder: str | None = Field(
        default=None,
        alias="POLYMARKET_CLOB_FUNDER",
        description="Optional funder address override for signing (advanced)",
    )
    order_timeout_seconds: float = Field(
        default=15.0,
        alias="POLYMARKET_ORDER_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Upper bound on a single order submission",
    )

    @field_validator("clob_host")
    @classmethod
    def validate_clob_host(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("POLYMARKET_CLOB_HOST must be an HTTP(S) endpoint")
        return v.rstrip("/")


class LeaderboardSettings(BaseSettings):
    """Public leaderboard used as the trader ranking source."""

    model_config = SettingsConfigDict(env_prefix="LEADERBOARD_", extra="ignore")

    url: str = Field(
        default="https://data-api.polymarket.com/v1/leaderboard",
        alias="LEADERBOARD_URL",
        description="Data-API leaderboard endpoint",
    )
    time_period: Literal["day", "week", "month", "all"] = Field(
        default="week",
        alias="LEADERBOARD_TIME_PERIOD",
        description="Leaderboard time window",
    )
    order_by: Literal["PNL", "VOL"] = Field(
        default="PNL",
        alias="LEADERBOARD_ORDER_BY",
        description="Leaderboard ordering",
    )
    fetch_limit: int = Field(
        default=20,
        alias="LEADERBOARD_FETCH_LIMIT",
        ge=1,
        le=500,
        description="How many leaderboard entries to fetch per refresh",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="LEADERBOARD_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP timeout for leaderboard requests",
    )


class CopyTradeSettings(BaseSettings):
    """Copy-trading behaviour and background task cadence."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    top_traders_count: int = Field(
        default=10,
        alias="TOP_TRADERS_COUNT",
        ge=1,
        le=1000,
        description="Size K of the tracked trader set",
    )
    min_profit_threshold: float = Field(
        default=1000.0,
        alias="MIN_PROFIT_THRESHOLD",
        ge=0.0,
        description="Minimum leaderboard PnL (USDC) for a trader to be stored",
    )
    multiplier: float = Field(
        default=0.1,
        alias="COPY_TRADE_MULTIPLIER",
        description="Fraction of the source trade size to mirror",
    )
    tracked_refresh_seconds: int = Field(
        default=300,
        alias="TRACKED_REFRESH_SECONDS",
        ge=5,
        le=86_400,
        description="How often the tracked trader set is rebuilt from the ledger",
    )
    leaderboard_refresh_seconds: int = Field(
        default=600,
        alias="LEADERBOARD_REFRESH_SECONDS",
        ge=30,
        le=86_400,
        description="How often the leaderboard is ingested",
    )
    backfill_interval_seconds: int = Field(
        default=30,
        alias="BACKFILL_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often the backfill pass runs",
    )
    backfill_window_blocks: int = Field(
        default=100,
        alias="BACKFILL_WINDOW_BLOCKS",
        ge=1,
        le=10_000,
        description="How many trailing blocks the backfill pass may revisit",
    )
    queue_size: int = Field(
        default=256,
        alias="EXECUTION_QUEUE_SIZE",
        ge=1,
        le=100_000,
        description="Capacity of the in-process execution queue",
    )
    queue_full_policy: Literal["block", "drop"] = Field(
        default="block",
        alias="EXECUTION_QUEUE_FULL_POLICY",
        description="Behaviour when the execution queue is full",
    )
    outbox_sweep_seconds: int = Field(
        default=60,
        alias="OUTBOX_SWEEP_SECONDS",
        ge=1,
        le=3600,
        description="Idle time after which pending outbox rows are re-queued",
    )
    resubscribe_initial_delay: float = Field(
        default=1.0,
        alias="RESUBSCRIBE_INITIAL_DELAY_SECONDS",
        gt=0.0,
        le=60.0,
        description="First reconnect delay for the block subscription",
    )
    resubscribe_max_delay: float = Field(
        default=60.0,
        alias="RESUBSCRIBE_MAX_DELAY_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Reconnect delay ceiling for the block subscription",
    )
    resubscribe_max_attempts: int = Field(
        default=10,
        alias="RESUBSCRIBE_MAX_ATTEMPTS",
        ge=1,
        le=10_000,
        description="Consecutive failed reconnects before the subscription gives up",
    )

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("COPY_TRADE_MULTIPLIER must be in (0, 1]")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_copy_trader.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.copy_trade.top_traders_count)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
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
    polygon: PolygonSettings = Field(
        default_factory=lambda: PolygonSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    exchange: ExchangeSettings = Field(
        default_factory=lambda: ExchangeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polymarket: PolymarketSettings = Field(
        default_factory=lambda: PolymarketSettings(
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
    copy_trade: CopyTradeSettings = Field(
        default_factory=lambda: CopyTradeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Simulate order submission instead of posting to the CLOB",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "polygon": {
                "rpc_url": self.polygon.rpc_url,
                "fallback_rpc_url": self.polygon.fallback_rpc_url or "(not set)",
                "ws_url": self.polygon.ws_url,
            },
            "exchange": {
                "contract_addresses": ",".join(self.exchange.contract_addresses),
            },
            "polymarket": {
                "clob_host": self.polymarket.clob_host,
                "clob_chain_id": str(self.polymarket.clob_chain_id),
                "clob_private_key": "(set)" if self.polymarket.clob_private_key else "(not set)",
                "clob_api_key": "(set)" if self.polymarket.clob_api_key else "(not set)",
            },
            "copy_trade": {
                "top_traders_count": str(self.copy_trade.top_traders_count),
                "min_profit_threshold": str(self.copy_trade.min_profit_threshold),
                "multiplier": str(self.copy_trade.multiplier),
                "queue_full_policy": self.copy_trade.queue_full_policy,
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "init-db"]) -> None:
        """Validate command-specific requirements.

        Live order submission needs a signing key and L2 credentials; the
        application refuses to start without them unless in dry-run mode.
        """
        if command != "run" or self.dry_run:
            return
        if not self.polymarket.clob_private_key:
            raise ValueError("POLYMARKET_CLOB_PRIVATE_KEY is required unless DRY_RUN is set")
        if not (
            self.polymarket.clob_api_key
            and self.polymarket.clob_api_secret
            and self.polymarket.clob_api_passphrase
        ):
            raise ValueError(
                "POLYMARKET_CLOB_API_KEY/POLYMARKET_CLOB_API_SECRET/POLYMARKET_CLOB_API_PASSPHRASE "
                "are required unless DRY_RUN is set"
            )

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
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
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when environment variables change.
    """
    get_settings.cache_clear()
