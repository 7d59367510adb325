"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Fluid DEX monitor, loading and validating environment variables at
startup. The node endpoint is the only required setting; everything
else has a default matching the sUSDe deployment on Ethereum mainnet.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

SUSDE_ADDRESS = "0x9D39A5DE30e57443BfF2A8307A4256c8797A3497"
DEX_RESERVES_RESOLVER_ADDRESS = "0xC93876C0EEd99645DD53937b25433e311881A27C"
LIQUIDITY_LAYER_ADDRESS = "0x52Aa899454998Be5b000Ad077a46Bbe360F4e497"

DEFAULT_PRICE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("susde_usdt_price", "sUSDe/USDT"),
    ("gho_susde_price", "GHO/sUSDe"),
)


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    if not v.startswith(("http://", "https://")):
        raise ValueError("RPC URL must be an HTTP(S) endpoint")
    return v


class RpcSettings(BaseSettings):
    """Ethereum node RPC settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="MAINNET_RPC_URL",
        description="Primary Ethereum mainnet RPC endpoint",
    )
    fallback_url: str | None = Field(
        default=None,
        alias="MAINNET_FALLBACK_RPC_URL",
        description="Fallback Ethereum mainnet RPC endpoint",
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="RPC_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Client-side rate limit for RPC calls",
    )
    request_timeout_seconds: int = Field(
        default=30,
        alias="RPC_REQUEST_TIMEOUT_SECONDS",
        ge=1,
        le=300,
        description="HTTP request timeout for RPC calls",
    )

    @field_validator("url", "fallback_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)


class RedisSettings(BaseSettings):
    """Optional Redis cache for immutable on-chain lookups."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (cache disabled when unset)",
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

    @property
    def enabled(self) -> bool:
        """Check if the Redis cache is configured."""
        return self.url is not None


class MonitorSettings(BaseSettings):
    """Price monitor behaviour: tracked asset, contracts, cadence, thresholds."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_", extra="ignore")

    tracked_asset_address: str = Field(
        default=SUSDE_ADDRESS,
        alias="MONITOR_TRACKED_ASSET_ADDRESS",
        description="Address of the tracked (yield-bearing) asset",
    )
    tracked_asset_symbol: str = Field(
        default="sUSDe",
        alias="MONITOR_TRACKED_ASSET_SYMBOL",
        description="Display symbol of the tracked asset used in pair labels",
    )
    resolver_address: str = Field(
        default=DEX_RESERVES_RESOLVER_ADDRESS,
        alias="MONITOR_RESOLVER_ADDRESS",
        description="DEX reserves resolver contract",
    )
    liquidity_layer_address: str = Field(
        default=LIQUIDITY_LAYER_ADDRESS,
        alias="MONITOR_LIQUIDITY_LAYER_ADDRESS",
        description="Liquidity layer contract emitting LogOperate",
    )
    price_check_interval_seconds: float = Field(
        default=30.0,
        alias="MONITOR_PRICE_CHECK_INTERVAL_SECONDS",
        ge=1.0,
        le=3600.0,
        description="Period of the sequential all-pool price check",
    )
    block_poll_interval_seconds: float = Field(
        default=4.0,
        alias="MONITOR_BLOCK_POLL_INTERVAL_SECONDS",
        ge=0.1,
        le=60.0,
        description="How often the node is polled for new blocks and logs",
    )
    next_block_timeout_seconds: float = Field(
        default=30.0,
        alias="MONITOR_NEXT_BLOCK_TIMEOUT_SECONDS",
        ge=1.0,
        le=600.0,
        description="Max wait for the block after a detected operation",
    )
    operation_materiality_floor: Decimal = Field(
        default=Decimal("0.01"),
        alias="MONITOR_OPERATION_MATERIALITY_FLOOR",
        description="Minimum |supply| or |borrow| for an operation to be correlated",
    )
    operation_amount_decimals: int = Field(
        default=18,
        alias="MONITOR_OPERATION_AMOUNT_DECIMALS",
        ge=0,
        le=36,
        description="Decimals used to scale LogOperate amounts to natural units",
    )
    large_liquidity_threshold: Decimal = Field(
        default=Decimal("10000"),
        alias="MONITOR_LARGE_LIQUIDITY_THRESHOLD",
        description="Deposit/withdraw token amount above which a change is large",
    )
    pool_event_check_delay_seconds: float = Field(
        default=2.0,
        alias="MONITOR_POOL_EVENT_CHECK_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Delay before re-checking price after a pool event",
    )
    liquidity_check_delay_seconds: float = Field(
        default=3.0,
        alias="MONITOR_LIQUIDITY_CHECK_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Delay before re-checking price after a large deposit/withdrawal",
    )
    periodic_threshold_percent: Decimal = Field(
        default=Decimal("0.0001"),
        alias="MONITOR_PERIODIC_THRESHOLD_PERCENT",
        description="Significance threshold (percent) for periodic checks",
    )
    event_threshold_percent: Decimal = Field(
        default=Decimal("0.001"),
        alias="MONITOR_EVENT_THRESHOLD_PERCENT",
        description="Significance threshold (percent) for event-driven checks",
    )
    csv_path: Path = Field(
        default=Path("susde_price_history.csv"),
        alias="MONITOR_CSV_PATH",
        description="Append-only price history file",
    )
    price_columns: Annotated[tuple[tuple[str, str], ...], NoDecode] = Field(
        default=DEFAULT_PRICE_COLUMNS,
        alias="MONITOR_PRICE_COLUMNS",
        description="Ordered column=pair-label map for the history file (comma-separated)",
    )
    reference_price_column: str = Field(
        default="susde_official_price",
        alias="MONITOR_REFERENCE_PRICE_COLUMN",
        description="History column holding the reference (vault) price",
    )

    @field_validator("operation_materiality_floor", "large_liquidity_threshold")
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("amount thresholds must be >= 0")
        return v

    @field_validator("periodic_threshold_percent", "event_threshold_percent")
    @classmethod
    def validate_threshold(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("change thresholds must be >= 0")
        return v

    @field_validator("price_columns", mode="before")
    @classmethod
    def _parse_price_columns(cls, v: object) -> tuple[tuple[str, str], ...]:
        if v is None:
            raise ValueError("MONITOR_PRICE_COLUMNS must be set")
        if isinstance(v, str):
            pairs: list[tuple[str, str]] = []
            for part in (p.strip() for p in v.split(",")):
                if not part:
                    continue
                column, sep, label = part.partition("=")
                if not sep or not column.strip() or not label.strip():
                    raise ValueError(f"Invalid MONITOR_PRICE_COLUMNS entry: {part!r}")
                pairs.append((column.strip(), label.strip()))
            return tuple(pairs)
        if isinstance(v, (list, tuple)):
            return tuple((str(c), str(label)) for c, label in v)
        raise TypeError("Invalid MONITOR_PRICE_COLUMNS type")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from fluid_dex_monitor.config import get_settings

        settings = get_settings()
        print(settings.rpc.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    rpc: RpcSettings = Field(
        default_factory=lambda: RpcSettings(
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
    monitor: MonitorSettings = Field(
        default_factory=lambda: MonitorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
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
        monitor = self.monitor
        return {
            "rpc": {
                "url": self._redact_url(self.rpc.url),
                "fallback_url": self._redact_url(self.rpc.fallback_url)
                if self.rpc.fallback_url
                else "(not set)",
                "max_requests_per_second": str(self.rpc.max_requests_per_second),
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "monitor": {
                "tracked_asset": f"{monitor.tracked_asset_symbol} ({monitor.tracked_asset_address})",
                "resolver_address": monitor.resolver_address,
                "liquidity_layer_address": monitor.liquidity_layer_address,
                "price_check_interval_seconds": str(monitor.price_check_interval_seconds),
                "block_poll_interval_seconds": str(monitor.block_poll_interval_seconds),
                "next_block_timeout_seconds": str(monitor.next_block_timeout_seconds),
                "operation_materiality_floor": str(monitor.operation_materiality_floor),
                "periodic_threshold_percent": str(monitor.periodic_threshold_percent),
                "event_threshold_percent": str(monitor.event_threshold_percent),
                "csv_path": str(monitor.csv_path),
                "price_columns": ",".join(f"{c}={label}" for c, label in monitor.price_columns),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password or API key from a URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        if "://" in url:
            # Hosted providers put the API key in the last path segment.
            head, sep, key = url.rpartition("/")
            if sep and len(key) >= 16 and "://" in head and head.index("://") + 3 < len(head):
                return f"{head}/***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
