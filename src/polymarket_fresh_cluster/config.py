"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
fresh-wallet cluster tracker, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Polymarket CTF Exchange on Polygon
CTF_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"


class PolygonSettings(BaseSettings):
    """Polygon blockchain RPC settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLYGON_", extra="ignore", validate_assignment=True
    )

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
    max_requests_per_second: float = Field(
        default=25.0,
        alias="POLYGON_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Rate limit for RPC calls",
    )
    max_retries: int = Field(
        default=3,
        alias="POLYGON_MAX_RETRIES",
        ge=1,
        le=10,
        description="Attempts per RPC endpoint before failing over",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="POLYGON_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout for a single RPC request",
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


class ExchangeSettings(BaseSettings):
    """Exchange contract settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXCHANGE_", extra="ignore", validate_assignment=True
    )

    addresses_csv: str = Field(
        default=CTF_EXCHANGE_ADDRESS,
        alias="EXCHANGE_ADDRESSES",
        description="Comma-separated exchange contract addresses emitting OrderFilled",
    )
    collateral_decimals: int = Field(
        default=6,
        alias="EXCHANGE_COLLATERAL_DECIMALS",
        ge=0,
        le=36,
        description="Decimal scale of filled amounts (USDC = 6)",
    )

    @field_validator("addresses_csv")
    @classmethod
    def validate_addresses(cls, v: str) -> str:
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if not parts:
            raise ValueError("EXCHANGE_ADDRESSES must list at least one address")
        for part in parts:
            if not part.startswith("0x") or len(part) != 42:
                raise ValueError(f"Invalid exchange address: {part}")
        return ",".join(parts)

    @property
    def addresses(self) -> tuple[str, ...]:
        """Exchange addresses as a tuple."""
        return tuple(self.addresses_csv.split(","))


class PolymarketSettings(BaseSettings):
    """Polymarket metadata API settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLYMARKET_", extra="ignore", validate_assignment=True
    )

    gamma_api_url: str = Field(
        default="https://gamma-api.polymarket.com",
        alias="POLYMARKET_GAMMA_API_URL",
        description="Gamma API host used for market metadata",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        alias="POLYMARKET_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout for a single metadata request",
    )

    @field_validator("gamma_api_url")
    @classmethod
    def validate_gamma_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("POLYMARKET_GAMMA_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class FreshWalletSettings(BaseSettings):
    """Wallet freshness classifier configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FRESH_WALLET_", extra="ignore", validate_assignment=True
    )

    max_nonce: int = Field(
        default=2,
        alias="FRESH_WALLET_MAX_NONCE",
        ge=0,
        le=1_000_000,
        description="Max transaction count to consider a wallet fresh",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        alias="FRESH_WALLET_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long a freshness verdict is trusted",
    )
    max_cache_entries: int = Field(
        default=100_000,
        alias="FRESH_WALLET_MAX_CACHE_ENTRIES",
        ge=1,
        le=10_000_000,
        description="Upper bound on cached freshness verdicts",
    )


class ClusterSettings(BaseSettings):
    """Cluster detection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLUSTER_", extra="ignore", validate_assignment=True
    )

    threshold: int = Field(
        default=10,
        alias="CLUSTER_THRESHOLD",
        ge=1,
        le=100_000,
        description="Fresh wallets on one outcome required to alert",
    )
    window_hours: float = Field(
        default=24.0,
        alias="CLUSTER_WINDOW_HOURS",
        gt=0.0,
        le=30 * 24,
        description="Rolling time window for counting fresh-wallet bets (hours)",
    )
    min_bet_amount_usdc: Decimal = Field(
        default=Decimal("0"),
        alias="CLUSTER_MIN_BET_AMOUNT_USDC",
        description="Minimum bet (USDC) for a participant to count",
    )
    alert_on_unknown_market: bool = Field(
        default=False,
        alias="CLUSTER_ALERT_ON_UNKNOWN_MARKET",
        description="Alert with placeholder labels when market metadata is unavailable",
    )
    max_alerts: int = Field(
        default=50,
        alias="CLUSTER_MAX_ALERTS",
        ge=1,
        le=10_000,
        description="Number of most recent alerts retained",
    )

    @field_validator("min_bet_amount_usdc")
    @classmethod
    def validate_min_bet_amount_usdc(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("CLUSTER_MIN_BET_AMOUNT_USDC must be >= 0")
        return v

    @property
    def window(self) -> timedelta:
        """Time window as a timedelta."""
        return timedelta(hours=self.window_hours)


class ScanSettings(BaseSettings):
    """Block scanning loop configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCAN_", extra="ignore", validate_assignment=True
    )

    poll_interval_seconds: float = Field(
        default=30.0,
        alias="SCAN_POLL_INTERVAL_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Sleep between scan cycles",
    )
    chunk_size_blocks: int = Field(
        default=10,
        alias="SCAN_CHUNK_SIZE_BLOCKS",
        ge=1,
        le=10_000,
        description="Blocks per eth_getLogs query (provider range limit)",
    )
    start_blocks_back: int = Field(
        default=50,
        alias="SCAN_START_BLOCKS_BACK",
        ge=0,
        le=1_000_000,
        description="Blocks to backfill behind the head at startup",
    )
    chunk_pause_seconds: float = Field(
        default=0.1,
        alias="SCAN_CHUNK_PAUSE_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between chunk queries",
    )


class AlertSettings(BaseSettings):
    """Alert sink settings."""

    model_config = SettingsConfigDict(
        env_prefix="ALERT_", extra="ignore", validate_assignment=True
    )

    sink: Literal["console", "broadcast"] = Field(
        default="console",
        alias="ALERT_SINK",
        description="Where alerts are published",
    )
    host: str = Field(
        default="0.0.0.0",
        alias="ALERT_HOST",
        description="Bind address for the broadcast server",
    )
    port: int = Field(
        default=3000,
        alias="ALERT_PORT",
        ge=1,
        le=65535,
        description="Listening port for the broadcast server",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from polymarket_fresh_cluster.config import get_settings

        settings = get_settings()
        print(settings.cluster.threshold)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        validate_assignment=True,
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
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
    fresh_wallet: FreshWalletSettings = Field(
        default_factory=lambda: FreshWalletSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    cluster: ClusterSettings = Field(
        default_factory=lambda: ClusterSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scan: ScanSettings = Field(
        default_factory=lambda: ScanSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alert: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
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
        return {
            "polygon": {
                "rpc_url": self._redact_url(self.polygon.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.polygon.fallback_rpc_url)
                    if self.polygon.fallback_rpc_url
                    else "(not set)"
                ),
            },
            "exchange": {
                "addresses": self.exchange.addresses_csv,
                "collateral_decimals": str(self.exchange.collateral_decimals),
            },
            "polymarket": {
                "gamma_api_url": self.polymarket.gamma_api_url,
            },
            "fresh_wallet": {
                "max_nonce": str(self.fresh_wallet.max_nonce),
                "cache_ttl_seconds": str(self.fresh_wallet.cache_ttl_seconds),
            },
            "cluster": {
                "threshold": str(self.cluster.threshold),
                "window_hours": str(self.cluster.window_hours),
                "min_bet_amount_usdc": str(self.cluster.min_bet_amount_usdc),
                "alert_on_unknown_market": str(self.cluster.alert_on_unknown_market),
            },
            "scan": {
                "poll_interval_seconds": str(self.scan.poll_interval_seconds),
                "chunk_size_blocks": str(self.scan.chunk_size_blocks),
                "start_blocks_back": str(self.scan.start_blocks_back),
            },
            "alert": {
                "sink": self.alert.sink,
                "port": str(self.alert.port),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials and API keys from an RPC URL.

        Hosted providers (Alchemy, Infura) put the key in the last path
        segment, so anything after the host is masked.
        """
        if "://" not in url:
            return url
        protocol_end = url.index("://") + 3
        rest = url[protocol_end:]
        if "@" in rest:
            rest = "***@" + rest.split("@", 1)[1]
        host, sep, path = rest.partition("/")
        if sep and path:
            return f"{url[:protocol_end]}{host}/***"
        return f"{url[:protocol_end]}{rest}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
