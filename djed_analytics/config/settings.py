"""
DJED ANALYTICS - Central Configuration
All settings are loaded from environment variables (or a .env file) with sensible defaults.
"""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

from djed_analytics.data.models import Network

_ENV = SettingsConfigDict(env_file=".env", extra="ignore")


class ChainSettings(BaseSettings):
    """Chain-data API endpoint and the assets that identify the protocol UTxOs."""
    model_config = _ENV

    blockfrost_url: str = "https://cardano-mainnet.blockfrost.io/api/v0"
    blockfrost_project_id: str = ""
    network: Network = Network.MAINNET
    pool_asset_id: str = ""
    oracle_asset_id: str = ""

    request_timeout_seconds: float = 30.0
    page_size: int = 100
    page_delay_seconds: float = 0.0


class RetrySettings(BaseSettings):
    """Backoff policy for the chain-data client."""
    model_config = _ENV

    max_retries: int = 5
    backoff_base_seconds: float = 10.0
    rate_limit_backoff_base_seconds: float = 10.0
    max_backoff_seconds: float = 300.0


class BatchSettings(BaseSettings):
    """Fan-out sizing. Smaller batches and longer delays keep us under the upstream rate limit."""
    model_config = _ENV

    utxo_batch_size: int = 10
    utxo_batch_delay_seconds: float = 0.5
    datum_batch_size: int = 5
    datum_batch_delay_seconds: float = 0.3
    datum_cache_size: int = 4096


class SyncSettings(BaseSettings):
    """Schedule and locking for the analytics sync cycle."""
    model_config = _ENV

    cron_schedule: str = "*/2 * * * *"
    scheduler_enabled: bool = True
    update_lookback_days: int = 1
    lock_backend: str = "memory"  # memory | database
    lock_ttl_seconds: int = 900


class DatabaseSettings(BaseSettings):
    """Database configuration."""
    model_config = _ENV

    db_url: str = Field(
        default="sqlite+aiosqlite:///djed_analytics.db",
        validation_alias=AliasChoices("db_url", "DATABASE_URL"),
    )
    echo_sql: bool = Field(default=False, validation_alias=AliasChoices("echo_sql", "DB_ECHO_SQL"))


class AppSettings(BaseSettings):
    """Top-level application settings."""
    model_config = _ENV

    app_name: str = "Djed Analytics"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    chain: ChainSettings = Field(default_factory=ChainSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


# Singleton
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings
