"""
Configuration settings with Pydantic validation.
All settings are loaded from environment variables.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SizingMode(str, Enum):
    """Position sizing model used by the simulator."""
    FULL_BALANCE = "full_balance"       # One position, whole balance committed
    FIXED_FRACTION = "fixed_fraction"   # Fraction of equity per position, several may be open


class Settings(BaseSettings):
    """Main application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Quote Source
    klines_url: str = Field(
        default="https://api.binance.com/api/v3/klines",
        description="REST endpoint returning candle rows"
    )
    quote_currency: str = Field(
        default="USDT",
        description="Quote currency appended to bare assets (BTC -> BTCUSDT)"
    )
    request_timeout_seconds: float = Field(
        default=8.0,
        ge=0.5,
        le=120.0,
        description="Upper bound for a single network attempt"
    )

    # Retry Policy
    max_fetch_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per fetch before giving up (rate-limit waits are not counted)"
    )
    retry_base_delay_seconds: float = Field(
        default=1.5,
        ge=0.0,
        le=60.0,
        description="Backoff delay after the first failed attempt"
    )
    retry_backoff_factor: float = Field(
        default=1.5,
        ge=1.0,
        le=5.0,
        description="Multiplier applied to the backoff delay per failed attempt"
    )
    retry_jitter_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Upper bound of uniform random jitter added to each backoff"
    )
    retry_max_delay_seconds: float = Field(
        default=15.0,
        ge=0.0,
        le=300.0,
        description="Cap on a single backoff delay"
    )
    rate_limit_default_wait_seconds: float = Field(
        default=60.0,
        ge=0.0,
        le=3600.0,
        description="Wait applied on HTTP 429 when no Retry-After header is sent"
    )
    max_rate_limit_waits: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Consecutive rate-limit waits tolerated before a fetch fails"
    )

    # Candle Cache
    cache_ttl_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="Freshness window of a cached candle series"
    )
    cache_max_entries: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Maximum number of distinct cached series"
    )
    cache_eviction_margin: int = Field(
        default=1,
        ge=0,
        le=100,
        description="Extra entries evicted below the bound when the cache is full"
    )
    coalesce_window_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=600.0,
        description="Age after which an in-flight request is no longer shared"
    )

    # Historical Assembly
    history_batch_size: int = Field(
        default=1000,
        ge=1,
        le=1000,
        description="Candles requested per backward page"
    )
    history_batch_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Pause between successive backward page fetches"
    )
    default_lookback_days: int = Field(
        default=30,
        ge=1,
        le=730,
        description="Range used when no start date is given or start >= end"
    )
    max_lookback_days: int = Field(
        default=730,
        ge=1,
        le=3650,
        description="Oldest start date accepted, in days before now"
    )
    staleness_threshold_hours: float = Field(
        default=2.0,
        ge=0.0,
        le=168.0,
        description="Age of the newest candle that triggers a freshness fetch"
    )
    freshness_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Candles requested by the freshness fetch"
    )

    # Simulation
    initial_balance: float = Field(
        default=1000.0,
        gt=0.0,
        description="Starting balance in quote currency"
    )
    fee_percent: float = Field(
        default=0.36,
        ge=0.0,
        le=10.0,
        description="Round-trip fee in percentage points deducted from each trade"
    )
    sizing_mode: SizingMode = Field(
        default=SizingMode.FULL_BALANCE,
        description="Position sizing model: full_balance or fixed_fraction"
    )
    position_fraction_percent: float = Field(
        default=25.0,
        gt=0.0,
        le=100.0,
        description="Equity share committed per position in fixed_fraction mode"
    )
    max_open_positions: int = Field(
        default=1,
        ge=1,
        le=50,
        description="Concurrent positions allowed (fixed_fraction mode only)"
    )
    max_lookback_candles: int = Field(
        default=200,
        ge=2,
        le=5000,
        description="Trailing window length handed to strategies"
    )
    backtest_history_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Recent backtest reports kept in memory"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file path")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("quote_currency")
    @classmethod
    def normalize_quote_currency(cls, v: str) -> str:
        """Quote currency is matched against upper-cased symbols."""
        return v.strip().upper()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Reject unknown logging levels early."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a standard logging level, got {v}")
        return level

    @field_validator("max_lookback_days")
    @classmethod
    def validate_max_lookback(cls, v: int, info) -> int:
        """Ensure the horizon covers the default range."""
        if "default_lookback_days" in info.data and v < info.data["default_lookback_days"]:
            raise ValueError("max_lookback_days must be >= default_lookback_days")
        return v

    @model_validator(mode="after")
    def validate_sizing(self) -> "Settings":
        """Several open positions only make sense with fractional sizing."""
        if self.sizing_mode == SizingMode.FULL_BALANCE and self.max_open_positions > 1:
            raise ValueError(
                "MAX_OPEN_POSITIONS > 1 requires SIZING_MODE=fixed_fraction. "
                "A full-balance position leaves no cash for a second one."
            )
        return self


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> tuple[Settings, dict[str, tuple]]:
    """
    Reload settings from .env file.

    Returns:
        Tuple of (new_settings, changes_dict)
        changes_dict maps field_name -> (old_value, new_value)
    """
    global _settings

    old_settings = _settings
    new_settings = Settings()

    changes: dict[str, tuple] = {}
    if old_settings:
        for field_name in Settings.model_fields:
            old_val = getattr(old_settings, field_name)
            new_val = getattr(new_settings, field_name)
            if old_val != new_val:
                changes[field_name] = (old_val, new_val)

    _settings = new_settings
    return new_settings, changes
