"""
Tests for environment-driven settings.
"""

import pytest
from pydantic import ValidationError

import config.settings as settings_module
from config.settings import Settings, SizingMode, get_settings, reload_settings


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_defaults():
    settings = _settings()

    assert settings.request_timeout_seconds == 8.0
    assert settings.max_fetch_attempts == 3
    assert settings.cache_ttl_seconds == 30.0
    assert settings.cache_max_entries == 5
    assert settings.history_batch_size == 1000
    assert settings.default_lookback_days == 30
    assert settings.max_lookback_days == 730
    assert settings.fee_percent == 0.36
    assert settings.sizing_mode == SizingMode.FULL_BALANCE
    assert settings.quote_currency == "USDT"
    assert settings.backtest_history_size == 50


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FEE_PERCENT", "0.1")
    monkeypatch.setenv("SIZING_MODE", "fixed_fraction")
    monkeypatch.setenv("MAX_OPEN_POSITIONS", "3")
    monkeypatch.setenv("QUOTE_CURRENCY", " eur ")

    settings = _settings()

    assert settings.fee_percent == 0.1
    assert settings.sizing_mode == SizingMode.FIXED_FRACTION
    assert settings.max_open_positions == 3
    assert settings.quote_currency == "EUR"


def test_log_level_is_normalized():
    assert _settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        _settings(log_level="chatty")


def test_max_lookback_must_cover_default():
    with pytest.raises(ValidationError):
        _settings(default_lookback_days=60, max_lookback_days=30)


def test_full_balance_allows_single_position_only():
    with pytest.raises(ValidationError, match="fixed_fraction"):
        _settings(max_open_positions=2)


@pytest.mark.parametrize(
    "field,value",
    [
        ("request_timeout_seconds", 0),
        ("max_fetch_attempts", 0),
        ("history_batch_size", 1001),
        ("initial_balance", 0),
        ("max_lookback_candles", 1),
    ],
)
def test_out_of_range_values(field, value):
    with pytest.raises(ValidationError):
        _settings(**{field: value})


def test_reload_settings_reports_changes(monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)

    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("FEE_PERCENT", "0.5")
    new_settings, changes = reload_settings()

    assert new_settings.fee_percent == 0.5
    assert changes["fee_percent"] == (first.fee_percent, 0.5)
    assert get_settings() is new_settings
