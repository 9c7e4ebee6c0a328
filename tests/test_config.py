from __future__ import annotations

from datetime import datetime

import pytest

from tradeloop.config import Settings, normalize_mode, parse_symbols
from tradeloop.errors import ConfigError

ENV_KEYS = [
    "MODE",
    "STRATEGY",
    "SYMBOLS",
    "START",
    "END",
    "RUN_ID",
    "STARTING_CASH",
    "MAX_POSITION_PER_INSTRUMENT",
    "MAX_NOTIONAL_EXPOSURE",
    "MAX_ORDERS_PER_WINDOW",
    "ALLOW_SHORT",
    "HALT_ON_FEED_GAP",
    "MAX_RECONNECT_ATTEMPTS",
    "ALPACA_API_KEY",
    "ALPACA_SECRET_KEY",
]


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("tradeloop.config.load_dotenv", lambda *args, **kwargs: None)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_from_env_parses_values(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("MODE", "paper")
    monkeypatch.setenv("SYMBOLS", "spy, qqq,SPY")
    monkeypatch.setenv("START", "2024-01-02")
    monkeypatch.setenv("MAX_POSITION_PER_INSTRUMENT", "25")
    monkeypatch.setenv("MAX_ORDERS_PER_WINDOW", "10")
    monkeypatch.setenv("ALLOW_SHORT", "no")
    monkeypatch.setenv("HALT_ON_FEED_GAP", "false")

    settings = Settings.from_env()

    assert settings.mode == "live"
    assert settings.symbols == ["SPY", "QQQ"]
    assert settings.start == datetime(2024, 1, 2)
    assert settings.max_position_per_instrument == 25.0
    assert settings.max_orders_per_window == 10
    assert settings.allow_short is False
    assert settings.halt_on_feed_gap is False


def test_defaults_without_env(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)

    settings = Settings.from_env()

    assert settings.mode == "backtest"
    assert settings.symbols == ["SPY"]
    assert settings.starting_cash == 100000.0
    assert settings.max_notional_exposure is None


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("MAX_ORDERS_PER_WINDOW", "0"),
        ("STARTING_CASH", "lots"),
        ("MAX_POSITION_PER_INSTRUMENT", "-1"),
        ("MODE", "simulation"),
        ("START", "yesterday"),
    ],
)
def test_invalid_env_values_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError):
        Settings.from_env()


def test_end_before_start_is_rejected() -> None:
    with pytest.raises(ConfigError, match="end must not be earlier"):
        Settings(start=datetime(2024, 2, 1), end=datetime(2024, 1, 1)).validate()


def test_overrides_validate_and_build_engine_config() -> None:
    settings = Settings().with_overrides(
        mode="paper",
        max_notional_exposure=5000.0,
        allow_short=False,
        max_reconnect_attempts=2,
    )

    limits = settings.risk_limits()
    config = settings.engine_config("run-7")

    assert settings.mode == "live"
    assert limits.max_notional_exposure == 5000.0
    assert limits.allow_short is False
    assert config.run_id == "run-7"
    assert config.mode == "live"
    assert config.max_reconnect_attempts == 2
    assert config.risk_limits == limits


def test_live_credentials_required() -> None:
    with pytest.raises(ConfigError, match="ALPACA_API_KEY"):
        Settings(mode="live").validate_live_credentials()


def test_symbol_and_mode_helpers() -> None:
    assert parse_symbols("") == ["SPY"]
    assert parse_symbols("btcusd,,eth") == ["BTCUSD", "ETH"]
    assert normalize_mode(None) == "backtest"
    assert normalize_mode(" LIVE ") == "live"
