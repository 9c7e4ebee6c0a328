"""Environment and CLI runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Self

from dotenv import load_dotenv

from tradeloop.domain.models import Mode, RiskLimits
from tradeloop.errors import ConfigError

if TYPE_CHECKING:
    from tradeloop.engine import EngineConfig


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse truthy environment strings."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_optional_positive_int(value: str | None, *, field_name: str) -> int | None:
    """Parse optional positive integer values from env strings."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = int(text)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc
    if parsed <= 0:
        raise ConfigError(f"{field_name} must be positive")
    return parsed


def parse_optional_float(value: str | None, *, field_name: str) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be a number") from exc


def parse_float(value: str | None, default: float, *, field_name: str) -> float:
    parsed = parse_optional_float(value, field_name=field_name)
    return default if parsed is None else parsed


def parse_int(value: str | None, default: int, *, field_name: str) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc


def parse_optional_datetime(value: str | None, *, field_name: str) -> datetime | None:
    """Parse ISO-8601 dates or datetimes."""
    if value is None or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an ISO-8601 date or datetime") from exc


def parse_symbols(value: str | None, default: list[str] | None = None) -> list[str]:
    """Parse comma-separated symbols."""
    fallback = default or ["SPY"]
    if not value:
        return list(fallback)
    symbols = [item.strip().upper() for item in value.split(",") if item.strip()]
    return dedupe_symbols(symbols) or list(fallback)


def dedupe_symbols(symbols: list[str]) -> list[str]:
    """Remove duplicate symbols while preserving order."""
    return list(dict.fromkeys(symbols))


def normalize_mode(value: str | None, default: Mode = "backtest") -> Mode:
    """Normalize runtime mode, mapping paper trading to live."""
    candidate = (value or default).strip().lower()
    if candidate == "paper":
        return "live"
    if candidate in {"backtest", "live"}:
        return candidate
    raise ConfigError(f"mode must be one of backtest, live (got '{value}')")


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    mode: Mode = "backtest"
    strategy: str = ""
    symbols: list[str] = field(default_factory=lambda: ["SPY"])
    start: datetime | None = None
    end: datetime | None = None
    run_id: str = ""
    historical_data_dir: str = "historical_data"
    events_dir: str = "runs"
    state_db_path: str = "state/tradeloop_state.db"
    archive_backtest: bool = False
    log_level: str = "INFO"
    starting_cash: float = 100000.0
    max_position_per_instrument: float = 100.0
    max_notional_exposure: float | None = None
    max_orders_per_window: int | None = None
    rate_window_seconds: float = 1.0
    allow_short: bool = True
    slippage_bps: float = 0.0
    fee_rate: float = 0.0
    max_venue_rejections: int = 25
    halt_on_feed_gap: bool = True
    max_reconnect_attempts: int = 5
    reconnect_backoff_seconds: float = 0.5
    ack_timeout_seconds: float = 5.0
    emit_market_events: bool = False
    alpaca_api_key: str = ""
    alpaca_secret_key: str = ""
    alpaca_base_url: str = "https://paper-api.alpaca.markets"
    alpaca_data_url: str = "https://data.alpaca.markets"
    alpaca_poll_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> Self:
        """Create settings from environment variables."""
        load_dotenv()
        raw = cls(
            mode=normalize_mode(os.getenv("MODE"), default="backtest"),
            strategy=str(os.getenv("STRATEGY", "")).strip(),
            symbols=parse_symbols(os.getenv("SYMBOLS")),
            start=parse_optional_datetime(os.getenv("START"), field_name="start"),
            end=parse_optional_datetime(os.getenv("END"), field_name="end"),
            run_id=str(os.getenv("RUN_ID", "")).strip(),
            historical_data_dir=str(os.getenv("HISTORICAL_DATA_DIR", "historical_data")).strip(),
            events_dir=str(os.getenv("EVENTS_DIR", "runs")).strip(),
            state_db_path=str(os.getenv("STATE_DB_PATH", "state/tradeloop_state.db")).strip(),
            archive_backtest=parse_bool(os.getenv("ARCHIVE_BACKTEST"), False),
            log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper(),
            starting_cash=parse_float(
                os.getenv("STARTING_CASH"), 100000.0, field_name="starting_cash"
            ),
            max_position_per_instrument=parse_float(
                os.getenv("MAX_POSITION_PER_INSTRUMENT"),
                100.0,
                field_name="max_position_per_instrument",
            ),
            max_notional_exposure=parse_optional_float(
                os.getenv("MAX_NOTIONAL_EXPOSURE"), field_name="max_notional_exposure"
            ),
            max_orders_per_window=parse_optional_positive_int(
                os.getenv("MAX_ORDERS_PER_WINDOW"), field_name="max_orders_per_window"
            ),
            rate_window_seconds=parse_float(
                os.getenv("RATE_WINDOW_SECONDS"), 1.0, field_name="rate_window_seconds"
            ),
            allow_short=parse_bool(os.getenv("ALLOW_SHORT"), True),
            slippage_bps=parse_float(os.getenv("SLIPPAGE_BPS"), 0.0, field_name="slippage_bps"),
            fee_rate=parse_float(os.getenv("FEE_RATE"), 0.0, field_name="fee_rate"),
            max_venue_rejections=parse_int(
                os.getenv("MAX_VENUE_REJECTIONS"), 25, field_name="max_venue_rejections"
            ),
            halt_on_feed_gap=parse_bool(os.getenv("HALT_ON_FEED_GAP"), True),
            max_reconnect_attempts=parse_int(
                os.getenv("MAX_RECONNECT_ATTEMPTS"), 5, field_name="max_reconnect_attempts"
            ),
            reconnect_backoff_seconds=parse_float(
                os.getenv("RECONNECT_BACKOFF_SECONDS"),
                0.5,
                field_name="reconnect_backoff_seconds",
            ),
            ack_timeout_seconds=parse_float(
                os.getenv("ACK_TIMEOUT_SECONDS"), 5.0, field_name="ack_timeout_seconds"
            ),
            emit_market_events=parse_bool(os.getenv("EMIT_MARKET_EVENTS"), False),
            alpaca_api_key=str(os.getenv("ALPACA_API_KEY", "")).strip(),
            alpaca_secret_key=str(os.getenv("ALPACA_SECRET_KEY", "")).strip(),
            alpaca_base_url=str(
                os.getenv("ALPACA_BASE_URL", "https://paper-api.alpaca.markets")
            ).strip(),
            alpaca_data_url=str(
                os.getenv("ALPACA_DATA_URL", "https://data.alpaca.markets")
            ).strip(),
            alpaca_poll_seconds=parse_float(
                os.getenv("ALPACA_POLL_SECONDS"), 1.0, field_name="alpaca_poll_seconds"
            ),
        )
        return raw.validate()

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        overrides = dict(kwargs)
        mode_override = overrides.get("mode")
        if isinstance(mode_override, str):
            overrides["mode"] = normalize_mode(mode_override, default=self.mode)
        updated = replace(self, **overrides)
        return updated.validate()

    def risk_limits(self) -> RiskLimits:
        return RiskLimits(
            max_position_per_instrument=self.max_position_per_instrument,
            max_notional_exposure=self.max_notional_exposure,
            max_orders_per_window=self.max_orders_per_window,
            rate_window_seconds=self.rate_window_seconds,
            allow_short=self.allow_short,
        )

    def engine_config(self, run_id: str) -> EngineConfig:
        from tradeloop.engine import EngineConfig

        return EngineConfig(
            run_id=run_id,
            mode=self.mode,
            risk_limits=self.risk_limits(),
            max_venue_rejections=self.max_venue_rejections,
            halt_on_feed_gap=self.halt_on_feed_gap,
            max_reconnect_attempts=self.max_reconnect_attempts,
            reconnect_backoff_seconds=self.reconnect_backoff_seconds,
            emit_market_events=self.emit_market_events,
        )

    def validate(self) -> Self:
        """Validate settings fields."""
        if self.mode not in {"backtest", "live"}:
            raise ConfigError("mode must be one of backtest, live")
        if not self.symbols:
            raise ConfigError("at least one symbol is required")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ConfigError("end must not be earlier than start")
        if self.starting_cash < 0:
            raise ConfigError("starting_cash must be non-negative")
        if self.max_position_per_instrument <= 0:
            raise ConfigError("max_position_per_instrument must be positive")
        if self.max_notional_exposure is not None and self.max_notional_exposure <= 0:
            raise ConfigError("max_notional_exposure must be positive")
        if self.max_orders_per_window is not None and self.max_orders_per_window <= 0:
            raise ConfigError("max_orders_per_window must be positive")
        if self.rate_window_seconds <= 0:
            raise ConfigError("rate_window_seconds must be positive")
        if self.slippage_bps < 0:
            raise ConfigError("slippage_bps must be non-negative")
        if self.fee_rate < 0:
            raise ConfigError("fee_rate must be non-negative")
        if self.max_venue_rejections < 0:
            raise ConfigError("max_venue_rejections must be non-negative")
        if self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts must be non-negative")
        if self.reconnect_backoff_seconds < 0:
            raise ConfigError("reconnect_backoff_seconds must be non-negative")
        if self.ack_timeout_seconds <= 0:
            raise ConfigError("ack_timeout_seconds must be positive")
        return self

    def validate_live_credentials(self) -> None:
        if not self.alpaca_api_key or not self.alpaca_secret_key:
            raise ConfigError("ALPACA_API_KEY and ALPACA_SECRET_KEY are required in live mode")
