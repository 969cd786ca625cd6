"""CrossBot — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from crossbot.strategy.models import SignalParams


_REQUIRED_VARS = [
    "EXCHANGE_API_KEY",
    "EXCHANGE_API_SECRET",
]

_DEFAULT_SYMBOLS = "BTC/USDT,ETH/USDT,BNB/USDT"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    exchange_api_key: str
    exchange_api_secret: str
    exchange_id: str
    exchange_environment: str  # "testnet" or "live"
    symbols: tuple[str, ...]
    candle_interval: str
    candle_limit: int
    fast_ema_period: int
    slow_ema_period: int
    volume_lookback: int
    volume_multiplier: float
    quote_currency: str
    min_quote_balance: float
    allocation_pct: float
    trailing_drawdown_pct: float
    stop_loss_pct: float
    poll_interval_seconds: int
    tick_timeout_seconds: float
    request_timeout_seconds: float
    trend_check_grace_ticks: int
    log_level: str
    health_port: int

    @property
    def is_live(self) -> bool:
        return self.exchange_environment == "live"

    @property
    def market_data_base_url(self) -> str:
        """Return the Binance spot REST base URL based on environment."""
        if self.is_live:
            return "https://api.binance.com"
        return "https://testnet.binance.vision"

    @property
    def signal_params(self) -> SignalParams:
        """Detector thresholds bundled for the signal functions."""
        return SignalParams(
            fast_period=self.fast_ema_period,
            slow_period=self.slow_ema_period,
            volume_lookback=self.volume_lookback,
            volume_multiplier=self.volume_multiplier,
        )


def _parse_symbols(raw: str) -> tuple[str, ...]:
    symbols = tuple(s.strip().upper() for s in raw.split(",") if s.strip())
    if not symbols:
        raise ValueError("SYMBOLS must name at least one trading pair")
    for sym in symbols:
        if "/" not in sym:
            raise ValueError(f"Symbol '{sym}' must look like BASE/QUOTE")
    return symbols


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or when a value is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    environment = os.environ.get("EXCHANGE_ENVIRONMENT", "testnet").lower()
    if environment not in ("testnet", "live"):
        raise ValueError(
            f"EXCHANGE_ENVIRONMENT must be 'testnet' or 'live', got '{environment}'"
        )

    fast = int(os.environ.get("FAST_EMA_PERIOD", "5"))
    slow = int(os.environ.get("SLOW_EMA_PERIOD", "20"))
    if not 0 < fast < slow:
        raise ValueError(
            f"Need 0 < FAST_EMA_PERIOD < SLOW_EMA_PERIOD, got {fast} / {slow}"
        )

    return Config(
        exchange_api_key=os.environ["EXCHANGE_API_KEY"],
        exchange_api_secret=os.environ["EXCHANGE_API_SECRET"],
        exchange_id=os.environ.get("EXCHANGE_ID", "binance"),
        exchange_environment=environment,
        symbols=_parse_symbols(os.environ.get("SYMBOLS", _DEFAULT_SYMBOLS)),
        candle_interval=os.environ.get("CANDLE_INTERVAL", "15m"),
        candle_limit=int(os.environ.get("CANDLE_LIMIT", "100")),
        fast_ema_period=fast,
        slow_ema_period=slow,
        volume_lookback=int(os.environ.get("VOLUME_LOOKBACK", "10")),
        volume_multiplier=float(os.environ.get("VOLUME_MULTIPLIER", "1.1")),
        quote_currency=os.environ.get("QUOTE_CURRENCY", "USDT"),
        min_quote_balance=float(os.environ.get("MIN_QUOTE_BALANCE", "10")),
        allocation_pct=float(os.environ.get("ALLOCATION_PCT", "95")),
        trailing_drawdown_pct=float(os.environ.get("TRAILING_DRAWDOWN_PCT", "0.5")),
        stop_loss_pct=float(os.environ.get("STOP_LOSS_PCT", "1.0")),
        poll_interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "60")),
        tick_timeout_seconds=float(os.environ.get("TICK_TIMEOUT_SECONDS", "45")),
        request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "10")),
        trend_check_grace_ticks=int(os.environ.get("TREND_CHECK_GRACE_TICKS", "0")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
