"""Strategy data models — typed representations for strategy outputs."""

from dataclasses import dataclass


@dataclass(frozen=True)
class SignalParams:
    """Thresholds for golden-cross detection."""

    fast_period: int = 5
    slow_period: int = 20
    volume_lookback: int = 10
    volume_multiplier: float = 1.1


@dataclass(frozen=True)
class CrossState:
    """Last two fast/slow EMA samples of a close series."""

    prev_fast: float
    prev_slow: float
    cur_fast: float
    cur_slow: float

    @property
    def crossed_up(self) -> bool:
        """Fast EMA moved from below to above the slow EMA on the last sample."""
        return self.prev_fast < self.prev_slow and self.cur_fast > self.cur_slow

    @property
    def is_bearish(self) -> bool:
        return self.cur_fast < self.cur_slow

    @property
    def spread(self) -> float:
        return self.cur_fast - self.cur_slow


@dataclass(frozen=True)
class TradeCandidate:
    """A symbol that passed every entry filter."""

    symbol: str
    trend_strength: float  # cur_fast - cur_slow
