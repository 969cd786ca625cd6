"""Golden-cross entry signal — pure functions, no I/O.

Given the most recent candles of one symbol, detects a bullish fast/slow
EMA crossover on the latest closed candle and confirms it with price and
volume filters.

Filters, in order:

1. **Crossover** — fast EMA was below the slow EMA on the previous
   candle and is above it on the latest one.
2. **Price above fast EMA** — the latest close is at or above the fast
   EMA, so price is leading the average rather than lagging it.
3. **Volume confirmation** — the latest volume is at least
   ``volume_multiplier`` × the mean volume of the ``volume_lookback``
   candles before it.
"""

from collections.abc import Sequence
from typing import Optional

from crossbot.broker.models import Candle
from crossbot.strategy.indicators import calculate_ema, simple_average
from crossbot.strategy.models import CrossState, SignalParams, TradeCandidate


def read_cross_state(
    candles: Sequence[Candle],
    fast_period: int = 5,
    slow_period: int = 20,
) -> Optional[CrossState]:
    """Return the last two fast/slow EMA samples of the close series.

    Returns ``None`` when there is not enough data for both EMA series
    to hold at least two values.
    """
    if len(candles) < max(fast_period, slow_period) + 1:
        return None

    closes = [c.close for c in candles]
    fast = calculate_ema(closes, fast_period)
    slow = calculate_ema(closes, slow_period)

    return CrossState(
        prev_fast=fast[-2],
        prev_slow=slow[-2],
        cur_fast=fast[-1],
        cur_slow=slow[-1],
    )


def has_volume_confirmation(
    candles: Sequence[Candle],
    lookback: int = 10,
    multiplier: float = 1.1,
) -> bool:
    """Check the latest volume against the mean of the *lookback* before it."""
    if len(candles) < lookback + 1:
        return False
    prior = [c.volume for c in candles[-(lookback + 1):-1]]
    return candles[-1].volume >= multiplier * simple_average(prior)


def evaluate_golden_cross(
    symbol: str,
    candles: Sequence[Candle],
    params: SignalParams = SignalParams(),
) -> Optional[TradeCandidate]:
    """Evaluate the latest candle of *symbol* for a golden-cross entry.

    Args:
        symbol: Trading pair, e.g. ``"BTC/USDT"``.
        candles: Recent candles, oldest-first, freshly fetched.
        params: EMA periods and volume thresholds.

    Returns:
        ``TradeCandidate`` with ``trend_strength = cur_fast - cur_slow``
        when every filter passes, else ``None``.
    """
    state = read_cross_state(candles, params.fast_period, params.slow_period)
    if state is None or not state.crossed_up:
        return None

    if candles[-1].close < state.cur_fast:
        return None

    if not has_volume_confirmation(
        candles, params.volume_lookback, params.volume_multiplier
    ):
        return None

    return TradeCandidate(symbol=symbol, trend_strength=state.spread)
