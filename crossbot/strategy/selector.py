"""Candidate selection — scan every configured symbol, keep the strongest.

Each symbol is fetched and evaluated independently; a failure on one
symbol is logged and counts as "no candidate" for that symbol only.
"""

import asyncio
import logging
from typing import Optional

from crossbot.strategy.models import SignalParams, TradeCandidate
from crossbot.strategy.signals import evaluate_golden_cross

logger = logging.getLogger("crossbot.selector")


def rank_candidates(candidates: list[TradeCandidate]) -> list[TradeCandidate]:
    """Sort by trend strength, strongest first.

    The sort is stable: equal strengths keep their input order.
    """
    return sorted(candidates, key=lambda c: c.trend_strength, reverse=True)


class CandidateSelector:
    """Runs the golden-cross detector across a symbol list.

    Args:
        market_data: Anything with an async
            ``fetch_candles(symbol, interval, limit)``.
        symbols: Trading pairs to scan, in tie-break order.
        interval: Candle interval, e.g. ``"15m"``.
        limit: Candle window size.
        params: Detector thresholds.
    """

    def __init__(
        self,
        market_data,
        symbols: tuple[str, ...] | list[str],
        interval: str = "15m",
        limit: int = 100,
        params: SignalParams = SignalParams(),
    ) -> None:
        self._market_data = market_data
        self._symbols = tuple(symbols)
        self._interval = interval
        self._limit = limit
        self._params = params
        self.last_candidates: list[TradeCandidate] = []

    @property
    def symbols(self) -> tuple[str, ...]:
        return self._symbols

    async def evaluate_symbol(self, symbol: str) -> Optional[TradeCandidate]:
        """Fetch fresh candles for *symbol* and run the detector.

        Never raises: any error is logged and reported as ``None``.
        """
        try:
            candles = await self._market_data.fetch_candles(
                symbol, self._interval, self._limit
            )
            return evaluate_golden_cross(symbol, candles, self._params)
        except Exception as exc:
            logger.error("Golden-cross check failed for %s: %s", symbol, exc)
            return None

    async def scan(self) -> list[TradeCandidate]:
        """Evaluate all symbols and return the ranked candidate list."""
        results = await asyncio.gather(
            *(self.evaluate_symbol(sym) for sym in self._symbols)
        )
        ranked = rank_candidates([c for c in results if c is not None])
        self.last_candidates = ranked
        return ranked

    async def select(self) -> Optional[TradeCandidate]:
        """Return the strongest candidate, or ``None`` if nothing qualifies."""
        ranked = await self.scan()
        if not ranked:
            return None
        best = ranked[0]
        logger.info(
            "Best candidate %s (strength %.6f) out of %d",
            best.symbol, best.trend_strength, len(ranked),
        )
        return best
