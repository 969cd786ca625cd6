"""Broker data models — typed representations of exchange API objects."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single candlestick bar."""

    time: int  # open time, ms since epoch
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Ticker:
    """Best bid/ask for a symbol."""

    symbol: str
    bid: Optional[float]
    ask: Optional[float]


@dataclass(frozen=True)
class OrderResponse:
    """Response from placing a market order."""

    order_id: str
    symbol: str
    side: str  # "buy" or "sell"
    amount: float
    average_price: Optional[float] = None
    status: str = ""
