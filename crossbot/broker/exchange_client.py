"""Exchange account client — balance, ticker and market orders via ccxt.

Wraps a ``ccxt.async_support`` exchange so the rest of the bot only sees
plain floats, ``Ticker`` and ``OrderResponse`` objects, and a single
``ExecutionError`` type for every failure.
"""

import logging
from typing import Optional

import ccxt.async_support as ccxt

from crossbot.broker.errors import ExecutionError
from crossbot.broker.models import OrderResponse, Ticker
from crossbot.config import Config

logger = logging.getLogger("crossbot")


def build_exchange(config: Config):
    """Instantiate the configured ccxt exchange (sandbox unless live)."""
    try:
        exchange_cls = getattr(ccxt, config.exchange_id)
    except AttributeError:
        raise ValueError(f"Unknown ccxt exchange id '{config.exchange_id}'") from None

    exchange = exchange_cls({
        "apiKey": config.exchange_api_key,
        "secret": config.exchange_api_secret,
        "enableRateLimit": True,
        "timeout": int(config.request_timeout_seconds * 1000),
        "options": {"defaultType": "spot"},
    })
    if not config.is_live:
        exchange.set_sandbox_mode(True)
    return exchange


class ExchangeClient:
    """Async account/order client for one ccxt exchange.

    Args:
        config: Application configuration.
        exchange: Pre-built ccxt exchange (tests inject a mock). Built
            from *config* when omitted.
    """

    def __init__(self, config: Config, exchange=None) -> None:
        self._exchange = exchange if exchange is not None else build_exchange(config)
        self._markets_loaded = False

    async def _ensure_markets(self) -> None:
        if not self._markets_loaded:
            await self._exchange.load_markets()
            self._markets_loaded = True

    # ── Account ──────────────────────────────────────────────────────────

    async def fetch_balance(self) -> dict[str, float]:
        """Return free (available) balances keyed by currency code."""
        try:
            raw = await self._exchange.fetch_balance()
        except ccxt.BaseError as exc:
            raise ExecutionError(f"fetch_balance failed: {exc}") from exc

        free = raw.get("free") or {}
        return {
            currency: float(amount)
            for currency, amount in free.items()
            if amount is not None
        }

    async def fetch_ticker(self, symbol: str) -> Ticker:
        """Return the best bid/ask for *symbol*."""
        try:
            raw = await self._exchange.fetch_ticker(symbol)
        except ccxt.BaseError as exc:
            raise ExecutionError(f"fetch_ticker {symbol} failed: {exc}") from exc

        bid = raw.get("bid")
        ask = raw.get("ask")
        return Ticker(
            symbol=symbol,
            bid=float(bid) if bid is not None else None,
            ask=float(ask) if ask is not None else None,
        )

    # ── Orders ───────────────────────────────────────────────────────────

    async def round_to_tradable_quantity(self, symbol: str, quantity: float) -> float:
        """Round *quantity* down to the exchange's amount precision.

        Returns ``0.0`` when the quantity is below the smallest tradable
        step.
        """
        try:
            await self._ensure_markets()
            return float(self._exchange.amount_to_precision(symbol, quantity))
        except ccxt.InvalidOrder:
            return 0.0
        except ccxt.BaseError as exc:
            raise ExecutionError(f"precision lookup {symbol} failed: {exc}") from exc

    async def submit_market_buy(self, symbol: str, quantity: float) -> OrderResponse:
        """Place a market buy for *quantity* base units."""
        return await self._submit("buy", symbol, quantity)

    async def submit_market_sell(self, symbol: str, quantity: float) -> OrderResponse:
        """Place a market sell for *quantity* base units."""
        return await self._submit("sell", symbol, quantity)

    async def _submit(self, side: str, symbol: str, quantity: float) -> OrderResponse:
        try:
            if side == "buy":
                raw = await self._exchange.create_market_buy_order(symbol, quantity)
            else:
                raw = await self._exchange.create_market_sell_order(symbol, quantity)
        except ccxt.BaseError as exc:
            raise ExecutionError(
                f"market {side} {quantity} {symbol} failed: {exc}"
            ) from exc

        average: Optional[float] = raw.get("average") or raw.get("price")
        logger.debug("Order %s filled: %s", raw.get("id"), raw)
        return OrderResponse(
            order_id=str(raw.get("id", "")),
            symbol=symbol,
            side=side,
            amount=float(raw.get("amount") or quantity),
            average_price=float(average) if average is not None else None,
            status=str(raw.get("status") or ""),
        )

    async def close(self) -> None:
        """Release the underlying HTTP session."""
        await self._exchange.close()
