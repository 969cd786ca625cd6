"""Tests for the position manager — entry, exit ordering and invariants.

Uses a fake exchange and fake market data to avoid real network calls.
"""

import asyncio

import pytest

from crossbot.broker.errors import DataUnavailableError, ExecutionError
from crossbot.broker.models import Candle, OrderResponse, Ticker
from crossbot.config import Config
from crossbot.position_manager import Position, PositionManager, PositionState
from crossbot.risk.trailing_stop import ExitReason


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(**overrides) -> Config:
    """Build a Config with sensible test defaults."""
    defaults = dict(
        exchange_api_key="test-key",
        exchange_api_secret="test-secret",
        exchange_id="binance",
        exchange_environment="testnet",
        symbols=("BTC/USDT", "ETH/USDT"),
        candle_interval="15m",
        candle_limit=100,
        fast_ema_period=5,
        slow_ema_period=20,
        volume_lookback=10,
        volume_multiplier=1.1,
        quote_currency="USDT",
        min_quote_balance=10.0,
        allocation_pct=95.0,
        trailing_drawdown_pct=0.5,
        stop_loss_pct=1.0,
        poll_interval_seconds=60,
        tick_timeout_seconds=5.0,
        request_timeout_seconds=1.0,
        trend_check_grace_ticks=0,
        log_level="WARNING",
        health_port=8080,
    )
    defaults.update(overrides)
    return Config(**defaults)


def _make_candles(closes: list[float]) -> list[Candle]:
    return [
        Candle(time=i * 900_000, open=c, high=c, low=c, close=c, volume=100.0)
        for i, c in enumerate(closes)
    ]


def _bullish_candles() -> list[Candle]:
    return _make_candles([10.0] * 20 + [10.1, 10.2, 10.3, 10.4, 10.5, 10.6])


def _bearish_candles() -> list[Candle]:
    return _make_candles([10.0] * 20 + [9.9, 9.8, 9.7, 9.6, 9.5, 9.4])


class FakeExchange:
    """Duck-typed ExchangeClient replacement."""

    def __init__(self, balance: float = 1_000.0, ask: float = 100.0, bid: float = 100.0) -> None:
        self.balances = {"USDT": balance}
        self.ask = ask
        self.bid = bid
        self.buys: list[tuple] = []
        self.sells: list[tuple] = []
        self.fail_calls: set[str] = set()
        self.order_delay = 0.0

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_calls:
            raise ExecutionError(f"{name} rejected")

    async def fetch_balance(self):
        self._maybe_fail("fetch_balance")
        return dict(self.balances)

    async def fetch_ticker(self, symbol):
        self._maybe_fail("fetch_ticker")
        return Ticker(symbol=symbol, bid=self.bid, ask=self.ask)

    async def round_to_tradable_quantity(self, symbol, quantity):
        return round(quantity, 4)

    async def submit_market_buy(self, symbol, quantity):
        self._maybe_fail("buy")
        self.buys.append((symbol, quantity))
        if self.order_delay:
            await asyncio.sleep(self.order_delay)
        return OrderResponse(f"b{len(self.buys)}", symbol, "buy", quantity, self.ask, "closed")

    async def submit_market_sell(self, symbol, quantity):
        self._maybe_fail("sell")
        self.sells.append((symbol, quantity))
        if self.order_delay:
            await asyncio.sleep(self.order_delay)
        return OrderResponse(f"s{len(self.sells)}", symbol, "sell", quantity, self.bid, "closed")


class FakeMarketData:
    def __init__(self, candles: list[Candle] | None = None) -> None:
        self.candles = candles if candles is not None else _bullish_candles()
        self.calls = 0
        self.fail = False

    async def fetch_candles(self, symbol, interval, limit=100):
        self.calls += 1
        if self.fail:
            raise DataUnavailableError(f"{symbol} unavailable")
        return self.candles


def _manager(config=None, exchange=None, market=None):
    exchange = exchange or FakeExchange()
    market = market or FakeMarketData()
    return PositionManager(config or _make_config(), exchange, market), exchange, market


# ── Entry ────────────────────────────────────────────────────────────────


class TestEntry:
    @pytest.mark.asyncio
    async def test_enter_opens_position(self):
        pm, exchange, _ = _manager()
        assert pm.state is PositionState.NO_POSITION

        position = await pm.try_enter("BTC/USDT")

        assert isinstance(position, Position)
        assert pm.state is PositionState.OPEN
        assert position.symbol == "BTC/USDT"
        assert position.entry_price == 100.0
        assert position.highest_price == 100.0
        # 1000 * 0.95 / 100 = 9.5
        assert position.amount == pytest.approx(9.5)
        assert position.status is PositionState.OPEN
        assert exchange.buys == [("BTC/USDT", 9.5)]

    @pytest.mark.asyncio
    async def test_entry_is_noop_when_open(self):
        pm, exchange, _ = _manager()
        first = await pm.try_enter("BTC/USDT")
        second = await pm.try_enter("ETH/USDT")
        assert second is None
        assert pm.position is first
        assert len(exchange.buys) == 1

    @pytest.mark.asyncio
    async def test_skip_when_balance_below_minimum(self):
        pm, exchange, _ = _manager(exchange=FakeExchange(balance=9.99))
        assert await pm.try_enter("BTC/USDT") is None
        assert pm.state is PositionState.NO_POSITION
        assert exchange.buys == []

    @pytest.mark.asyncio
    async def test_skip_when_quote_currency_missing(self):
        exchange = FakeExchange()
        exchange.balances = {"BTC": 1.0}
        pm, _, _ = _manager(exchange=exchange)
        assert await pm.try_enter("BTC/USDT") is None
        assert exchange.buys == []

    @pytest.mark.asyncio
    async def test_skip_when_amount_rounds_to_zero(self):
        # 20 USDT at 1,000,000 → 0.000019 rounds to 0.0
        pm, exchange, _ = _manager(exchange=FakeExchange(balance=20.0, ask=1_000_000.0))
        assert await pm.try_enter("BTC/USDT") is None
        assert exchange.buys == []

    @pytest.mark.asyncio
    async def test_skip_when_no_ask(self):
        pm, exchange, _ = _manager(exchange=FakeExchange(ask=None))
        assert await pm.try_enter("BTC/USDT") is None
        assert exchange.buys == []

    @pytest.mark.asyncio
    async def test_failed_buy_leaves_no_position(self):
        exchange = FakeExchange()
        exchange.fail_calls.add("buy")
        pm, _, _ = _manager(exchange=exchange)
        with pytest.raises(ExecutionError):
            await pm.try_enter("BTC/USDT")
        assert pm.state is PositionState.NO_POSITION

    @pytest.mark.asyncio
    async def test_concurrent_entries_buy_once(self):
        pm, exchange, _ = _manager()
        results = await asyncio.gather(
            pm.try_enter("BTC/USDT"),
            pm.try_enter("ETH/USDT"),
        )
        assert sum(r is not None for r in results) == 1
        assert len(exchange.buys) == 1


# ── Exit ─────────────────────────────────────────────────────────────────


class TestExit:
    @pytest.mark.asyncio
    async def test_no_position_nothing_to_evaluate(self):
        pm, exchange, market = _manager()
        assert await pm.evaluate_exit() is None
        assert market.calls == 0

    @pytest.mark.asyncio
    async def test_take_profit_skips_trend_check(self):
        """entry 100, high 110, bid 109.4 → trailing take-profit."""
        pm, exchange, market = _manager()
        await pm.try_enter("BTC/USDT")

        exchange.bid = 110.0
        assert await pm.evaluate_exit() is None
        assert pm.position.highest_price == 110.0
        calls_before = market.calls

        exchange.bid = 109.4
        result = await pm.evaluate_exit()

        assert result is not None
        assert result.reason is ExitReason.TAKE_PROFIT
        assert result.exit_price == 109.4
        assert result.drawdown_pct == pytest.approx(0.54545, abs=1e-4)
        assert market.calls == calls_before  # trend never re-checked
        assert pm.state is PositionState.NO_POSITION
        assert exchange.sells == [("BTC/USDT", 9.5)]

    @pytest.mark.asyncio
    async def test_stop_loss(self):
        """entry 100, bid 98.9 → pnl −1.1 % → stop loss."""
        pm, exchange, market = _manager()
        await pm.try_enter("BTC/USDT")

        exchange.bid = 98.9
        result = await pm.evaluate_exit()

        assert result.reason is ExitReason.STOP_LOSS
        assert result.pnl_pct == pytest.approx(-1.1)
        assert market.calls == 0
        assert pm.state is PositionState.NO_POSITION

    @pytest.mark.asyncio
    async def test_trend_invalidation_exit(self):
        pm, exchange, market = _manager()
        await pm.try_enter("BTC/USDT")

        market.candles = _bearish_candles()
        exchange.bid = 100.2
        result = await pm.evaluate_exit()

        assert result.reason is ExitReason.TREND_INVALIDATED
        assert market.calls == 1
        assert len(exchange.sells) == 1
        assert pm.position is None

    @pytest.mark.asyncio
    async def test_hold_ratchets_high(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")

        for bid, expected_high in [(101.0, 101.0), (102.0, 102.0), (101.8, 102.0)]:
            exchange.bid = bid
            assert await pm.evaluate_exit() is None
            assert pm.position.highest_price == expected_high

    @pytest.mark.asyncio
    async def test_reevaluation_is_idempotent(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")
        exchange.bid = 100.3

        first = await pm.evaluate_exit()
        snapshot = pm.position
        second = await pm.evaluate_exit()

        assert first is None and second is None
        assert pm.position == snapshot
        assert exchange.sells == []
        assert len(exchange.buys) == 1

    @pytest.mark.asyncio
    async def test_failed_candle_fetch_does_not_commit_high(self):
        pm, exchange, market = _manager()
        await pm.try_enter("BTC/USDT")

        market.fail = True
        exchange.bid = 104.0
        with pytest.raises(DataUnavailableError):
            await pm.evaluate_exit()

        assert pm.position.highest_price == 100.0
        assert pm.state is PositionState.OPEN

    @pytest.mark.asyncio
    async def test_failed_sell_keeps_position_open(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")

        exchange.fail_calls.add("sell")
        exchange.bid = 98.0
        with pytest.raises(ExecutionError):
            await pm.evaluate_exit()
        assert pm.state is PositionState.OPEN

        exchange.fail_calls.clear()
        result = await pm.evaluate_exit()
        assert result.reason is ExitReason.STOP_LOSS
        assert len(exchange.sells) == 1

    @pytest.mark.asyncio
    async def test_missing_bid_is_execution_error(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")
        exchange.bid = None
        with pytest.raises(ExecutionError, match="No bid"):
            await pm.evaluate_exit()
        assert pm.state is PositionState.OPEN

    @pytest.mark.asyncio
    async def test_grace_ticks_delay_trend_check(self):
        pm, exchange, market = _manager(
            config=_make_config(trend_check_grace_ticks=1),
            market=FakeMarketData(_bearish_candles()),
        )
        await pm.try_enter("BTC/USDT")

        assert await pm.evaluate_exit() is None
        assert market.calls == 0

        result = await pm.evaluate_exit()
        assert result.reason is ExitReason.TREND_INVALIDATED
        assert market.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_exits_sell_once(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")
        exchange.bid = 98.0

        results = await asyncio.gather(pm.evaluate_exit(), pm.evaluate_exit())

        assert sum(r is not None for r in results) == 1
        assert len(exchange.sells) == 1

    @pytest.mark.asyncio
    async def test_position_snapshot_is_frozen(self):
        pm, _, _ = _manager()
        position = await pm.try_enter("BTC/USDT")
        with pytest.raises(AttributeError):
            position.highest_price = 1_000.0
        assert position.to_dict()["status"] == "open"


# ── Cancellation ─────────────────────────────────────────────────────────


class TestCancelledCaller:
    @pytest.mark.asyncio
    async def test_cancelled_entry_still_records_buy(self):
        pm, exchange, _ = _manager()
        exchange.order_delay = 0.2

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pm.try_enter("BTC/USDT"), timeout=0.05)
        assert pm.has_pending_orders

        await pm.settle()

        assert exchange.buys == [("BTC/USDT", 9.5)]
        assert pm.state is PositionState.OPEN
        assert pm.position.amount == pytest.approx(9.5)
        assert not pm.has_pending_orders

    @pytest.mark.asyncio
    async def test_cancelled_exit_still_clears_position(self):
        pm, exchange, _ = _manager()
        await pm.try_enter("BTC/USDT")
        exchange.order_delay = 0.2
        exchange.bid = 98.0

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pm.evaluate_exit(), timeout=0.05)

        # A new evaluation waits for the pending sell instead of selling again
        assert await pm.evaluate_exit() is None
        assert exchange.sells == [("BTC/USDT", 9.5)]
        assert pm.state is PositionState.NO_POSITION

    @pytest.mark.asyncio
    async def test_entry_waits_for_pending_buy(self):
        pm, exchange, _ = _manager()
        exchange.order_delay = 0.2

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pm.try_enter("BTC/USDT"), timeout=0.05)

        assert await pm.try_enter("ETH/USDT") is None
        assert len(exchange.buys) == 1
        assert pm.position.symbol == "BTC/USDT"

    @pytest.mark.asyncio
    async def test_new_high_not_written_after_concurrent_close(self):
        pm, exchange, market = _manager()
        await pm.try_enter("BTC/USDT")

        closed = asyncio.Event()
        original_fetch = market.fetch_candles

        async def _fetch_then_close(symbol, interval, limit=100):
            candles = await original_fetch(symbol, interval, limit)
            # The position is closed by someone else while candles load
            pm._position = None
            closed.set()
            return candles

        market.fetch_candles = _fetch_then_close
        exchange.bid = 103.0

        assert await pm.evaluate_exit() is None
        assert closed.is_set()
        assert pm.position is None
