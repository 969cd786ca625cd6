"""Position manager — owns the single active position and its lifecycle.

States::

    NO_POSITION ──try_enter()──▶ OPEN ──evaluate_exit()──▶ NO_POSITION

The position object is frozen; the only in-place change during its life
is the ``highest_price`` ratchet, applied by swapping in a new value at
the end of a completed exit evaluation. Order submissions are serialized
behind one lock so two entries (double spend) or two exits (double sell)
can never be in flight together. Each order runs shielded from tick
cancellation, so an order that reached the exchange is always reflected
in the position.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from crossbot.broker.errors import ExecutionError
from crossbot.config import Config
from crossbot.risk.position_sizer import calculate_amount
from crossbot.risk.trailing_stop import ExitReason, PriceCheck, evaluate_price_exit
from crossbot.strategy.signals import read_cross_state

logger = logging.getLogger("crossbot.position")


class PositionState(str, Enum):
    NO_POSITION = "no_position"
    OPEN = "open"


@dataclass(frozen=True)
class Position:
    """The one open position."""

    symbol: str
    entry_price: float
    highest_price: float
    amount: float
    opened_at: str = ""
    status: PositionState = PositionState.OPEN

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class ExitResult:
    """What happened when the position was closed."""

    symbol: str
    reason: ExitReason
    entry_price: float
    exit_price: float
    amount: float
    pnl_pct: float
    drawdown_pct: float
    order_id: str


_REASON_LABELS = {
    ExitReason.TAKE_PROFIT: "take-profit",
    ExitReason.STOP_LOSS: "stop-loss",
    ExitReason.TREND_INVALIDATED: "trend invalidated",
}


class PositionManager:
    """Drives entry and exit for a strictly single-position trader.

    Args:
        config: Application configuration (thresholds, candle window).
        exchange: An ``ExchangeClient`` (or compatible duck-type / mock).
        market_data: A ``BinanceMarketData`` (or compatible duck-type).
    """

    def __init__(self, config: Config, exchange, market_data) -> None:
        self._config = config
        self._exchange = exchange
        self._market_data = market_data
        self._position: Optional[Position] = None
        self._order_lock = asyncio.Lock()
        self._exit_checks_since_entry: int = 0
        self._order_tasks: set[asyncio.Task] = set()
        self.last_check: Optional[PriceCheck] = None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def state(self) -> PositionState:
        if self._position is None:
            return PositionState.NO_POSITION
        return PositionState.OPEN

    @property
    def position(self) -> Optional[Position]:
        """Read-only snapshot of the open position (frozen), or ``None``."""
        return self._position

    @property
    def has_pending_orders(self) -> bool:
        return bool(self._order_tasks)

    # ── Order steps ──────────────────────────────────────────────────────

    async def _run_order_step(self, step):
        """Run *step* (lock, order, state commit) as its own shielded task.

        Cancelling the caller abandons the wait but not the step: the
        order still completes and its result is written to the position,
        and the order lock stays held until it has been.
        """
        task = asyncio.ensure_future(step)
        self._order_tasks.add(task)
        task.add_done_callback(self._order_tasks.discard)
        return await asyncio.shield(task)

    async def settle(self) -> None:
        """Wait for order steps left running by abandoned ticks."""
        while self._order_tasks:
            pending = set(self._order_tasks)
            logger.info("Waiting for %d in-flight order step(s)", len(pending))
            await asyncio.wait(pending)

    # ── Entry ────────────────────────────────────────────────────────────

    async def try_enter(self, symbol: str) -> Optional[Position]:
        """Open a position on *symbol* with a market buy.

        Returns the new ``Position``, or ``None`` when entry is skipped
        (already open, balance below minimum, unusable price or size).
        Raises ``ExecutionError`` when an exchange call fails; state is
        unchanged in that case. Cancelling the caller does not cancel a
        buy that is already under way.
        """
        await self.settle()
        if self._position is not None:
            logger.debug("Entry on %s ignored — position already open", symbol)
            return None
        return await self._run_order_step(self._enter(symbol))

    async def _enter(self, symbol: str) -> Optional[Position]:
        async with self._order_lock:
            if self._position is not None:
                return None

            balances = await self._exchange.fetch_balance()
            quote_balance = balances.get(self._config.quote_currency, 0.0)
            if quote_balance < self._config.min_quote_balance:
                logger.info(
                    "Skip entry on %s — %s balance %.2f below minimum %.2f",
                    symbol, self._config.quote_currency,
                    quote_balance, self._config.min_quote_balance,
                )
                return None

            ticker = await self._exchange.fetch_ticker(symbol)
            entry_price = ticker.ask
            if entry_price is None or entry_price <= 0:
                logger.info("Skip entry on %s — no ask price", symbol)
                return None

            try:
                raw_amount = calculate_amount(
                    quote_balance, entry_price, self._config.allocation_pct
                )
            except ValueError as exc:
                logger.info("Skip entry on %s — sizing failed: %s", symbol, exc)
                return None

            amount = await self._exchange.round_to_tradable_quantity(symbol, raw_amount)
            if amount <= 0:
                logger.info(
                    "Skip entry on %s — %.8f rounds below the tradable minimum",
                    symbol, raw_amount,
                )
                return None

            await self._exchange.submit_market_buy(symbol, amount)

            self._position = Position(
                symbol=symbol,
                entry_price=entry_price,
                highest_price=entry_price,
                amount=amount,
                opened_at=datetime.now(timezone.utc).isoformat(),
            )
            self._exit_checks_since_entry = 0
            self.last_check = None

        logger.info("Entered %s @ %s (amount %s)", symbol, entry_price, amount)
        return self._position

    # ── Exit ─────────────────────────────────────────────────────────────

    async def evaluate_exit(self) -> Optional[ExitResult]:
        """Run one exit evaluation on the open position.

        Order: price rules (trailing drawdown, stop loss) first, then the
        trend re-check. Returns an ``ExitResult`` when the position was
        closed, else ``None``. The new high is only stored once the
        evaluation has completed without error.
        """
        await self.settle()
        position = self._position
        if position is None:
            return None

        ticker = await self._exchange.fetch_ticker(position.symbol)
        current_price = ticker.bid
        if current_price is None or current_price <= 0:
            raise ExecutionError(f"No bid price for {position.symbol}")

        check = evaluate_price_exit(
            entry_price=position.entry_price,
            highest_price=position.highest_price,
            current_price=current_price,
            trailing_drawdown_pct=self._config.trailing_drawdown_pct,
            stop_loss_pct=self._config.stop_loss_pct,
        )
        self.last_check = check

        if check.exit_reason is not None:
            return await self._run_order_step(
                self._close(position, check.exit_reason, check)
            )

        if self._exit_checks_since_entry >= self._config.trend_check_grace_ticks:
            candles = await self._market_data.fetch_candles(
                position.symbol,
                self._config.candle_interval,
                self._config.candle_limit,
            )
            state = read_cross_state(
                candles,
                self._config.fast_ema_period,
                self._config.slow_ema_period,
            )
            if state is None:
                logger.warning(
                    "Not enough candles to re-check trend on %s (%d)",
                    position.symbol, len(candles),
                )
            elif state.is_bearish:
                return await self._run_order_step(
                    self._close(position, ExitReason.TREND_INVALIDATED, check)
                )

        if self._position is not position:
            return None
        if check.highest_price > position.highest_price:
            self._position = replace(position, highest_price=check.highest_price)
        self._exit_checks_since_entry += 1
        return None

    async def _close(
        self,
        position: Position,
        reason: ExitReason,
        check: PriceCheck,
    ) -> Optional[ExitResult]:
        async with self._order_lock:
            if self._position is not position:
                # Closed or replaced while we were waiting for the lock
                return None

            amount = await self._exchange.round_to_tradable_quantity(
                position.symbol, position.amount
            )
            if amount <= 0:
                raise ExecutionError(
                    f"Position amount {position.amount} on {position.symbol} "
                    "is not tradable"
                )
            order = await self._exchange.submit_market_sell(position.symbol, amount)
            self._position = None

        logger.info(
            "Exited %s (%s) @ %s — pnl %.2f%%, drawdown %.2f%%",
            position.symbol, _REASON_LABELS[reason], check.current_price,
            check.pnl_pct, check.drawdown_pct,
        )
        return ExitResult(
            symbol=position.symbol,
            reason=reason,
            entry_price=position.entry_price,
            exit_price=check.current_price,
            amount=amount,
            pnl_pct=check.pnl_pct,
            drawdown_pct=check.drawdown_pct,
            order_id=order.order_id,
        )
