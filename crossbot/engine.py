"""CrossBot — Trading engine (orchestration loop).

Connects candidate selection, the position manager and the exchange into
a single polling loop. Each tick either looks for an entry (no position)
or evaluates the exit of the open position, never both.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from crossbot.api.routers import (
    record_decision,
    update_bot_status,
    update_candidates,
)
from crossbot.config import Config
from crossbot.position_manager import PositionManager, PositionState
from crossbot.strategy.selector import CandidateSelector

logger = logging.getLogger("crossbot")


class TradingEngine:
    """Orchestrates one decision cycle per call.

    Args:
        config: Application configuration.
        market_data: A ``BinanceMarketData`` (or compatible duck-type / mock).
        exchange: An ``ExchangeClient`` (or compatible duck-type / mock).
    """

    def __init__(self, config: Config, market_data, exchange) -> None:
        self._config = config
        self._selector = CandidateSelector(
            market_data,
            config.symbols,
            interval=config.candle_interval,
            limit=config.candle_limit,
            params=config.signal_params,
        )
        self._positions = PositionManager(config, exchange, market_data)
        self._tick_lock = asyncio.Lock()
        self._running: bool = False
        self._cycle_count: int = 0

    @property
    def positions(self) -> PositionManager:
        return self._positions

    @property
    def selector(self) -> CandidateSelector:
        return self._selector

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the trading loop until stopped.

        The first cycle runs immediately and later cycles start every
        *poll_interval* seconds, counted from the start of the previous
        cycle. Every cycle is bounded by ``tick_timeout_seconds``; errors
        and timeouts are logged and the loop carries on. Orders left
        running by a timed-out cycle are awaited before returning.

        Args:
            poll_interval: Seconds between cycles. Defaults to config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.poll_interval_seconds

        self._running = True
        update_bot_status(
            mode=self._config.exchange_environment,
            running=True,
            symbols=list(self._config.symbols),
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self.run_once(),
                    timeout=self._config.tick_timeout_seconds,
                )
                logger.info("Cycle %d: %s", cycle, result.get("action", "unknown"))
            except asyncio.TimeoutError:
                logger.warning(
                    "Cycle %d timed out after %gs — abandoned",
                    cycle, self._config.tick_timeout_seconds,
                )
                result = {"action": "error", "reason": "timeout"}
                self._record_error("timeout")
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                result = {"action": "error", "reason": str(exc)}
                self._record_error(str(exc))
            results.append(result)

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Fixed period measured from the start of the tick; the sleep
            # is interruptible and checks _running every second.
            remaining = poll_interval - (time.monotonic() - started)
            while remaining > 0 and self._running:
                await asyncio.sleep(min(1.0, remaining))
                remaining = poll_interval - (time.monotonic() - started)

        self._running = False
        await self._positions.settle()
        position = self._positions.position
        update_bot_status(
            running=False,
            state=self._positions.state.value,
            position=position.to_dict() if position else None,
        )
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one trading cycle.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "no_candidate"}``
        - ``{"action": "skipped", "reason": "entry_conditions", ...}``
        - ``{"action": "entered", ...}``
        - ``{"action": "holding", ...}``
        - ``{"action": "exited", ...}``

        Exchange and data errors propagate to the caller; ``run`` turns
        them into an error result.
        """
        async with self._tick_lock:
            if utc_now is None:
                utc_now = datetime.now(timezone.utc)
            self._cycle_count += 1
            await self._positions.settle()

            if self._positions.state is PositionState.NO_POSITION:
                result = await self._entry_cycle()
            else:
                result = await self._exit_cycle()

            self._publish(result, utc_now)
            return result

    async def _entry_cycle(self) -> dict:
        candidate = await self._selector.select()
        update_candidates([
            {"symbol": c.symbol, "trend_strength": c.trend_strength}
            for c in self._selector.last_candidates
        ])
        if candidate is None:
            logger.info("No golden-cross candidate this cycle")
            return {"action": "skipped", "reason": "no_candidate"}

        position = await self._positions.try_enter(candidate.symbol)
        if position is None:
            return {
                "action": "skipped",
                "reason": "entry_conditions",
                "symbol": candidate.symbol,
            }

        return {
            "action": "entered",
            "symbol": position.symbol,
            "entry": position.entry_price,
            "amount": position.amount,
            "trend_strength": candidate.trend_strength,
        }

    async def _exit_cycle(self) -> dict:
        exit_result = await self._positions.evaluate_exit()
        if exit_result is None:
            position = self._positions.position
            check = self._positions.last_check
            return {
                "action": "holding",
                "symbol": position.symbol if position else None,
                "price": check.current_price if check else None,
                "pnl_pct": check.pnl_pct if check else None,
                "drawdown_pct": check.drawdown_pct if check else None,
            }

        return {
            "action": "exited",
            "symbol": exit_result.symbol,
            "reason": exit_result.reason.value,
            "entry": exit_result.entry_price,
            "exit": exit_result.exit_price,
            "amount": exit_result.amount,
            "pnl_pct": exit_result.pnl_pct,
        }

    # ── Status reporting ─────────────────────────────────────────────────

    def _publish(self, result: dict, utc_now: datetime) -> None:
        position = self._positions.position
        fields = {
            "cycle_count": self._cycle_count,
            "last_cycle_at": utc_now.isoformat(),
            "last_action": result.get("action"),
            "state": self._positions.state.value,
            "position": position.to_dict() if position else None,
            "pnl_pct": result.get("pnl_pct") if position else None,
            "drawdown_pct": result.get("drawdown_pct") if position else None,
        }
        if result["action"] == "entered":
            fields["last_entry_at"] = utc_now.isoformat()
        elif result["action"] == "exited":
            fields["last_exit_at"] = utc_now.isoformat()
            fields["last_exit_reason"] = result["reason"]
        update_bot_status(**fields)
        record_decision({**result, "evaluated_at": utc_now.isoformat()})

    def _record_error(self, reason: str) -> None:
        update_bot_status(last_action="error", last_error=reason)
        record_decision({
            "action": "error",
            "reason": reason,
            "evaluated_at": datetime.now(timezone.utc).isoformat(),
        })
