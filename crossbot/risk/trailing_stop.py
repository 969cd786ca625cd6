"""Trailing stop — price-only exit rules for the open position.

Rules:
  - Drawdown from the highest price since entry ≥ trailing threshold
    → take profit (trailing stop).
  - Loss from entry ≥ stop-loss threshold → stop loss.

Both are evaluated before any trend re-check. Nothing here mutates the
position; the caller decides when to commit the new high.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TREND_INVALIDATED = "trend_invalidated"


@dataclass(frozen=True)
class PriceCheck:
    """Outcome of one price-based exit evaluation."""

    current_price: float
    highest_price: float  # ratcheted high, including current_price
    pnl_pct: float
    drawdown_pct: float
    exit_reason: Optional[ExitReason] = None


def pnl_pct(entry_price: float, current_price: float) -> float:
    """Unrealised P&L as a percentage of the entry price."""
    return (current_price - entry_price) / entry_price * 100.0


def drawdown_pct(highest_price: float, current_price: float) -> float:
    """Decline from the highest price as a percentage of it."""
    if highest_price <= 0:
        return 0.0
    return (highest_price - current_price) / highest_price * 100.0


def evaluate_price_exit(
    entry_price: float,
    highest_price: float,
    current_price: float,
    trailing_drawdown_pct: float = 0.5,
    stop_loss_pct: float = 1.0,
) -> PriceCheck:
    """Evaluate the trailing-stop and stop-loss rules at *current_price*.

    The high is ratcheted first, so a new high never triggers the
    trailing rule on the same tick. When both rules fire, the loss is
    reported as a stop loss.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")

    pnl = pnl_pct(entry_price, current_price)
    highest = max(highest_price, current_price)
    drawdown = drawdown_pct(highest, current_price)

    reason: Optional[ExitReason] = None
    if pnl <= -stop_loss_pct:
        reason = ExitReason.STOP_LOSS
    elif drawdown >= trailing_drawdown_pct:
        reason = ExitReason.TAKE_PROFIT

    return PriceCheck(
        current_price=current_price,
        highest_price=highest,
        pnl_pct=pnl,
        drawdown_pct=drawdown,
        exit_reason=reason,
    )
