"""Internal API routers — read-only /status and /signals endpoints.

No business logic. The engine pushes its state here each cycle; the
endpoints only read it back.
"""

import logging
from typing import Optional

from fastapi import APIRouter

logger = logging.getLogger("crossbot")
router = APIRouter()

# ── Shared state (written by the engine) ─────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "symbols": [],
    "state": "no_position",
    "position": None,
    "pnl_pct": None,
    "drawdown_pct": None,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
    "last_action": None,
    "last_error": None,
    "last_entry_at": None,
    "last_exit_at": None,
    "last_exit_reason": None,
}

_bot_status: dict = {**_DEFAULT_STATUS}
_last_candidates: list[dict] = []
_signal_history: list[dict] = []  # Recent decisions (max 50 entries)


def reset_state() -> None:
    """Restore the default status (used at startup and by tests)."""
    _bot_status.clear()
    _bot_status.update(_DEFAULT_STATUS)
    _last_candidates.clear()
    _signal_history.clear()


def update_bot_status(**fields) -> None:
    """Update individual fields of the status dict."""
    _bot_status.update(fields)


def update_candidates(candidates: list[dict]) -> None:
    """Store the ranked candidates of the last scan."""
    _last_candidates[:] = candidates


def record_decision(entry: Optional[dict]) -> None:
    """Append a cycle decision to the history log."""
    if not entry:
        return
    _signal_history.append(entry)
    if len(_signal_history) > 50:
        del _signal_history[0]


def get_bot_status() -> dict:
    return dict(_bot_status)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the bot status and open position, if any."""
    return get_bot_status()


@router.get("/signals/candidates")
async def get_candidates():
    """Return the ranked candidates from the most recent scan."""
    return {"candidates": list(_last_candidates)}


@router.get("/signals/history")
async def get_signal_history():
    """Return recent cycle decisions, newest first."""
    return {"history": list(reversed(_signal_history))}
