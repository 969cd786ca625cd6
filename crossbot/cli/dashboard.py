"""CLI dashboard — prints bot status to the console."""


def print_status(status: dict) -> str:
    """Format and print the current bot status.

    Args:
        status: Dict shaped like the ``/status`` endpoint payload.

    Returns:
        The formatted string (also printed to stdout).
    """
    mode = status.get("mode", "unknown")
    running = status.get("running", False)
    symbols = ", ".join(status.get("symbols") or []) or "N/A"
    position = status.get("position")
    pnl = status.get("pnl_pct")
    drawdown = status.get("drawdown_pct")
    cycles = status.get("cycle_count", 0)
    last_action = status.get("last_action") or "N/A"

    if position:
        pos_str = (
            f"{position['symbol']} {position['amount']} "
            f"@ {position['entry_price']} (high {position['highest_price']})"
        )
    else:
        pos_str = "none"
    pnl_str = f"{pnl:.2f}%" if pnl is not None else "N/A"
    dd_str = f"{drawdown:.2f}%" if drawdown is not None else "N/A"

    lines = [
        "──────────────── CrossBot Status ─────────────────",
        f"  Mode:            {mode}",
        f"  Running:         {running}",
        f"  Symbols:         {symbols}",
        f"  Position:        {pos_str}",
        f"  PnL:             {pnl_str}",
        f"  Drawdown:        {dd_str}",
        f"  Cycles:          {cycles}",
        f"  Last action:     {last_action}",
        "──────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
