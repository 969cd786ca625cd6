"""Position sizing — pure math, no I/O.

Calculates the base-currency amount to buy from the available quote
balance, the allocation percentage and the entry price.
"""


def calculate_amount(
    quote_balance: float,
    entry_price: float,
    allocation_pct: float = 95.0,
) -> float:
    """Calculate position size in base units.

    Formula::

        spend  = quote_balance × (allocation_pct / 100)
        amount = spend / entry_price

    Args:
        quote_balance: Free quote-currency balance (e.g. 1_000.0 USDT).
        entry_price: Best ask for the symbol.
        allocation_pct: Share of the balance to spend (e.g. 95.0).

    Returns:
        Position size in base units (always positive).

    Raises:
        ValueError: If any input is non-positive or the allocation
            exceeds 100 %.
    """
    if quote_balance <= 0:
        raise ValueError(f"quote_balance must be positive, got {quote_balance}")
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    if not 0 < allocation_pct <= 100:
        raise ValueError(f"allocation_pct must be in (0, 100], got {allocation_pct}")

    spend = quote_balance * (allocation_pct / 100.0)
    return spend / entry_price
