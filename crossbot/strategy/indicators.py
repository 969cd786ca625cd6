"""Technical indicators — EMA and simple averages. Pure functions, no I/O."""

from collections.abc import Sequence


def calculate_ema(values: Sequence[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Uses the incremental EMA form:
        ``EMA_today = EMA_yesterday + k × (value − EMA_yesterday)``
    where ``k = 2 / (period + 1)``.

    The first EMA value is seeded with the SMA of the first *period*
    values, so the returned series has ``len(values) - period + 1``
    entries; index 0 lines up with ``values[period - 1]``.

    Raises ``ValueError`` if *period* is not positive or fewer than
    *period* values are provided.
    """
    if period <= 0:
        raise ValueError(f"EMA period must be positive, got {period}")
    if len(values) < period:
        raise ValueError(
            f"Need at least {period} values for EMA({period}), "
            f"got {len(values)}"
        )

    k = 2.0 / (period + 1)

    # Seed: SMA of first *period* values
    ema: list[float] = [sum(values[:period]) / period]

    for value in values[period:]:
        prev = ema[-1]
        ema.append(prev + k * (value - prev))

    return ema


def simple_average(values: Sequence[float]) -> float:
    """Arithmetic mean of *values*.

    Raises ``ValueError`` on an empty sequence.
    """
    if not values:
        raise ValueError("Cannot average an empty sequence")
    return sum(values) / len(values)
