"""Period-over-period arithmetic shared by the stat and grouped aggregators."""

from typing import Any, Tuple


def to_float(value: Any) -> float:
    """Rows may carry None, Decimal or numeric strings; missing means 0."""
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compute_change(current: float, previous: float) -> Tuple[float, float]:
    """
    Return (change, change_percent).

    change_percent is 0 when previous is 0, never inf or nan.

    EXAMPLES:
        >>> compute_change(150.0, 100.0)
        (50.0, 50.0)
        >>> compute_change(10.0, 0.0)
        (10.0, 0.0)
    """
    change = current - previous
    if previous == 0:
        return change, 0.0
    return change, (change / previous) * 100


def percentage_of(value: float, total: float) -> float:
    """value as a percentage of total; 0 when total is 0."""
    if total == 0:
        return 0.0
    return (value / total) * 100
