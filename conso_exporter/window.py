"""Query window resolution.

The first run after startup looks back a full year, later daily runs only
re-fetch the last week so that late provider corrections are picked up.
"""

from datetime import date, timedelta
from typing import List, Optional

from conso_exporter.models import TimeWindow

FIRST_RUN_DAYS = 365
RECURRING_DAYS = 7
LOAD_CURVE_CHUNK_DAYS = 7


def resolve_window(
    is_first_run: bool,
    today: Optional[date] = None,
    first_run_days: int = FIRST_RUN_DAYS,
    recurring_days: int = RECURRING_DAYS,
) -> TimeWindow:
    """Compute the date range to query.

    Args:
        is_first_run: True for the startup run
        today: Reference date (default: today's local date)
        first_run_days: Lookback for the first run
        recurring_days: Lookback for scheduled runs

    Returns:
        TimeWindow ending today
    """
    if today is None:
        today = date.today()

    lookback = first_run_days if is_first_run else recurring_days
    return TimeWindow(start=today - timedelta(days=lookback), end=today)


def split_window(window: TimeWindow, days: int = LOAD_CURVE_CHUNK_DAYS) -> List[TimeWindow]:
    """Partition a window into consecutive sub-windows of at most `days` days.

    The last sub-window is clipped to the window end.

    Example:
        >>> w = TimeWindow(date(2024, 1, 1), date(2024, 1, 21))
        >>> [str(s) for s in split_window(w)]
        ['2024-01-01 -> 2024-01-08', '2024-01-08 -> 2024-01-15', '2024-01-15 -> 2024-01-21']
    """
    if days <= 0:
        raise ValueError(f"Sub-window length must be positive, got {days}")

    chunks = []
    start = window.start
    while start < window.end:
        end = min(start + timedelta(days=days), window.end)
        chunks.append(TimeWindow(start=start, end=end))
        start = end
    return chunks
