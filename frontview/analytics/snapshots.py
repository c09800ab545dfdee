"""
Snapshot Resolution
===================

Aligns a requested "as of" date to a snapshot that actually exists.

WHY THIS FILE EXISTS
--------------------
Tables are loaded as dated snapshots, but not every calendar day has one
(weekends, holidays, late loads). A card asking for "2024-02-15" must be
answered from the snapshot the user would expect:

    historical views  -> resolve BACKWARD: greatest snapshot <= target
    future views      -> resolve FORWARD:  least snapshot >= target

Given snapshots [2024-01-01, 2024-02-01, 2024-03-01] and target 2024-02-15,
backward gives 2024-02-01 and forward gives 2024-03-01.

HOW
---
One MAX/MIN aggregate per resolution, routed through the read-through cache
with a short TTL (new snapshots land during the day). When no snapshot
exists on the requested side, the target itself is returned and a warning
is logged; callers then simply get empty results for that date.

Dates are ISO "YYYY-MM-DD" on both sides of this API. Tables storing a
compact "YYYYMMDD" string are converted on the way in and out.

RELATED FILES
-------------
- frontview/analytics/model.py: Per-table date column and encoding
- frontview/analytics/grouped.py, stats.py, timeseries.py: Callers
"""

import calendar
import logging
import re
from datetime import date, timedelta
from typing import Mapping, Optional

from frontview.analytics.cache import QueryCache
from frontview.analytics.model import (
    TableConfig,
    format_date_for_table,
    get_table_config,
    parse_date_from_table,
)
from frontview.analytics.security import validate_identifier, validate_table

logger = logging.getLogger(__name__)

SNAPSHOT_TTL_SECONDS = 300

_RELATIVE_PATTERN = re.compile(r"^-(\d+)([dwmy])$")
_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# =============================================================================
# RELATIVE DATES
# =============================================================================

def _shift_months(base: date, months: int) -> date:
    """Move base back by `months`, clamping the day to the month's end."""
    index = base.year * 12 + (base.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_relative_date(token: Optional[str], base: Optional[date] = None) -> str:
    """
    Turn a period token into an ISO date.

    Accepted tokens: "latest", "-Nd", "-Nw", "-Nm", "-Ny" (e.g. -1d, -1w,
    -1m, -6m, -1y) or an ISO date. Anything else resolves to the base date.

    EXAMPLES:
        >>> parse_relative_date("-1m", date(2024, 3, 31))
        '2024-02-29'
        >>> parse_relative_date("-1y", date(2024, 3, 1))
        '2023-03-01'
        >>> parse_relative_date("2024-01-15")
        '2024-01-15'
    """
    base = base or date.today()
    text = (token or "latest").strip().lower()

    if text == "latest":
        return base.isoformat()

    if _ISO_PATTERN.match(text):
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError:
            logger.warning(f"[SNAPSHOTS] Invalid date '{token}', using {base.isoformat()}")
            return base.isoformat()

    match = _RELATIVE_PATTERN.match(text)
    if not match:
        logger.warning(f"[SNAPSHOTS] Unrecognised period '{token}', using {base.isoformat()}")
        return base.isoformat()

    amount, unit = int(match.group(1)), match.group(2)
    if unit == "d":
        return (base - timedelta(days=amount)).isoformat()
    if unit == "w":
        return (base - timedelta(weeks=amount)).isoformat()
    if unit == "m":
        return _shift_months(base, amount).isoformat()
    return _shift_months(base, amount * 12).isoformat()


# =============================================================================
# RESOLVER
# =============================================================================

class SnapshotResolver:
    """
    Finds the nearest available snapshot of a table.

    PARAMETERS:
        cache: Read-through cache used for the MIN/MAX lookups
        table_configs: Per-table date column / encoding map
        ttl: Seconds a resolution stays cached

    USAGE:
        resolver = SnapshotResolver(cache, TABLE_CONFIGS)
        await resolver.resolve_backward("2024-02-15", "f_exposure")  # '2024-02-01'
    """

    def __init__(
        self,
        cache: QueryCache,
        table_configs: Optional[Mapping[str, TableConfig]] = None,
        ttl: int = SNAPSHOT_TTL_SECONDS,
    ):
        self.cache = cache
        self.table_configs = table_configs
        self.ttl = ttl

    async def resolve_backward(self, target: str, table_name: str, date_column: Optional[str] = None) -> str:
        """Greatest snapshot <= target, or target when there is none."""
        return await self._resolve("backward", target, table_name, date_column)

    async def resolve_forward(self, target: str, table_name: str, date_column: Optional[str] = None) -> str:
        """Least snapshot >= target, or target when there is none."""
        return await self._resolve("forward", target, table_name, date_column)

    async def _resolve(self, direction: str, target: str, table_name: str, date_column: Optional[str]) -> str:
        validate_table(table_name)
        config = get_table_config(table_name, self.table_configs)
        column = validate_identifier(date_column or config.date_column, kind="date column")

        aggregate, comparison = ("max", "<=") if direction == "backward" else ("min", ">=")
        query = (
            f"SELECT {aggregate}({column}) AS snapshot, count(*) AS matches "
            f"FROM {table_name} WHERE {column} {comparison} :target"
        )
        params = {"target": format_date_for_table(target, config)}
        cache_key = f"closest_date:{direction}:{table_name}:{column}:{target}"

        rows = await self.cache.query(query, params, cache_key=cache_key, ttl=self.ttl)

        row = rows[0] if rows else {}
        resolved = parse_date_from_table(row.get("snapshot")) if row.get("matches") else None
        if not resolved:
            logger.warning(
                f"[SNAPSHOTS] No snapshot {direction} of {target} in {table_name}.{column}, using target"
            )
            return target

        if resolved != target:
            logger.info(f"[SNAPSHOTS] {table_name}: {target} resolved {direction} to {resolved}")
        return resolved
