"""
Grouped Aggregation Engine
==========================

Breakdown cards: "exposure by desk, today vs. one month ago".

WHY THIS FILE EXISTS
--------------------
A grouped card shows, per group value, a main aggregate for two snapshots
plus up to three auxiliary aggregates (distinct counterparties, summed
notional, ...). The card has room for twelve rows, so long tails are folded
into a single "Others" row. This module builds the queries, runs both
periods concurrently through the cache and does the post-processing.

PIPELINE
--------
    validate (measure, fields, order)    -> ConfigurationError, no query yet
        │
    compile filters once                 -> Predicate
        │
    build the group-by queries           -> current and comparison snapshot
        │
    gather_or_cancel(current, comparison) -> through QueryCache (TTL 300s)
        │
    consolidate (top 11 + Others)        -> only for small limits
        │
    change / changePercent / percentageOfTotal

CONSOLIDATION POLICY
--------------------
When the requested limit is <= 12 the current-period query fetches the 100
largest groups, ordered by `current` descending whatever the requested
order, so the top 11 are the global top 11. If the CURRENT period has more
than 11 groups, those 11 are kept and everything else is folded into
"Others". The requested orderBy/orderDirection is then applied to the kept
rows in Python; Others always comes last. Top-11 membership is decided by
the current period only: a comparison-period group lands in Others iff it
is not one of the current top 11, so both periods' Others cover the same
set of groups.

Larger limits are a plain ranked list: ORDER BY the requested column, LIMIT
the requested count.

A limited query also returns `sum(...) OVER ()` window totals of `current`
and of every slot, taken over ALL groups before the LIMIT. Others is
"total minus kept", so groups beyond the 100 fetched still count, and
percentageOfTotal uses the full grand total: kept rows plus Others add up
to 100%. The comparison query is never limited, so every kept group finds
its previous value.

RELATED FILES
-------------
- frontview/analytics/query.py: GroupMeasureSpec
- frontview/analytics/snapshots.py: compute_for_period() resolution
- frontview/routers/analytics.py: POST /api/grouped-stats
"""

import logging
from dataclasses import dataclass, field as dataclass_field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from frontview.analytics.cache import QueryCache, fingerprint
from frontview.analytics.concurrency import gather_or_cancel
from frontview.analytics.deltas import compute_change, percentage_of, to_float
from frontview.analytics.dialect import SqlDialect
from frontview.analytics.model import TableConfig, format_date_for_table, get_table_config
from frontview.analytics.predicates import Predicate, compile_filters
from frontview.analytics.query import Filter, GroupMeasureSpec
from frontview.analytics.security import (
    validate_field,
    validate_grouped_order,
    validate_identifier,
    validate_order_direction,
    validate_table,
)
from frontview.analytics.snapshots import SnapshotResolver, parse_relative_date

logger = logging.getLogger(__name__)

OTHERS_LABEL = "Others"
TOP_N = 11
SMALL_LIMIT_THRESHOLD = 12
CONSOLIDATION_FETCH_LIMIT = 100
GROUPED_TTL_SECONDS = 300


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class GroupedResult:
    """One row of a grouped breakdown."""
    group_value: Any
    current: float
    previous: float
    change: float
    change_percent: float
    result1: float
    result2: float
    result3: Optional[float] = None
    percentage_of_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "groupValue": self.group_value,
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "changePercent": self.change_percent,
            "result1": self.result1,
            "result2": self.result2,
            "percentageOfTotal": self.percentage_of_total,
        }
        if self.result3 is not None:
            data["result3"] = self.result3
        return data


@dataclass
class GroupedReport:
    """compute_for_period() output: rows plus the snapshots actually used."""
    rows: List[GroupedResult]
    current_snapshot: str
    comparison_snapshot: str
    consolidated: bool = False
    meta: Dict[str, Any] = dataclass_field(default_factory=dict)


# =============================================================================
# QUERY BUILDING
# =============================================================================

def effective_limit(limit: int) -> int:
    """Small limits fetch a wider set so the tail can be folded into Others."""
    if limit <= SMALL_LIMIT_THRESHOLD:
        return CONSOLIDATION_FETCH_LIMIT
    return limit


def validate_grouped_request(
    measure: GroupMeasureSpec,
    group_by: str,
    table_configs: Optional[Mapping[str, TableConfig]] = None,
) -> Tuple[str, str, str]:
    """
    Run every configuration check for a grouped request.

    Returns (date_column, order_by, order_direction). Raises
    ConfigurationError before anything touches the store.
    """
    measure.validate()
    table = validate_table(measure.table_name)
    validate_field(table, measure.field, table_configs)
    validate_field(table, group_by, table_configs)
    if measure.weight_field:
        validate_field(table, measure.weight_field, table_configs)
    for _, slot in measure.slots():
        validate_field(table, slot.field, table_configs)
        if slot.weight_field:
            validate_field(table, slot.weight_field, table_configs)

    config = get_table_config(table, table_configs)
    date_column = validate_identifier(measure.as_of_date_field or config.date_column, kind="date column")
    order_by = validate_grouped_order(measure.order_by)
    if order_by == "result3" and measure.result3 is None:
        order_by = "current"
    order_direction = validate_order_direction(measure.order_direction)
    return date_column, order_by, order_direction


def build_grouped_query(
    measure: GroupMeasureSpec,
    group_by: str,
    dialect: SqlDialect,
    date_column: str,
    predicate: Predicate,
    order_by: str = "current",
    order_direction: str = "DESC",
    limit: Optional[int] = None,
) -> str:
    """
    Group-by query for one snapshot (bound as :snapshot).

    With a `limit`, window columns carry the sum over EVERY group of
    `current` (grandTotal) and of each slot (result1Total, ...), computed
    before the LIMIT applies. Identifiers must already be validated
    (validate_grouped_request).
    """
    current = dialect.aggregate(measure.aggregation, measure.field, measure.weight_field)
    selects = [f"{group_by} AS groupValue", f"{current} AS current"]
    totals = [f"sum({current}) OVER () AS grandTotal"]
    for name, slot in measure.slots():
        expr = dialect.aggregate(slot.aggregation, slot.field, slot.weight_field)
        selects.append(f"{expr} AS {name}")
        totals.append(f"sum({expr}) OVER () AS {name}Total")
    if limit:
        selects.extend(totals)

    return (
        f"SELECT {', '.join(selects)} "
        f"FROM {measure.table_name} "
        f"WHERE {date_column} = :snapshot{predicate.clause()} "
        f"GROUP BY {group_by} "
        f"ORDER BY {order_by} {order_direction}"
        f"{dialect.limit_offset(limit)}"
    )


# =============================================================================
# ENGINE
# =============================================================================

class GroupedAggregationEngine:
    """
    Computes grouped two-period breakdowns.

    PARAMETERS:
        cache: Read-through cache
        resolver: Used by compute_for_period() only
        dialect: SQL dialect of the analytical store
        table_configs: Per-table configuration
        ttl: Seconds grouped results stay cached
    """

    def __init__(
        self,
        cache: QueryCache,
        resolver: SnapshotResolver,
        dialect: SqlDialect,
        table_configs: Optional[Mapping[str, TableConfig]] = None,
        ttl: int = GROUPED_TTL_SECONDS,
    ):
        self.cache = cache
        self.resolver = resolver
        self.dialect = dialect
        self.table_configs = table_configs
        self.ttl = ttl

    async def compute_grouped(
        self,
        measure: GroupMeasureSpec,
        group_by: str,
        current_snapshot: str,
        comparison_snapshot: str,
        filters: Sequence[Filter] = (),
    ) -> List[GroupedResult]:
        """
        Grouped breakdown of `measure` by `group_by` for two snapshots.

        PARAMETERS:
            measure: Main aggregate, auxiliary slots, ordering and limit
            group_by: Column to group on
            current_snapshot: ISO date of the period being displayed
            comparison_snapshot: ISO date it is compared against
            filters: Dashboard filters

        RETURNS:
            Rows in display order; [] when nothing matches.
        """
        rows, _ = await self._compute(measure, group_by, current_snapshot, comparison_snapshot, filters)
        return rows

    async def compute_for_period(
        self,
        measure: GroupMeasureSpec,
        group_by: str,
        period: str,
        as_of_date: Optional[str] = None,
        filters: Sequence[Filter] = (),
    ) -> GroupedReport:
        """
        Resolve the displayed date and the period token to snapshots, then
        compute the breakdown.

        EXAMPLE:
            await engine.compute_for_period(measure, "desk", "-1m", "2024-03-15")
            # current: latest snapshot <= 2024-03-15
            # comparison: latest snapshot <= 2024-02-15
        """
        date_column, _, _ = validate_grouped_request(measure, group_by, self.table_configs)

        current_target = parse_relative_date(as_of_date or "latest")
        comparison_target = parse_relative_date(period, base=date.fromisoformat(current_target))

        current_snapshot, comparison_snapshot = await gather_or_cancel(
            self.resolver.resolve_backward(current_target, measure.table_name, date_column),
            self.resolver.resolve_backward(comparison_target, measure.table_name, date_column),
        )
        rows, consolidated = await self._compute(
            measure, group_by, current_snapshot, comparison_snapshot, filters
        )
        return GroupedReport(
            rows=rows,
            current_snapshot=current_snapshot,
            comparison_snapshot=comparison_snapshot,
            consolidated=consolidated,
            meta={
                "table": measure.table_name,
                "groupBy": group_by,
                "period": period,
                "currentDate": current_snapshot,
                "comparisonDate": comparison_snapshot,
                "consolidated": consolidated,
                "recordCount": len(rows),
            },
        )

    async def _compute(
        self,
        measure: GroupMeasureSpec,
        group_by: str,
        current_snapshot: str,
        comparison_snapshot: str,
        filters: Sequence[Filter],
    ) -> Tuple[List[GroupedResult], bool]:
        date_column, order_by, order_direction = validate_grouped_request(
            measure, group_by, self.table_configs
        )
        predicate = compile_filters(filters, measure.table_name, self.table_configs)

        if measure.limit <= SMALL_LIMIT_THRESHOLD:
            # Rank by size so the fetched window holds the global top groups
            current_query = build_grouped_query(
                measure, group_by, self.dialect, date_column, predicate,
                limit=effective_limit(measure.limit),
            )
        else:
            current_query = build_grouped_query(
                measure, group_by, self.dialect, date_column, predicate,
                order_by, order_direction, effective_limit(measure.limit),
            )
        comparison_query = build_grouped_query(measure, group_by, self.dialect, date_column, predicate)

        config = get_table_config(measure.table_name, self.table_configs)
        filter_hash = fingerprint([f.to_dict() for f in filters])

        def run(query: str, snapshot: str):
            params = {"snapshot": format_date_for_table(snapshot, config), **predicate.params}
            key = f"grouped-stats:{measure.table_name}:{group_by}:{snapshot}:{fingerprint(query)}:{filter_hash}"
            return self.cache.query(query, params, cache_key=key, ttl=self.ttl)

        current_rows, comparison_rows = await gather_or_cancel(
            run(current_query, current_snapshot),
            run(comparison_query, comparison_snapshot),
        )
        logger.info(
            f"[GROUPED] {measure.table_name} by {group_by}: {len(current_rows)} groups at {current_snapshot}, "
            f"{len(comparison_rows)} at {comparison_snapshot}"
        )
        return merge_periods(measure, current_rows, comparison_rows, order_by, order_direction)


# =============================================================================
# POST-PROCESSING
# =============================================================================

def merge_periods(
    measure: GroupMeasureSpec,
    current_rows: List[Dict[str, Any]],
    comparison_rows: List[Dict[str, Any]],
    order_by: str = "current",
    order_direction: str = "DESC",
) -> Tuple[List[GroupedResult], bool]:
    """
    Combine both periods' rows into GroupedResults.

    For small limits the top 11 of `current_rows` by current are picked
    here and then put in (order_by, order_direction) order. Larger limits
    keep the query's order. Window totals (grandTotal, result1Total, ...),
    when present, stand for every group including those not fetched;
    otherwise the totals are summed over `current_rows`.

    Returns (rows, consolidated). Pure function over the raw query rows.
    """
    if not current_rows:
        return [], False

    slot_names = [name for name, _ in measure.slots()]
    has_result3 = "result3" in slot_names

    previous_by_group: Dict[Any, float] = {}
    for row in comparison_rows:
        previous_by_group.setdefault(row.get("groupValue"), to_float(row.get("current")))

    first = current_rows[0]

    def column_total(column: str, total_column: str) -> float:
        if total_column in first:
            return to_float(first.get(total_column))
        return sum(to_float(row.get(column)) for row in current_rows)

    total_current = column_total("current", "grandTotal")

    small_limit = measure.limit <= SMALL_LIMIT_THRESHOLD
    consolidate = small_limit and len(current_rows) > TOP_N
    if small_limit:
        ranked = sorted(current_rows, key=lambda r: to_float(r.get("current")), reverse=True)
        kept = order_rows(ranked[:TOP_N], order_by, order_direction)
    else:
        kept = current_rows

    results = []
    for row in kept:
        results.append(_build_row(
            group_value=row.get("groupValue"),
            current=to_float(row.get("current")),
            previous=previous_by_group.get(row.get("groupValue"), 0.0),
            result1=to_float(row.get("result1")),
            result2=to_float(row.get("result2")),
            result3=to_float(row.get("result3")) if has_result3 else None,
            total=total_current,
        ))

    if consolidate:
        kept_groups = {row.get("groupValue") for row in kept}
        others_previous = sum(
            to_float(row.get("current"))
            for row in comparison_rows
            if row.get("groupValue") not in kept_groups
        )

        def rest(column: str) -> float:
            return column_total(column, f"{column}Total") - sum(to_float(row.get(column)) for row in kept)

        results.append(_build_row(
            group_value=OTHERS_LABEL,
            current=total_current - sum(to_float(row.get("current")) for row in kept),
            previous=others_previous,
            result1=rest("result1"),
            result2=rest("result2"),
            result3=rest("result3") if has_result3 else None,
            total=total_current,
        ))
        logger.info(f"[GROUPED] Folded every group outside the top {TOP_N} into '{OTHERS_LABEL}'")

    return results, consolidate


def order_rows(rows: List[Dict[str, Any]], order_by: str, order_direction: str) -> List[Dict[str, Any]]:
    """Sort raw group rows the way ORDER BY {order_by} {order_direction} would."""
    if order_by == "groupValue":
        def key(row):
            value = row.get("groupValue")
            return (value is None, "" if value is None else value)
    else:
        def key(row):
            return to_float(row.get(order_by))
    return sorted(rows, key=key, reverse=order_direction == "DESC")


def _build_row(group_value, current, previous, result1, result2, result3, total) -> GroupedResult:
    change, change_percent = compute_change(current, previous)
    return GroupedResult(
        group_value=group_value,
        current=current,
        previous=previous,
        change=change,
        change_percent=change_percent,
        result1=result1,
        result2=result2,
        result3=result3,
        percentage_of_total=percentage_of(current, total),
    )
