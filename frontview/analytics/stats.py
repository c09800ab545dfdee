"""
Stat Aggregator
===============

Headline stat cards: one number per measure, compared with an earlier date.

Measures may span several tables. They are grouped by table; each table
resolves its own snapshots (tables load on different schedules) and runs
one single-row query per date containing every measure of that table.
Tables are processed concurrently, and so are the two dates of a table.

Columns are aliased positionally (m0, m1, ...) and mapped back to the
measure keys afterwards, so keys never reach the SQL. Keys must be unique
across the request because the result is one flat mapping.

    measures ──► by table ──► resolve current/comparison (backward)
                          └─► SELECT agg1 AS m0, agg2 AS m1 ... (x2, gathered)
                          └─► {k: {current, previous, change, changePercent}}
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

from frontview.analytics.cache import QueryCache, fingerprint
from frontview.analytics.concurrency import gather_or_cancel
from frontview.analytics.deltas import compute_change, to_float
from frontview.analytics.errors import ErrorCode, configuration_error
from frontview.analytics.dialect import SqlDialect
from frontview.analytics.model import TableConfig, format_date_for_table, get_table_config
from frontview.analytics.predicates import compile_filters
from frontview.analytics.query import Filter, MeasureSpec
from frontview.analytics.security import validate_field, validate_table
from frontview.analytics.snapshots import SnapshotResolver, parse_relative_date

logger = logging.getLogger(__name__)

STATS_TTL_SECONDS = 300


@dataclass
class StatResult:
    current: float
    previous: float
    change: float
    change_percent: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "changePercent": self.change_percent,
        }


class StatAggregator:
    """
    Computes stat cards.

    USAGE:
        aggregator = StatAggregator(cache, resolver, dialect)
        results = await aggregator.compute(
            [MeasureSpec(field="fundingAmount", table_name="f_exposure", key="funding")],
            period="-1m",
        )
        results["funding"].change_percent
    """

    def __init__(
        self,
        cache: QueryCache,
        resolver: SnapshotResolver,
        dialect: SqlDialect,
        table_configs: Optional[Mapping[str, TableConfig]] = None,
        ttl: int = STATS_TTL_SECONDS,
    ):
        self.cache = cache
        self.resolver = resolver
        self.dialect = dialect
        self.table_configs = table_configs
        self.ttl = ttl

    def _validate(self, measures: Sequence[MeasureSpec]) -> Dict[str, List[MeasureSpec]]:
        by_table: Dict[str, List[MeasureSpec]] = {}
        seen_keys = set()
        for measure in measures:
            measure.validate()
            table = validate_table(measure.table_name)
            validate_field(table, measure.field, self.table_configs)
            if measure.weight_field:
                validate_field(table, measure.weight_field, self.table_configs)
            if measure.result_key in seen_keys:
                raise configuration_error(
                    ErrorCode.DUPLICATE_KEY,
                    f"Duplicate measure key '{measure.result_key}'",
                    field_name=measure.result_key,
                    suggestion="Give each measure a distinct key",
                )
            seen_keys.add(measure.result_key)
            by_table.setdefault(table, []).append(measure)
        return by_table

    async def compute(
        self,
        measures: Sequence[MeasureSpec],
        period: str = "-1d",
        as_of_date: Optional[str] = None,
        filters: Sequence[Filter] = (),
    ) -> Dict[str, StatResult]:
        """Return {measure key: StatResult} for every measure."""
        by_table = self._validate(measures)
        # Compile per table up front so bad filter fields fail before any query
        predicates = {
            table: compile_filters(filters, table, self.table_configs)
            for table in by_table
        }

        current_target = parse_relative_date(as_of_date or "latest")
        comparison_target = parse_relative_date(period, base=date.fromisoformat(current_target))
        filter_hash = fingerprint([f.to_dict() for f in filters])

        per_table = await gather_or_cancel(*[
            self._compute_table(table, table_measures, predicates[table],
                                current_target, comparison_target, filter_hash)
            for table, table_measures in by_table.items()
        ])

        results: Dict[str, StatResult] = {}
        for table_results in per_table:
            results.update(table_results)
        return results

    async def _compute_table(
        self,
        table: str,
        measures: List[MeasureSpec],
        predicate,
        current_target: str,
        comparison_target: str,
        filter_hash: str,
    ) -> Dict[str, StatResult]:
        config = get_table_config(table, self.table_configs)
        current_snapshot, comparison_snapshot = await gather_or_cancel(
            self.resolver.resolve_backward(current_target, table),
            self.resolver.resolve_backward(comparison_target, table),
        )

        aliases = [f"m{index}" for index in range(len(measures))]
        aggregates = ", ".join(
            f"{self.dialect.aggregate(m.aggregation, m.field, m.weight_field)} AS {alias}"
            for m, alias in zip(measures, aliases)
        )
        query = (
            f"SELECT {aggregates} FROM {table} "
            f"WHERE {config.date_column} = :snapshot{predicate.clause()}"
        )
        measure_hash = fingerprint(query)

        def run(snapshot: str):
            params = {"snapshot": format_date_for_table(snapshot, config), **predicate.params}
            key = f"stats:{table}:{snapshot}:{measure_hash}:{filter_hash}"
            return self.cache.query(query, params, cache_key=key, ttl=self.ttl)

        current_rows, comparison_rows = await gather_or_cancel(run(current_snapshot), run(comparison_snapshot))
        logger.info(
            f"[STATS] {table}: {len(measures)} measures at {current_snapshot} vs {comparison_snapshot}"
        )

        current_row: Dict[str, Any] = current_rows[0] if current_rows else {}
        comparison_row: Dict[str, Any] = comparison_rows[0] if comparison_rows else {}

        results = {}
        for measure, alias in zip(measures, aliases):
            current = to_float(current_row.get(alias))
            previous = to_float(comparison_row.get(alias))
            change, change_percent = compute_change(current, previous)
            results[measure.result_key] = StatResult(current, previous, change, change_percent)
        return results
