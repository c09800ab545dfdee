"""
Time Series Aggregators
=======================

Line and area charts over snapshots (historical) and maturities (future).

HISTORICAL
----------
One point per snapshot up to a base date:

    SELECT [group,] date_col AS asOfDate, sum(field) AS value
    WHERE date_col <= :base_date
    GROUP BY [group,] date_col

The base date is resolved BACKWARD so "as of 2024-03-15" uses the last
snapshot on or before that day.

FUTURE
------
Run-off profile of one snapshot: the field bucketed by maturity month for
rows maturing after the from date, with a running total and the amount
still outstanding after each month:

    month      monthly   cumulative   remaining
    2024-04    100       100          250
    2024-05    150       250          100
    2024-06    100       350          0

With an explicit as-of date the snapshot is resolved FORWARD (first load on
or after that day). Without one, the latest snapshot is used.

Both aggregators coerce the field to a number (bad values count as zero)
and cache for 300 seconds.
"""

import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from frontview.analytics.cache import QueryCache, fingerprint
from frontview.analytics.dialect import SqlDialect
from frontview.analytics.model import (
    TableConfig,
    format_date_for_table,
    get_table_config,
    parse_date_from_table,
)
from frontview.analytics.predicates import compile_filters
from frontview.analytics.query import Filter
from frontview.analytics.security import validate_field, validate_identifier, validate_table
from frontview.analytics.snapshots import SnapshotResolver, parse_relative_date

logger = logging.getLogger(__name__)

SERIES_TTL_SECONDS = 300


@dataclass
class SeriesResult:
    """Chart payload: rows plus request/response metadata."""
    data: List[Dict[str, Any]]
    meta: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "meta": self.meta}


class _SeriesAggregator:
    def __init__(
        self,
        cache: QueryCache,
        resolver: SnapshotResolver,
        dialect: SqlDialect,
        table_configs: Optional[Mapping[str, TableConfig]] = None,
        ttl: int = SERIES_TTL_SECONDS,
    ):
        self.cache = cache
        self.resolver = resolver
        self.dialect = dialect
        self.table_configs = table_configs
        self.ttl = ttl

    def _validate(self, table: str, field: str, group_by: Optional[str]) -> TableConfig:
        validate_table(table)
        validate_field(table, field, self.table_configs)
        if group_by:
            validate_field(table, group_by, self.table_configs)
        config = get_table_config(table, self.table_configs)
        validate_identifier(config.date_column, kind="date column")
        return config


class HistoricalAggregator(_SeriesAggregator):
    """Sum of a field per snapshot (and per group) up to a base date."""

    async def compute(
        self,
        table: str,
        field: str,
        group_by: Optional[str] = None,
        as_of_date: Optional[str] = None,
        filters: Sequence[Filter] = (),
    ) -> SeriesResult:
        config = self._validate(table, field, group_by)
        predicate = compile_filters(filters, table, self.table_configs)

        target = parse_relative_date(as_of_date or "latest")
        base_date = await self.resolver.resolve_backward(target, table)

        date_column = config.date_column
        group_select = f"{group_by}, " if group_by else ""
        query = (
            f"SELECT {group_select}{date_column} AS asOfDate, "
            f"sum({self.dialect.to_number(field)}) AS value "
            f"FROM {table} "
            f"WHERE {date_column} <= :base_date{predicate.clause()} "
            f"GROUP BY {group_select}{date_column} "
            f"ORDER BY {group_select}{date_column}"
        )
        params = {"base_date": format_date_for_table(base_date, config), **predicate.params}
        cache_key = (
            f"historical:{table}:{field}:{group_by or 'none'}:{base_date}:"
            f"{fingerprint([f.to_dict() for f in filters])}"
        )

        rows = await self.cache.query(query, params, cache_key=cache_key, ttl=self.ttl)
        for row in rows:
            row["asOfDate"] = parse_date_from_table(row.get("asOfDate"))

        logger.info(f"[TABLES] Historical {table}.{field}: {len(rows)} points up to {base_date}")
        return SeriesResult(
            data=rows,
            meta={
                "table": table,
                "fieldName": field,
                "groupBy": group_by,
                "baseDate": base_date,
                "recordCount": len(rows),
            },
        )


class FutureAggregator(_SeriesAggregator):
    """Maturity run-off of one snapshot, bucketed by month."""

    async def compute(
        self,
        table: str,
        field: str,
        group_by: Optional[str] = None,
        as_of_date: Optional[str] = None,
        filters: Sequence[Filter] = (),
    ) -> SeriesResult:
        config = self._validate(table, field, group_by)
        maturity = validate_identifier(config.maturity_column, kind="maturity column")
        predicate = compile_filters(filters, table, self.table_configs)

        # "latest" (or nothing) means the newest snapshot, not the next one after today
        if as_of_date and as_of_date.strip().lower() != "latest":
            from_date = await self.resolver.resolve_forward(parse_relative_date(as_of_date), table)
        else:
            from_date = await self.resolver.resolve_backward(parse_relative_date("latest"), table)

        month = self.dialect.month_start(maturity)
        group_select = f", {group_by}" if group_by else ""
        group_order = f"{group_by}, " if group_by else ""
        partition = f"PARTITION BY {group_by}" if group_by else ""
        running = (
            f"sum(monthly_value) OVER ({partition} ORDER BY month_start "
            f"ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW)"
        )

        query = (
            f"WITH monthly_data AS ("
            f"SELECT {month} AS month_start{group_select}, "
            f"sum({self.dialect.to_number(field)}) AS monthly_value "
            f"FROM {table} "
            f"WHERE {config.date_column} = :snapshot AND {maturity} > :from_date{predicate.clause()} "
            f"GROUP BY {month}{group_select}"
            f") "
            f"SELECT month_start AS asOfDate{group_select}, monthly_value, "
            f"{running} AS cumulative_value, "
            f"sum(monthly_value) OVER ({partition}) - {running} AS remaining "
            f"FROM monthly_data "
            f"ORDER BY {group_order}month_start"
        )
        params = {
            "snapshot": format_date_for_table(from_date, config),
            "from_date": from_date,
            **predicate.params,
        }
        cache_key = (
            f"future:{table}:{field}:{group_by or 'none'}:{from_date}:"
            f"{fingerprint([f.to_dict() for f in filters])}"
        )

        rows = await self.cache.query(query, params, cache_key=cache_key, ttl=self.ttl)
        for row in rows:
            row["asOfDate"] = parse_date_from_table(row.get("asOfDate"))

        logger.info(f"[TABLES] Future {table}.{field}: {len(rows)} months from {from_date}")
        return SeriesResult(
            data=rows,
            meta={
                "table": table,
                "fieldName": field,
                "groupBy": group_by,
                "fromDate": from_date,
                "recordCount": len(rows),
            },
        )
