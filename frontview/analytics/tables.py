"""
Table Browser
=============

Raw row access for the data grid and the filter pickers.

WHAT:
    - fetch_page(): SELECT * page plus total COUNT(*), run concurrently;
      ordered by one column or a list of (column, direction) pairs
      ("latest trades first": [("tradeDate", "DESC"), ("id", "DESC")])
    - distinct_values(): values offered by a filter picker
    - describe(): column names and types

WHY:
    The grid and the filter bar need the same filter semantics as the
    aggregate cards, and the same caching, but none of the aggregation.

CACHE POLICY:
    rows / counts     60s     table-data:{t}:{limit|all}:{offset}:{hash}
    distinct values   3600s   distinct:{t}:{column}
    column listing    300s    table-desc:{t}
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from frontview.analytics.cache import QueryCache, fingerprint
from frontview.analytics.concurrency import gather_or_cancel
from frontview.analytics.deltas import to_float
from frontview.analytics.dialect import SqlDialect
from frontview.analytics.model import TableConfig, format_date_for_table, get_table_config
from frontview.analytics.predicates import compile_filters
from frontview.analytics.query import Filter
from frontview.analytics.security import (
    DISTINCT_VALUES_LIMIT,
    validate_field,
    validate_order_direction,
    validate_page,
    validate_table,
)

logger = logging.getLogger(__name__)

ROWS_TTL_SECONDS = 60
DISTINCT_TTL_SECONDS = 3600
DESCRIBE_TTL_SECONDS = 300

OrderBy = Union[None, str, Sequence[Tuple[str, str]]]


class TableBrowser:
    """
    Paged, filtered access to raw table rows.

    USAGE:
        browser = TableBrowser(cache, dialect)
        page = await browser.fetch_page("f_exposure", limit=50, offset=100)
        page["meta"]["hasMore"]
    """

    def __init__(
        self,
        cache: QueryCache,
        dialect: SqlDialect,
        table_configs: Optional[Mapping[str, TableConfig]] = None,
    ):
        self.cache = cache
        self.dialect = dialect
        self.table_configs = table_configs

    async def fetch_page(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        as_of_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: OrderBy = None,
        order_direction: str = "ASC",
    ) -> Dict[str, Any]:
        """
        Return {"data": rows, "meta": {...}} for one page.

        `order_by` is a column (sorted by `order_direction`) or a sequence of
        (column, direction) pairs applied left to right.
        """
        validate_table(table)
        validate_page(limit, offset)
        terms = self._order_terms(table, order_by, order_direction)
        predicate = compile_filters(filters, table, self.table_configs)

        config = get_table_config(table, self.table_configs)
        where = f"1=1{predicate.clause()}"
        params = dict(predicate.params)
        if as_of_date:
            where += f" AND {config.date_column} = :as_of_date"
            params["as_of_date"] = format_date_for_table(as_of_date, config)

        order_clause = ""
        if terms:
            order_clause = " ORDER BY " + ", ".join(f"{column} {direction}" for column, direction in terms)
        query = f"SELECT * FROM {table} WHERE {where}{order_clause}{self.dialect.limit_offset(limit, offset)}"
        count_query = f"SELECT COUNT(*) AS total FROM {table} WHERE {where}"

        page_hash = fingerprint({
            "filters": [f.to_dict() for f in filters],
            "asOfDate": as_of_date,
            "orderBy": [list(term) for term in terms],
        })
        data_key = f"table-data:{table}:{limit or 'all'}:{offset}:{page_hash}"
        count_key = f"table-count:{table}:{page_hash}"

        rows, count_rows = await gather_or_cancel(
            self.cache.query(query, params, cache_key=data_key, ttl=ROWS_TTL_SECONDS),
            self.cache.query(count_query, params, cache_key=count_key, ttl=ROWS_TTL_SECONDS),
        )
        total = int(to_float(count_rows[0].get("total"))) if count_rows else 0
        logger.info(f"[TABLES] {table}: {len(rows)} rows at offset {offset} of {total}")

        return {
            "data": rows,
            "meta": {
                "tableName": table,
                "totalRecords": total,
                "recordCount": len(rows),
                "offset": offset,
                "limit": limit,
                "hasMore": (offset + len(rows)) < total if limit else False,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }

    def _order_terms(self, table: str, order_by: OrderBy, order_direction: str) -> List[Tuple[str, str]]:
        order_direction = validate_order_direction(order_direction)
        if not order_by:
            return []
        if isinstance(order_by, str):
            order_by = [(order_by, order_direction)]
        terms = []
        for column, direction in order_by:
            validate_field(table, column, self.table_configs)
            terms.append((column, validate_order_direction(direction)))
        return terms

    async def distinct_values(self, table: str, column: str) -> List[Any]:
        """Sorted distinct non-empty values of a column (at most 1000)."""
        validate_table(table)
        validate_field(table, column, self.table_configs)
        query = (
            f"SELECT DISTINCT {column} AS value FROM {table} "
            f"WHERE {column} IS NOT NULL AND {self.dialect.to_text(column)} != '' "
            f"ORDER BY {column} LIMIT {DISTINCT_VALUES_LIMIT}"
        )
        rows = await self.cache.query(
            query, cache_key=f"distinct:{table}:{column}", ttl=DISTINCT_TTL_SECONDS
        )
        return [row.get("value") for row in rows]

    async def describe(self, table: str) -> List[Dict[str, Any]]:
        """Column listing normalised to name/type/default_type/default_expression/comment."""
        validate_table(table)
        rows = await self.cache.query(
            self.dialect.describe_sql(table),
            cache_key=f"table-desc:{table}",
            ttl=DESCRIBE_TTL_SECONDS,
        )
        return [self.dialect.normalize_column(row) for row in rows]
