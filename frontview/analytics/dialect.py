"""
SQL Dialects
============

Engine-specific expression rendering for the analytical store.

WHY THIS FILE EXISTS
--------------------
The aggregators build the same query shapes for every engine, but a handful
of expressions differ:

    concern              clickhouse                         sqlite
    -------------------  ---------------------------------  -------------------------------
    numeric coercion     toFloat64OrZero(toString(x))       COALESCE(CAST(x AS REAL), 0)
    distinct count       countDistinct(x)                   COUNT(DISTINCT x)
    month bucket         toStartOfMonth(x)                  date(x, 'start of month')
    text coercion        toString(x)                        CAST(x AS TEXT)
    column listing       DESCRIBE TABLE t                   PRAGMA table_info(t)
    offset without limit OFFSET n                           LIMIT -1 OFFSET n

Production runs against ClickHouse. SQLite is used for local development
and the test suite. Everything else (bind parameters, window functions,
CTEs) is written once in portable SQL by the callers.

Numeric coercion is lenient: malformed values count as zero instead of
failing the query. Dashboards rely on that behavior.

RELATED FILES
-------------
- frontview/analytics/grouped.py: Uses aggregate()
- frontview/analytics/timeseries.py: Uses to_number() / month_start()
- frontview/analytics/tables.py: Uses describe_sql() / normalize_column()
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from frontview.analytics.errors import ErrorCode, configuration_error
from frontview.analytics.query import Aggregation


class SqlDialect(ABC):
    """
    Base dialect. Subclasses implement the engine-specific primitives.

    aggregate() is shared: it composes the primitives into the seven
    supported aggregations.
    """

    name = "base"

    @abstractmethod
    def to_number(self, expr: str) -> str:
        """Numeric coercion; malformed values become 0."""

    @abstractmethod
    def to_text(self, expr: str) -> str:
        """Text rendering of any value."""

    @abstractmethod
    def count_distinct(self, expr: str) -> str:
        """Number of distinct values."""

    @abstractmethod
    def safe_divide(self, numerator: str, denominator: str) -> str:
        """numerator / denominator, 0 when the denominator is 0."""

    @abstractmethod
    def month_start(self, expr: str) -> str:
        """First day of the value's month."""

    @abstractmethod
    def describe_sql(self, table_name: str) -> str:
        """Statement listing the table's columns."""

    @abstractmethod
    def normalize_column(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """One describe_sql() row as name/type/default_type/default_expression/comment."""

    def limit_offset(self, limit: Optional[int], offset: int = 0) -> str:
        """Trailing LIMIT/OFFSET clause (leading space), '' when unbounded."""
        clause = f" LIMIT {int(limit)}" if limit else ""
        if offset > 0:
            clause += f" OFFSET {int(offset)}"
        return clause

    def aggregate(
        self,
        aggregation: Aggregation,
        field: str,
        weight_field: Optional[str] = None,
    ) -> str:
        """
        Render one aggregate expression over an already-validated column.

        EXAMPLES (clickhouse):
            sum          -> sum(toFloat64OrZero(toString(amount)))
            countDistinct -> countDistinct(counterparty)
            weightedAvg  -> if(sum(w) = 0, 0, sum(v * w) / sum(w))
        """
        if aggregation == Aggregation.COUNT:
            return f"count({field})"
        if aggregation == Aggregation.COUNT_DISTINCT:
            return self.count_distinct(field)
        if aggregation == Aggregation.WEIGHTED_AVG:
            if not weight_field:
                raise configuration_error(
                    ErrorCode.MISSING_WEIGHT_FIELD,
                    f"weightedAvg on '{field}' has no weight field",
                    field_name="weightField",
                )
            value = self.to_number(field)
            weight = self.to_number(weight_field)
            return self.safe_divide(f"sum({value} * {weight})", f"sum({weight})")
        return f"{aggregation.value}({self.to_number(field)})"


class ClickHouseDialect(SqlDialect):
    name = "clickhouse"

    def to_number(self, expr: str) -> str:
        return f"toFloat64OrZero(toString({expr}))"

    def to_text(self, expr: str) -> str:
        return f"toString({expr})"

    def count_distinct(self, expr: str) -> str:
        return f"countDistinct({expr})"

    def safe_divide(self, numerator: str, denominator: str) -> str:
        return f"if({denominator} = 0, 0, {numerator} / {denominator})"

    def month_start(self, expr: str) -> str:
        return f"toStartOfMonth({expr})"

    def describe_sql(self, table_name: str) -> str:
        return f"DESCRIBE TABLE {table_name}"

    def normalize_column(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "name": row.get("name"),
            "type": row.get("type"),
            "default_type": row.get("default_type", ""),
            "default_expression": row.get("default_expression", ""),
            "comment": row.get("comment", ""),
        }


class SQLiteDialect(SqlDialect):
    name = "sqlite"

    def to_number(self, expr: str) -> str:
        return f"COALESCE(CAST({expr} AS REAL), 0)"

    def to_text(self, expr: str) -> str:
        return f"CAST({expr} AS TEXT)"

    def count_distinct(self, expr: str) -> str:
        return f"COUNT(DISTINCT {expr})"

    def safe_divide(self, numerator: str, denominator: str) -> str:
        return f"CASE WHEN {denominator} = 0 THEN 0 ELSE {numerator} / {denominator} END"

    def month_start(self, expr: str) -> str:
        return f"date({expr}, 'start of month')"

    def describe_sql(self, table_name: str) -> str:
        return f"PRAGMA table_info({table_name})"

    def limit_offset(self, limit: Optional[int], offset: int = 0) -> str:
        # SQLite only accepts OFFSET after a LIMIT; -1 means no limit
        if offset > 0:
            return f" LIMIT {int(limit) if limit else -1} OFFSET {int(offset)}"
        return f" LIMIT {int(limit)}" if limit else ""

    def normalize_column(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        default = row.get("dflt_value")
        return {
            "name": row.get("name"),
            "type": row.get("type"),
            "default_type": "DEFAULT" if default is not None else "",
            "default_expression": "" if default is None else str(default),
            "comment": "",
        }


DIALECTS: Dict[str, SqlDialect] = {
    "clickhouse": ClickHouseDialect(),
    "sqlite": SQLiteDialect(),
}


def get_dialect(name: str) -> SqlDialect:
    """Look up a dialect by its settings name."""
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise configuration_error(
            ErrorCode.UNKNOWN_DIALECT,
            f"Unknown SQL dialect '{name}'",
            field_name="ANALYTICS_DIALECT",
            suggestion=f"Use one of: {', '.join(sorted(DIALECTS))}",
        )
