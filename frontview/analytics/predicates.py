"""
Predicate Compiler
==================

Turns dashboard filters into a WHERE fragment with bound parameters.

WHY THIS FILE EXISTS
--------------------
Every analytics endpoint accepts the same filter bar payload:

    [{"field": "desk", "operator": "is any of", "values": ["EQ", "FX"]}, ...]

This module compiles that list ONCE per request into a Predicate that any
query builder can append to its own base WHERE clause.

SAFETY MODEL
------------
- Field names are validated (allow-list or identifier pattern) before any
  SQL is produced. A bad field is a ConfigurationError.
- Values are NEVER interpolated. Each value becomes a named bind parameter
  (`:f0_0`, `:f0_1`, ...). Predicate.inline() exists only for logs and for
  people reading queries; its literals have quotes doubled.

COMPOSITION
-----------
- one filter -> one parenthesised sub-expression
- OR only appears inside a single filter (the "any of" family)
- filters are joined with AND
- empty filter list -> Predicate("") whose clause() is ""

LENIENCY
--------
An unrecognised operator label compiles to equality on the first value and
logs a warning. Dashboards send free-text labels and some depend on this.

RELATED FILES
-------------
- frontview/analytics/query.py: Filter, Operator, OPERATOR_ALIASES
- frontview/analytics/security.py: Field validation
- frontview/tests/test_predicates.py: Operator-by-operator expectations
"""

import logging
import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from frontview.analytics.errors import ErrorCode, configuration_error
from frontview.analytics.model import TableConfig
from frontview.analytics.query import Filter, Operator
from frontview.analytics.security import validate_field, validate_identifier

logger = logging.getLogger(__name__)

_BIND_PATTERN = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def quote_literal(value: Any) -> str:
    """Single-quote a value, doubling embedded quotes."""
    return "'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class Predicate:
    """
    Compiled filter fragment.

    ATTRIBUTES:
        sql: Boolean expression with `:name` placeholders ("" when empty)
        params: Bind values keyed by placeholder name

    USAGE:
        predicate = compile_filters(filters, table_name="f_exposure")
        query = f"SELECT ... WHERE asOfDate = :snapshot{predicate.clause()}"
        params = {"snapshot": "2024-03-01", **predicate.params}
    """
    sql: str = ""
    params: Dict[str, Any] = dataclass_field(default_factory=dict)

    def __str__(self) -> str:
        return self.sql

    def __bool__(self) -> bool:
        return bool(self.sql)

    def clause(self) -> str:
        """Fragment to append after an existing WHERE condition."""
        if not self.sql:
            return ""
        return f" AND ({self.sql})"

    def inline(self) -> str:
        """SQL with every bound value rendered as a quoted literal."""
        def replace(match):
            name = match.group(1)
            if name not in self.params:
                return match.group(0)
            return quote_literal(self.params[name])

        return _BIND_PATTERN.sub(replace, self.sql)


EMPTY_PREDICATE = Predicate()


# =============================================================================
# COMPILATION
# =============================================================================

class _Binder:
    """Allocates parameter names for one filter."""

    def __init__(self, prefix: str, index: int):
        self.base = f"{prefix}{index}_"
        self.params: Dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"{self.base}{len(self.params)}"
        self.params[name] = value
        return f":{name}"


def _like_terms(field: str, values: Sequence[str], binder: _Binder,
                template: str, negate: bool, joiner: str) -> str:
    keyword = "NOT LIKE" if negate else "LIKE"
    terms = [f"{field} {keyword} {binder.bind(template.format(v))}" for v in values]
    return f" {joiner} ".join(terms)


def _membership(field: str, values: Sequence[str], binder: _Binder, negate: bool) -> str:
    placeholders = ", ".join(binder.bind(v) for v in values)
    keyword = "NOT IN" if negate else "IN"
    return f"{field} {keyword} ({placeholders})"


def _compile_one(item: Filter, binder: _Binder) -> str:
    field = item.field
    values = list(item.values)
    operator = Operator.lookup(item.operator)

    if operator is None:
        logger.warning(
            f"[PREDICATES] Unknown operator '{item.operator}' on '{field}', "
            f"falling back to equality on the first value"
        )
        return f"{field} = {binder.bind(values[0])}"

    if operator == Operator.EQUALS:
        if len(values) == 1:
            return f"{field} = {binder.bind(values[0])}"
        return _membership(field, values, binder, negate=False)

    if operator == Operator.NOT_EQUALS:
        if len(values) == 1:
            return f"{field} != {binder.bind(values[0])}"
        return _membership(field, values, binder, negate=True)

    if operator == Operator.ONE_OF:
        return _membership(field, values, binder, negate=False)

    if operator in (Operator.CONTAINS, Operator.ANY_OF):
        return _like_terms(field, values, binder, "%{}%", negate=False, joiner="OR")

    if operator in (Operator.NOT_CONTAINS, Operator.NONE_OF):
        return _like_terms(field, values, binder, "%{}%", negate=True, joiner="AND")

    if operator == Operator.ALL_OF:
        return _like_terms(field, values, binder, "%{}%", negate=False, joiner="AND")

    if operator == Operator.EXCLUDE_ANY_OF:
        return _like_terms(field, values, binder, "%{}%", negate=True, joiner="OR")

    if operator == Operator.STARTS_WITH:
        return _like_terms(field, values, binder, "{}%", negate=False, joiner="OR")

    if operator == Operator.ENDS_WITH:
        return _like_terms(field, values, binder, "%{}", negate=False, joiner="OR")

    if operator == Operator.LESS_THAN:
        return f"{field} < {binder.bind(values[0])}"

    if operator == Operator.GREATER_THAN:
        return f"{field} > {binder.bind(values[0])}"

    if operator == Operator.LESS_OR_EQUAL:
        return f"{field} <= {binder.bind(values[0])}"

    if operator == Operator.GREATER_OR_EQUAL:
        return f"{field} >= {binder.bind(values[0])}"

    # Operator.BETWEEN
    if len(values) < 2:
        raise configuration_error(
            ErrorCode.MISSING_VALUE,
            f"'between' on '{field}' needs two values",
            field_name=field,
            values=values,
        )
    return f"{field} BETWEEN {binder.bind(values[0])} AND {binder.bind(values[1])}"


def compile_filters(
    filters: Optional[Sequence[Filter]],
    table_name: Optional[str] = None,
    table_configs: Optional[Mapping[str, TableConfig]] = None,
    prefix: str = "f",
) -> Predicate:
    """
    Compile filters into a Predicate.

    PARAMETERS:
        filters: Filters from the request (None or [] -> empty predicate)
        table_name: When given, fields are checked against its allow-list
        table_configs: Per-table configuration (defaults to TABLE_CONFIGS)
        prefix: Bind-name prefix, distinct per predicate in one query

    Filters without values are skipped, like an untouched filter widget.

    EXAMPLES:
        >>> compile_filters([]).sql
        ''
        >>> compile_filters([Filter("desk", "is", ("EQ",))]).inline()
        "(desk = 'EQ')"
        >>> compile_filters([Filter("desk", "is any of", ("EQ", "FX"))]).inline()
        "(desk IN ('EQ', 'FX'))"
    """
    if not filters:
        return EMPTY_PREDICATE

    validate_identifier(prefix, kind="prefix")

    # Validate every field before producing any SQL
    for item in filters:
        if table_name is not None:
            validate_field(table_name, item.field, table_configs)
        else:
            validate_identifier(item.field)

    expressions: List[str] = []
    params: Dict[str, Any] = {}
    for index, item in enumerate(filters):
        if not item.values:
            continue
        binder = _Binder(prefix, index)
        expressions.append(f"({_compile_one(item, binder)})")
        params.update(binder.params)

    if not expressions:
        return EMPTY_PREDICATE
    return Predicate(sql=" AND ".join(expressions), params=params)
