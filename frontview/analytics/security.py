"""
Identifier validation for generated SQL.

Values always travel as bind parameters. Identifiers (tables, columns,
aliases, order columns) cannot be bound, so every identifier that reaches a
query string passes through one of the validators below first.

Rules:
    - identifiers match ^[A-Za-z0-9_]+$
    - when a table has a field allow-list, columns must be in it
    - grouped results may only be ordered by their own output columns
    - order direction is ASC or DESC
"""

import re
from typing import Mapping, Optional

from frontview.analytics.errors import ErrorCode, configuration_error
from frontview.analytics.model import TableConfig, get_table_config

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

# Output columns of the grouped query
GROUPED_ORDER_COLUMNS = frozenset({"current", "result1", "result2", "result3", "groupValue"})

ORDER_DIRECTIONS = ("ASC", "DESC")

MAX_PAGE_LIMIT = 10000
DISTINCT_VALUES_LIMIT = 1000


def validate_identifier(name: str, kind: str = "field") -> str:
    """Return name unchanged if it is identifier-shaped, else raise."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise configuration_error(
            ErrorCode.INVALID_IDENTIFIER,
            f"Invalid {kind} name: {name!r}",
            field_name=kind,
            suggestion="Use letters, digits and underscores only",
        )
    return name


def validate_table(table_name: str) -> str:
    return validate_identifier(table_name, kind="table")


def validate_field(
    table_name: str,
    field: str,
    table_configs: Optional[Mapping[str, TableConfig]] = None,
) -> str:
    """
    Validate a column of table_name.

    The shape check always applies. The allow-list check applies only when
    the table's configuration declares one; otherwise unknown columns are
    reported by the store at execution time.
    """
    validate_identifier(field)
    config = get_table_config(table_name, table_configs)
    if config.fields is not None and field not in config.fields:
        raise configuration_error(
            ErrorCode.UNKNOWN_FIELD,
            f"Unknown field '{field}' for table '{table_name}'",
            field_name=field,
            suggestion=f"Allowed fields: {', '.join(sorted(config.fields))}",
        )
    return field


def validate_order_direction(direction: Optional[str]) -> str:
    normalized = (direction or "DESC").upper()
    if normalized not in ORDER_DIRECTIONS:
        raise configuration_error(
            ErrorCode.INVALID_ORDER,
            f"Invalid order direction: {direction!r}",
            field_name="orderDirection",
            suggestion="Use ASC or DESC",
        )
    return normalized


def validate_grouped_order(order_by: Optional[str]) -> str:
    column = order_by or "current"
    if column not in GROUPED_ORDER_COLUMNS:
        raise configuration_error(
            ErrorCode.INVALID_ORDER,
            f"Invalid orderBy column: {order_by!r}",
            field_name="orderBy",
            suggestion=f"Use one of: {', '.join(sorted(GROUPED_ORDER_COLUMNS))}",
        )
    return column


def validate_page(limit: Optional[int], offset: int) -> None:
    """Page bounds for raw table browsing; limit None means unbounded."""
    if limit is not None and not 1 <= limit <= MAX_PAGE_LIMIT:
        raise configuration_error(
            ErrorCode.OUT_OF_RANGE,
            f"Limit must be between 1 and {MAX_PAGE_LIMIT}",
            field_name="limit",
            limit=limit,
        )
    if offset < 0:
        raise configuration_error(
            ErrorCode.OUT_OF_RANGE,
            "Offset must be non-negative",
            field_name="offset",
            offset=offset,
        )
