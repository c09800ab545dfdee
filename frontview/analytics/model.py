"""
Table Model Definition
======================

Static per-table configuration for the analytical store.

This model defines WHERE things live in each table (which column carries
the snapshot date, how that date is encoded, which columns may be filtered
or grouped), not HOW queries are built.

WHY THIS FILE EXISTS
--------------------
Tables in the store are append/replace-by-snapshot: every row belongs to
exactly one dated snapshot. Most tables keep that date in a Date column
called `asOfDate`, but the risk tables use a compact `YYYYMMDD` String
column called `as_of_date`. The snapshot resolver and every aggregator need
to know which is which, and must never guess at runtime.

The mapping is supplied at process start (see app state construction) and
is treated as immutable afterwards.

RELATED FILES
-------------
- frontview/analytics/snapshots.py: Uses date_column / date_encoding
- frontview/analytics/security.py: Uses fields for allow-list validation
- frontview/analytics/timeseries.py: Uses maturity_column
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


class DateEncoding(Enum):
    """
    How a table stores its snapshot date.

    DATE:   native Date column, compared as "2024-03-01"
    STRING: compact String column, compared as "20240301"
    """
    DATE = "date"
    STRING = "string"


@dataclass(frozen=True)
class TableConfig:
    """
    Configuration for one table.

    PARAMETERS:
        date_column: Column identifying the snapshot a row belongs to
        date_encoding: How date_column values are stored
        maturity_column: Date column bucketed by the future aggregator
        fields: Optional allow-list of columns usable in filters, group-by
            and measures. None means any identifier-shaped name is accepted
            and the store itself reports unknown columns.
    """
    date_column: str = "asOfDate"
    date_encoding: DateEncoding = DateEncoding.DATE
    maturity_column: str = "maturityDt"
    fields: Optional[FrozenSet[str]] = None


DEFAULT_TABLE_CONFIG = TableConfig()

TABLE_CONFIGS: Dict[str, TableConfig] = {
    # as_of_date is a String column holding values like "20260220"
    "risk_mv": TableConfig(date_column="as_of_date", date_encoding=DateEncoding.STRING),
    "risk": TableConfig(date_column="as_of_date", date_encoding=DateEncoding.STRING),
}


def get_table_config(
    table_name: str,
    table_configs: Optional[Mapping[str, TableConfig]] = None,
) -> TableConfig:
    """Return the table's configuration, or the default one."""
    configs = TABLE_CONFIGS if table_configs is None else table_configs
    return configs.get(table_name, DEFAULT_TABLE_CONFIG)


def format_date_for_table(iso_date: str, config: TableConfig) -> str:
    """
    Encode an ISO date for comparison against the table's date column.

    EXAMPLES:
        >>> format_date_for_table("2026-02-20", TABLE_CONFIGS["risk_mv"])
        '20260220'
        >>> format_date_for_table("2026-02-20", DEFAULT_TABLE_CONFIG)
        '2026-02-20'
    """
    if config.date_encoding == DateEncoding.STRING:
        return iso_date.replace("-", "")
    return iso_date


def parse_date_from_table(value: Any) -> Optional[str]:
    """
    Normalise a date value read back from the store to ISO "YYYY-MM-DD".

    Accepts date/datetime objects, ISO strings (with or without a time part)
    and compact "YYYYMMDD" strings. Returns None for empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value)
    if len(text) == 8 and text.isdigit():
        return f"{text[:4]}-{text[4:6]}-{text[6:]}"
    return text[:10]
