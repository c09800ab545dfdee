"""
Analytics Query Model
=====================

Request-scoped value types consumed by the aggregators.

WHY THIS FILE EXISTS
--------------------
Stat cards, grouped breakdowns and time series all describe WHAT to compute
the same way: a list of filters plus one or more measures. Keeping those
descriptions here (and out of the HTTP schemas) lets the engine be called
from routers, scripts and tests alike.

COMPONENTS
----------
- Aggregation: sum | count | avg | min | max | countDistinct | weightedAvg
- Operator: canonical filter operators plus the UI labels that map to them
- Filter: {field, operator, values}
- ResultSlot: one auxiliary aggregate computed in the same group-by pass
- MeasureSpec: one aggregate column
- GroupMeasureSpec: MeasureSpec + result1..result3 + ordering + limit

All of these are frozen: they are inputs, never mutated by the engine.

RELATED FILES
-------------
- frontview/analytics/predicates.py: Compiles Filter lists
- frontview/analytics/dialect.py: Renders aggregates
- frontview/analytics/grouped.py: Consumes GroupMeasureSpec
- frontview/schemas.py: HTTP payloads converted into these types
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from frontview.analytics.errors import ErrorCode, configuration_error


# =============================================================================
# ENUMS
# =============================================================================

class Aggregation(Enum):
    """
    Aggregate functions a measure can use.

    NUMERIC aggregations coerce their source column to a number (malformed
    values count as zero). COUNT and COUNT_DISTINCT work on raw values.
    WEIGHTED_AVG needs a weight field: sum(value * weight) / sum(weight).
    """
    SUM = "sum"
    COUNT = "count"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT_DISTINCT = "countDistinct"
    WEIGHTED_AVG = "weightedAvg"

    @classmethod
    def parse(cls, value) -> "Aggregation":
        """Accept an Aggregation or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise configuration_error(
                ErrorCode.UNKNOWN_AGGREGATION,
                f"Unknown aggregation '{value}'",
                field_name="aggregation",
                suggestion=f"Use one of: {', '.join(a.value for a in cls)}",
            )

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_AGGREGATIONS


NUMERIC_AGGREGATIONS: FrozenSet[Aggregation] = frozenset({
    Aggregation.SUM,
    Aggregation.AVG,
    Aggregation.MIN,
    Aggregation.MAX,
})


class Operator(Enum):
    """
    Canonical filter operators.

    The dashboard filter widgets send human labels ("is any of",
    "include all of", "before", ...). OPERATOR_ALIASES maps every label the
    widgets use onto one of these.
    """
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    ONE_OF = "one_of"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    ALL_OF = "all_of"
    ANY_OF = "any_of"
    NONE_OF = "none_of"
    EXCLUDE_ANY_OF = "exclude_any_of"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    LESS_THAN = "less_than"
    GREATER_THAN = "greater_than"
    LESS_OR_EQUAL = "less_or_equal"
    GREATER_OR_EQUAL = "greater_or_equal"
    BETWEEN = "between"

    @classmethod
    def lookup(cls, label: str) -> Optional["Operator"]:
        """Resolve a UI label or canonical name; None when unknown."""
        if label is None:
            return None
        key = str(label).strip().lower()
        if key in OPERATOR_ALIASES:
            return OPERATOR_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            return None


OPERATOR_ALIASES: Dict[str, Operator] = {
    "is": Operator.EQUALS,
    "=": Operator.EQUALS,
    "equals": Operator.EQUALS,
    "is not": Operator.NOT_EQUALS,
    "!=": Operator.NOT_EQUALS,
    "not equals": Operator.NOT_EQUALS,
    "is any of": Operator.ONE_OF,
    "in": Operator.ONE_OF,
    "one of": Operator.ONE_OF,
    "include": Operator.CONTAINS,
    "contains": Operator.CONTAINS,
    "do not include": Operator.NOT_CONTAINS,
    "does not contain": Operator.NOT_CONTAINS,
    "include all of": Operator.ALL_OF,
    "include any of": Operator.ANY_OF,
    "exclude all of": Operator.NONE_OF,
    "exclude if any of": Operator.EXCLUDE_ANY_OF,
    "starts with": Operator.STARTS_WITH,
    "ends with": Operator.ENDS_WITH,
    "before": Operator.LESS_THAN,
    "<": Operator.LESS_THAN,
    "is less than": Operator.LESS_THAN,
    "after": Operator.GREATER_THAN,
    ">": Operator.GREATER_THAN,
    "is greater than": Operator.GREATER_THAN,
    "<=": Operator.LESS_OR_EQUAL,
    ">=": Operator.GREATER_OR_EQUAL,
    "is between": Operator.BETWEEN,
}


# =============================================================================
# FILTERS
# =============================================================================

@dataclass(frozen=True)
class Filter:
    """
    One filter condition from a dashboard filter bar.

    PARAMETERS:
        field: Column name (validated against the table allow-list later)
        operator: UI label or canonical Operator value, kept as sent so the
            compiler can log unknown labels
        values: Values to compare against

    EXAMPLE:
        Filter(field="desk", operator="is any of", values=("EQ", "FX"))
    """
    field: str
    operator: str
    values: Tuple[str, ...] = ()

    @classmethod
    def of(cls, field: str, operator: str, values: Iterable) -> "Filter":
        return cls(field=field, operator=operator, values=tuple(str(v) for v in values))

    def to_dict(self) -> Dict:
        return {"field": self.field, "operator": self.operator, "values": list(self.values)}


# =============================================================================
# MEASURES
# =============================================================================

def _check_weight(aggregation: Aggregation, weight_field: Optional[str], slot: str) -> None:
    if aggregation == Aggregation.WEIGHTED_AVG and not weight_field:
        raise configuration_error(
            ErrorCode.MISSING_WEIGHT_FIELD,
            f"{slot} uses weightedAvg but has no weight field",
            field_name=f"{slot}.weightField",
            suggestion="Set weightField to the column used as weight",
        )


@dataclass(frozen=True)
class ResultSlot:
    """Auxiliary aggregate (result1..result3) of a grouped measure."""
    field: str
    aggregation: Aggregation = Aggregation.SUM
    weight_field: Optional[str] = None

    def validate(self, slot: str) -> None:
        _check_weight(self.aggregation, self.weight_field, slot)


# Defaults applied by the grouped breakdown cards when a slot is omitted
DEFAULT_RESULT1 = ResultSlot(field="counterparty", aggregation=Aggregation.COUNT_DISTINCT)
DEFAULT_RESULT2 = ResultSlot(field="underlyingAmount", aggregation=Aggregation.SUM)


@dataclass(frozen=True)
class MeasureSpec:
    """
    One aggregate column.

    PARAMETERS:
        field: Source column
        table_name: Table the column belongs to
        aggregation: Aggregation to apply
        key: Result alias (defaults to field); must be identifier-shaped
        label: Display label, passed through untouched
        weight_field: Required iff aggregation is weightedAvg

    EXAMPLE:
        MeasureSpec(field="fundingAmount", table_name="f_exposure",
                    aggregation=Aggregation.SUM, key="funding")
    """
    field: str
    table_name: str
    aggregation: Aggregation = Aggregation.SUM
    key: Optional[str] = None
    label: Optional[str] = None
    weight_field: Optional[str] = None

    @property
    def result_key(self) -> str:
        return self.key or self.field

    def validate(self) -> None:
        """Raise ConfigurationError for an incomplete definition."""
        _check_weight(self.aggregation, self.weight_field, self.result_key)


@dataclass(frozen=True)
class GroupMeasureSpec(MeasureSpec):
    """
    Measure for grouped breakdowns.

    Adds up to three auxiliary slots computed in the same group-by pass and
    the ordering/limit of the result set. result1/result2 fall back to the
    dashboard defaults (distinct counterparties, summed underlying amount)
    when omitted.

    PARAMETERS:
        result1..result3: Auxiliary aggregates
        order_by: current | result1 | result2 | result3 | groupValue
        order_direction: ASC | DESC
        limit: Requested number of groups; <= 12 triggers top-N + Others
        as_of_date_field: Overrides the table's configured date column
    """
    result1: Optional[ResultSlot] = None
    result2: Optional[ResultSlot] = None
    result3: Optional[ResultSlot] = None
    order_by: str = "current"
    order_direction: str = "DESC"
    limit: int = 12
    as_of_date_field: Optional[str] = None

    def slots(self) -> List[Tuple[str, ResultSlot]]:
        """Resolved auxiliary slots in output order."""
        resolved = [
            ("result1", self.result1 or DEFAULT_RESULT1),
            ("result2", self.result2 or DEFAULT_RESULT2),
        ]
        if self.result3 is not None:
            resolved.append(("result3", self.result3))
        return resolved

    def validate(self) -> None:
        super().validate()
        for name, slot in self.slots():
            slot.validate(name)
        if self.limit < 1:
            raise configuration_error(
                ErrorCode.OUT_OF_RANGE,
                "limit must be at least 1",
                field_name="limit",
                limit=self.limit,
            )
