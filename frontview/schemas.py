"""Pydantic schemas for request/response payloads.

Field names follow the dashboard's camelCase JSON (tableName, groupBy,
relativeDt, ...). Each model converts itself into the frozen request types
of frontview.analytics.query, which is all the core ever sees.
"""

from typing import Any, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator

from frontview.analytics.query import (
    Aggregation,
    Filter,
    GroupMeasureSpec,
    MeasureSpec,
    ResultSlot,
)


class FilterIn(BaseModel):
    """One filter from the filter bar.

    Older widgets send `type` instead of `field` and `value` instead of
    `values`; both spellings are accepted.
    """

    field: str = Field(
        validation_alias=AliasChoices("field", "type"),
        description="Column to filter on",
        examples=["desk"],
    )
    operator: str = Field(description="Operator label", examples=["is any of"])
    values: List[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("values", "value"),
        description="Values to compare against",
    )

    @field_validator("values", mode="before")
    @classmethod
    def wrap_scalar(cls, v):
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            return list(v)
        return [v]

    def to_filter(self) -> Filter:
        return Filter.of(self.field, self.operator, self.values)


class ResultSlotIn(BaseModel):
    field: str
    aggregation: Aggregation = Aggregation.SUM
    weight_field: Optional[str] = Field(default=None, alias="weightField")

    model_config = {"populate_by_name": True}

    def to_slot(self) -> ResultSlot:
        return ResultSlot(field=self.field, aggregation=self.aggregation, weight_field=self.weight_field)


class MeasureIn(BaseModel):
    """Stat-card measure."""

    key: str = Field(description="Result key in the response; unique per request", examples=["funding"])
    field: str = Field(description="Source column", examples=["fundingAmount"])
    table_name: str = Field(alias="tableName", examples=["f_exposure"])
    aggregation: Aggregation = Aggregation.SUM
    label: Optional[str] = None
    weight_field: Optional[str] = Field(default=None, alias="weightField")

    model_config = {"populate_by_name": True}

    def to_spec(self) -> MeasureSpec:
        return MeasureSpec(
            field=self.field,
            table_name=self.table_name,
            aggregation=self.aggregation,
            key=self.key,
            label=self.label,
            weight_field=self.weight_field,
        )


class GroupedMeasureIn(MeasureIn):
    """Grouped-card measure with auxiliary result slots."""

    key: Optional[str] = Field(default=None, description="Unused by grouped cards")
    result1: Optional[ResultSlotIn] = None
    result2: Optional[ResultSlotIn] = None
    result3: Optional[ResultSlotIn] = None
    order_by: str = Field(default="current", alias="orderBy")
    order_direction: str = Field(default="DESC", alias="orderDirection")
    limit: int = 12
    as_of_date_field: Optional[str] = Field(default=None, alias="asOfDateField")

    def to_spec(self) -> GroupMeasureSpec:
        return GroupMeasureSpec(
            field=self.field,
            table_name=self.table_name,
            aggregation=self.aggregation,
            key=self.key,
            label=self.label,
            weight_field=self.weight_field,
            result1=self.result1.to_slot() if self.result1 else None,
            result2=self.result2.to_slot() if self.result2 else None,
            result3=self.result3.to_slot() if self.result3 else None,
            order_by=self.order_by,
            order_direction=self.order_direction,
            limit=self.limit,
            as_of_date_field=self.as_of_date_field,
        )


def _filters(items: List[FilterIn]) -> List[Filter]:
    return [item.to_filter() for item in items]


class StatsRequest(BaseModel):
    """POST /api/stats"""

    measures: List[MeasureIn] = Field(min_length=1)
    relative_dt: str = Field(
        validation_alias=AliasChoices("relativeDt", "period", "relative_dt"),
        description="Comparison period: -1d, -1w, -1m, -6m, -1y or an ISO date",
    )
    as_of_date: Optional[str] = Field(default=None, alias="asOfDate")
    filters: List[FilterIn] = Field(default_factory=list)

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "measures": [{"key": "funding", "field": "fundingAmount", "tableName": "f_exposure"}],
                "relativeDt": "-1m",
                "filters": [{"field": "desk", "operator": "is", "values": ["EQ"]}],
            }
        },
    }

    def filter_list(self) -> List[Filter]:
        return _filters(self.filters)


class GroupedStatsRequest(BaseModel):
    """POST /api/grouped-stats"""

    measure: GroupedMeasureIn
    group_by: str = Field(alias="groupBy")
    relative_dt: str = Field(validation_alias=AliasChoices("relativeDt", "period", "relative_dt"))
    as_of_date: Optional[str] = Field(default=None, alias="asOfDate")
    filters: List[FilterIn] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def filter_list(self) -> List[Filter]:
        return _filters(self.filters)


class TimeSeriesRequest(BaseModel):
    """POST /api/tables/historical and /api/tables/future"""

    table: str = "f_exposure"
    field_name: str = Field(default="fundingAmount", alias="fieldName")
    group_by: Optional[str] = Field(default=None, alias="groupBy")
    as_of_date: Optional[str] = Field(default=None, alias="asOfDate")
    filters: List[FilterIn] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def filter_list(self) -> List[Filter]:
        return _filters(self.filters)


class OrderIn(BaseModel):
    """One ORDER BY term of a table page."""

    column: str = Field(examples=["tradeDate"])
    direction: str = Field(default="ASC", examples=["DESC"])


class TableDataRequest(BaseModel):
    """POST /api/tables/data"""

    table_name: str = Field(alias="tableName")
    filters: List[FilterIn] = Field(default_factory=list)
    as_of_date: Optional[str] = Field(default=None, alias="asOfDate")
    limit: Optional[int] = None
    offset: int = 0
    order_by: Optional[Union[str, List[OrderIn]]] = Field(
        default=None,
        alias="orderBy",
        description="A column name, or a list of {column, direction} applied in order",
        examples=[[{"column": "tradeDate", "direction": "DESC"}, {"column": "id", "direction": "DESC"}]],
    )
    order_direction: str = Field(default="ASC", alias="orderDirection")

    model_config = {"populate_by_name": True}

    def filter_list(self) -> List[Filter]:
        return _filters(self.filters)

    def order_terms(self) -> Union[None, str, List[Tuple[str, str]]]:
        if isinstance(self.order_by, list):
            return [(term.column, term.direction) for term in self.order_by]
        return self.order_by


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="ok | degraded", examples=["ok"])
    executor_connected: bool
    store_connected: bool
    cache_enabled: bool
