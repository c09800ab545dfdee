"""Tests for grouped two-period breakdowns.

WHAT: Query building, top 11 + Others consolidation, change/percentage math,
      snapshot resolution through compute_for_period
WHY: The breakdown cards show these numbers verbatim; consolidation bugs
     show up as percentages that do not add up

REFERENCES:
  - frontview/analytics/grouped.py
  - frontview/analytics/deltas.py
"""

import asyncio

import pytest
from sqlalchemy import create_engine, text

from frontview.analytics.cache import QueryCache
from frontview.analytics.dialect import SQLiteDialect
from frontview.analytics.errors import ConfigurationError, ErrorCode
from frontview.analytics.executor import SqlAlchemyExecutor, create_analytics_engine
from frontview.analytics.grouped import (
    OTHERS_LABEL,
    GroupedAggregationEngine,
    build_grouped_query,
    effective_limit,
    merge_periods,
    validate_grouped_request,
)
from frontview.analytics.predicates import EMPTY_PREDICATE
from frontview.analytics.query import Aggregation, Filter, GroupMeasureSpec, ResultSlot
from frontview.analytics.snapshots import SnapshotResolver
from frontview.tests.conftest import FakeStore, RecordingExecutor
from frontview.tests.test_snapshots import snapshot_responder


CURRENT_VALUES = [120, 110, 100, 90, 80, 70, 60, 50, 40, 30, 20, 10]


def group_rows(values, names=None, result1=1):
    names = names or [f"G{i + 1}" for i in range(len(values))]
    return [
        {"groupValue": name, "current": value, "result1": result1, "result2": value * 10}
        for name, value in zip(names, values)
    ]


CURRENT_ROWS = group_rows(CURRENT_VALUES)
# G13 only exists in the comparison snapshot
COMPARISON_ROWS = group_rows([100] * 12 + [7], names=[f"G{i + 1}" for i in range(13)])


def measure(**overrides):
    params = {"field": "fundingAmount", "table_name": "f_exposure"}
    params.update(overrides)
    return GroupMeasureSpec(**params)


def grouped_responder(by_snapshot):
    resolve = snapshot_responder(["2024-01-01", "2024-02-01", "2024-03-01"])

    def respond(query, params):
        if "GROUP BY" in query:
            return [dict(r) for r in by_snapshot.get(params["snapshot"], [])]
        return resolve(query, params)
    return respond


def make_engine(by_snapshot=None, responder=None):
    executor = RecordingExecutor(responder or grouped_responder(by_snapshot or {}))
    cache = QueryCache(executor, FakeStore())
    engine = GroupedAggregationEngine(cache, SnapshotResolver(cache), SQLiteDialect())
    return engine, executor


class TestQueryBuilding:

    def test_small_limits_fetch_wider_set(self):
        assert effective_limit(5) == 100
        assert effective_limit(12) == 100
        assert effective_limit(13) == 13

    def test_query_shape(self):
        spec = measure()
        date_column, order_by, direction = validate_grouped_request(spec, "desk")
        query = build_grouped_query(spec, "desk", SQLiteDialect(), date_column, EMPTY_PREDICATE, order_by, direction)

        assert query == (
            "SELECT desk AS groupValue, sum(COALESCE(CAST(fundingAmount AS REAL), 0)) AS current, "
            "COUNT(DISTINCT counterparty) AS result1, "
            "sum(COALESCE(CAST(underlyingAmount AS REAL), 0)) AS result2 "
            "FROM f_exposure WHERE asOfDate = :snapshot GROUP BY desk "
            "ORDER BY current DESC"
        )

    def test_limited_query_carries_grand_total(self):
        spec = measure(limit=20, order_by="groupValue", order_direction="ASC")
        query = build_grouped_query(
            spec, "desk", SQLiteDialect(), "asOfDate", EMPTY_PREDICATE, "groupValue", "ASC", 20
        )

        assert "sum(sum(COALESCE(CAST(fundingAmount AS REAL), 0))) OVER () AS grandTotal" in query
        assert "sum(COUNT(DISTINCT counterparty)) OVER () AS result1Total" in query
        assert query.endswith("ORDER BY groupValue ASC LIMIT 20")

    def test_weighted_average_renders_guarded_division(self):
        spec = measure(aggregation=Aggregation.WEIGHTED_AVG, weight_field="notional")
        query = build_grouped_query(spec, "desk", SQLiteDialect(), "asOfDate", EMPTY_PREDICATE)
        assert "CASE WHEN sum(COALESCE(CAST(notional AS REAL), 0)) = 0 THEN 0" in query

    def test_result3_order_without_slot_falls_back_to_current(self):
        _, order_by, _ = validate_grouped_request(measure(order_by="result3"), "desk")
        assert order_by == "current"

    def test_as_of_date_field_overrides_table_column(self):
        date_column, _, _ = validate_grouped_request(measure(as_of_date_field="valuationDt"), "desk")
        assert date_column == "valuationDt"

    @pytest.mark.parametrize("overrides,code", [
        ({"aggregation": Aggregation.WEIGHTED_AVG}, ErrorCode.MISSING_WEIGHT_FIELD),
        ({"result3": ResultSlot("x", Aggregation.WEIGHTED_AVG)}, ErrorCode.MISSING_WEIGHT_FIELD),
        ({"order_by": "fundingAmount"}, ErrorCode.INVALID_ORDER),
        ({"order_direction": "sideways"}, ErrorCode.INVALID_ORDER),
        ({"limit": 0}, ErrorCode.OUT_OF_RANGE),
        ({"field": "funding amount"}, ErrorCode.INVALID_IDENTIFIER),
    ])
    def test_configuration_errors(self, overrides, code):
        with pytest.raises(ConfigurationError) as exc:
            validate_grouped_request(measure(**overrides), "desk")
        assert exc.value.code == code


class TestMergePeriods:

    def test_twelve_groups_consolidate_into_others(self):
        results, consolidated = merge_periods(measure(limit=12), CURRENT_ROWS, COMPARISON_ROWS)

        assert consolidated is True
        assert len(results) == 12
        assert [r.group_value for r in results[:11]] == [f"G{i + 1}" for i in range(11)]

        others = results[-1]
        assert others.group_value == OTHERS_LABEL
        assert others.current == 10
        # G12 and G13 are both outside the kept set
        assert others.previous == 107
        assert others.change == -97
        assert others.result2 == 100

    def test_percentages_use_total_before_truncation(self):
        results, _ = merge_periods(measure(limit=5), CURRENT_ROWS, COMPARISON_ROWS)
        total = sum(CURRENT_VALUES)

        assert results[0].percentage_of_total == pytest.approx(120 / total * 100)
        assert sum(r.percentage_of_total for r in results) == pytest.approx(100.0)

    def test_consolidation_picks_top_by_current_then_applies_requested_order(self):
        shuffled = list(reversed(CURRENT_ROWS))
        results, _ = merge_periods(measure(), shuffled, [], "groupValue", "ASC")

        # G12 (smallest) is folded away whatever the display order
        assert [r.group_value for r in results[:-1]] == sorted(f"G{i + 1}" for i in range(11))
        assert results[-1].group_value == OTHERS_LABEL
        assert results[-1].current == 10

    def test_small_limit_without_consolidation_uses_requested_order(self):
        rows = group_rows([150, 10, 80], ["EQ", "FX", "RATES"])
        results, consolidated = merge_periods(measure(), rows, [], "current", "ASC")

        assert consolidated is False
        assert [r.group_value for r in results] == ["FX", "RATES", "EQ"]

    def test_grand_total_column_is_the_denominator(self):
        rows = [dict(row, grandTotal=1000) for row in group_rows([150, 50], ["EQ", "FX"])]
        results, _ = merge_periods(measure(limit=20), rows, [])
        assert [r.percentage_of_total for r in results] == [pytest.approx(15.0), pytest.approx(5.0)]

    def test_others_counts_groups_beyond_the_fetched_window(self):
        rows = [dict(row, grandTotal=1000, result1Total=40, result2Total=9000) for row in CURRENT_ROWS]
        results, _ = merge_periods(measure(), rows, [])

        others = results[-1]
        assert (others.current, others.result1, others.result2) == (230, 29, 1300)
        assert sum(r.percentage_of_total for r in results) == pytest.approx(100.0)

    def test_eleven_groups_are_not_consolidated(self):
        results, consolidated = merge_periods(measure(), CURRENT_ROWS[:11], COMPARISON_ROWS)
        assert consolidated is False
        assert OTHERS_LABEL not in [r.group_value for r in results]

    def test_large_limit_returns_every_group_in_query_order(self):
        results, consolidated = merge_periods(measure(limit=50), CURRENT_ROWS, COMPARISON_ROWS)
        assert consolidated is False
        assert len(results) == 12

    def test_change_and_missing_comparison(self):
        results, _ = merge_periods(measure(), group_rows([150, 10], ["EQ", "FX"]), group_rows([100], ["EQ"]))

        eq, fx = results
        assert (eq.current, eq.previous, eq.change, eq.change_percent) == (150, 100, 50, 50.0)
        assert (fx.previous, fx.change, fx.change_percent) == (0.0, 10, 0.0)

    def test_result3_only_present_when_configured(self):
        rows = [{"groupValue": "EQ", "current": 1, "result1": 1, "result2": 1, "result3": 4}]
        without, _ = merge_periods(measure(), rows, [])
        with_slot, _ = merge_periods(measure(result3=ResultSlot("notional")), rows, [])

        assert "result3" not in without[0].to_dict()
        assert with_slot[0].to_dict()["result3"] == 4

    def test_malformed_numbers_count_as_zero(self):
        rows = [{"groupValue": "EQ", "current": "n/a", "result1": None, "result2": ""}]
        results, _ = merge_periods(measure(), rows, [])
        assert (results[0].current, results[0].result1, results[0].result2) == (0.0, 0.0, 0.0)

    def test_empty_current_is_empty(self):
        assert merge_periods(measure(), [], COMPARISON_ROWS) == ([], False)


class TestEngine:

    def test_compute_grouped_runs_one_query_per_snapshot(self):
        engine, executor = make_engine({"2024-03-01": CURRENT_ROWS, "2024-02-01": COMPARISON_ROWS})

        rows = asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))

        assert len(rows) == 12
        assert len(executor.calls) == 2
        keys = list(engine.cache.store.data)
        assert any(k.startswith("ch:grouped-stats:f_exposure:desk:2024-03-01:") for k in keys)
        assert any(k.startswith("ch:grouped-stats:f_exposure:desk:2024-02-01:") for k in keys)

    def test_repeat_call_is_served_from_cache(self):
        engine, executor = make_engine({"2024-03-01": CURRENT_ROWS, "2024-02-01": COMPARISON_ROWS})
        first = asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))
        second = asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))

        assert len(executor.calls) == 2
        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_filters_are_bound_and_change_the_key(self):
        engine, executor = make_engine({"2024-03-01": CURRENT_ROWS})
        asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))
        asyncio.run(engine.compute_grouped(
            measure(), "desk", "2024-03-01", "2024-02-01",
            filters=[Filter.of("counterparty", "is", ["cp1"])],
        ))

        assert len(executor.calls) == 4
        query, params = executor.calls[-1]
        assert "AND ((counterparty = :f0_0))" in query
        assert params["f0_0"] == "cp1"

    def test_configuration_error_before_any_query(self):
        engine, executor = make_engine({"2024-03-01": CURRENT_ROWS})
        with pytest.raises(ConfigurationError):
            asyncio.run(engine.compute_grouped(
                measure(aggregation=Aggregation.WEIGHTED_AVG), "desk", "2024-03-01", "2024-02-01"
            ))
        assert executor.calls == []

    def test_empty_result(self):
        engine, _ = make_engine({})
        assert asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01")) == []

    def test_executor_failure_propagates(self):
        def boom(query, params):
            raise RuntimeError("Memory limit (total) exceeded")

        engine, _ = make_engine(responder=boom)
        with pytest.raises(RuntimeError):
            asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))

    def test_compute_for_period_resolves_snapshots(self):
        engine, _ = make_engine({"2024-03-01": CURRENT_ROWS, "2024-02-01": COMPARISON_ROWS})

        report = asyncio.run(engine.compute_for_period(measure(), "desk", "-1m", as_of_date="2024-03-15"))

        assert report.current_snapshot == "2024-03-01"
        assert report.comparison_snapshot == "2024-02-01"
        assert report.consolidated is True
        assert report.meta == {
            "table": "f_exposure",
            "groupBy": "desk",
            "period": "-1m",
            "currentDate": "2024-03-01",
            "comparisonDate": "2024-02-01",
            "consolidated": True,
            "recordCount": 12,
        }

    def test_sqlite_store(self, sqlite_executor):
        cache = QueryCache(sqlite_executor, FakeStore())
        engine = GroupedAggregationEngine(cache, SnapshotResolver(cache), SQLiteDialect())

        report = asyncio.run(engine.compute_for_period(measure(), "desk", "-1m", as_of_date="2024-03-01"))
        rows = [r.to_dict() for r in report.rows]

        assert [r["groupValue"] for r in rows] == ["FX", "EQ", "RATES"]
        fx, eq, rates = rows
        assert (fx["current"], fx["previous"], fx["change"]) == (200.0, 100.0, 100.0)
        assert (eq["current"], eq["previous"], eq["changePercent"]) == (150.0, 80.0, 87.5)
        assert eq["result1"] == 2
        assert eq["result2"] == 1500.0
        assert rates["current"] == 0.0
        assert fx["percentageOfTotal"] == pytest.approx(200 / 350 * 100)

    def test_small_limit_query_ranks_by_current_whatever_the_display_order(self):
        engine, executor = make_engine({"2024-03-01": CURRENT_ROWS, "2024-02-01": COMPARISON_ROWS})
        spec = measure(order_by="groupValue", order_direction="ASC")

        asyncio.run(engine.compute_grouped(spec, "desk", "2024-03-01", "2024-02-01"))

        queries = {params["snapshot"]: query for query, params in executor.calls}
        assert queries["2024-03-01"].endswith("ORDER BY current DESC LIMIT 100")
        assert "AS grandTotal" in queries["2024-03-01"]
        # comparison values are looked up for any kept group, so no LIMIT
        assert queries["2024-02-01"].endswith("ORDER BY current DESC")

    def test_failing_period_cancels_the_other(self):
        class OneSlowOneFailing:
            cancelled = False

            async def execute(self, query_text, params=None):
                if params["snapshot"] == "2024-02-01":
                    raise RuntimeError("Memory limit (total) exceeded")
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    OneSlowOneFailing.cancelled = True
                    raise
                return []

            async def ping(self):
                return True

        cache = QueryCache(OneSlowOneFailing(), FakeStore())
        engine = GroupedAggregationEngine(cache, SnapshotResolver(cache), SQLiteDialect())

        with pytest.raises(RuntimeError):
            asyncio.run(engine.compute_grouped(measure(), "desk", "2024-03-01", "2024-02-01"))
        assert OneSlowOneFailing.cancelled is True


# ============================================================================
# Many groups: top-N membership and totals are global
# ============================================================================

@pytest.fixture
def wide_executor(tmp_path):
    """f_exposure with 120 desks g000..g119; fundingAmount i+1 now, 1 a month earlier."""
    path = tmp_path / "wide.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE f_exposure ("
            "asOfDate TEXT, desk TEXT, counterparty TEXT, fundingAmount REAL, underlyingAmount REAL)"
        ))
        rows = [{"d": "2024-03-01", "desk": f"g{i:03d}", "amount": i + 1} for i in range(120)]
        rows += [{"d": "2024-02-01", "desk": f"g{i:03d}", "amount": 1} for i in range(120)]
        conn.execute(
            text("INSERT INTO f_exposure VALUES (:d, :desk, 'cp1', :amount, 0)"),
            rows,
        )
    engine.dispose()
    return SqlAlchemyExecutor(create_analytics_engine(f"sqlite+aiosqlite:///{path}"))


class TestManyGroups:

    def engine(self, executor):
        cache = QueryCache(executor, FakeStore())
        return GroupedAggregationEngine(cache, SnapshotResolver(cache), SQLiteDialect())

    def test_top_eleven_are_the_largest_even_when_ordered_by_name(self, wide_executor):
        spec = measure(order_by="groupValue", order_direction="ASC", limit=12)
        rows = asyncio.run(self.engine(wide_executor).compute_grouped(spec, "desk", "2024-03-01", "2024-02-01"))

        assert [r.group_value for r in rows] == [f"g{i}" for i in range(109, 120)] + [OTHERS_LABEL]
        others = rows[-1]
        assert others.current == sum(range(1, 110))
        assert others.previous == 109
        assert rows[-2].percentage_of_total == pytest.approx(120 / 7260 * 100)
        assert sum(r.percentage_of_total for r in rows) == pytest.approx(100.0)

    def test_large_limit_percentages_use_the_grand_total(self, wide_executor):
        spec = measure(limit=20)
        rows = asyncio.run(self.engine(wide_executor).compute_grouped(spec, "desk", "2024-03-01", "2024-02-01"))

        assert len(rows) == 20
        assert rows[0].group_value == "g119"
        assert rows[0].percentage_of_total == pytest.approx(120 / 7260 * 100)
        # every kept group finds its comparison value
        assert all(r.previous == 1 for r in rows)
