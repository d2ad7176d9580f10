"""Tests for the lineage extractor module."""

import pytest
from scanlineage.core import scanner
from scanlineage.core.extractor import LineageExtractor, extract_lineage, parse_query
from scanlineage.core.models import ColumnUsage, JoinKind, LineageGraph, QueryMetrics


@pytest.fixture
def graph():
    return LineageGraph()


@pytest.fixture
def extractor():
    return LineageExtractor()


class TestTableLineage:
    """Test table and relationship extraction."""

    def test_simple_select_from(self, graph, extractor):
        text = """SET DC_KIND="AUTO";
SELECT
    'Product'[Color],
    'Product'[Class]
FROM 'Product';"""
        assert extractor.parse(text, graph) is True
        assert graph.total_queries_analyzed == 1
        assert graph.successfully_parsed_queries == 1

        product = graph.get_table("Product")
        assert product.is_from_table
        assert set(product.columns) == {"color", "class"}
        assert product.get_column("Color").has_usage(ColumnUsage.SELECT)
        assert product.get_column("Class").has_usage(ColumnUsage.SELECT)

    def test_left_outer_join_round_trip(self, graph, extractor):
        text = "SELECT 'T1'[A] FROM 'T1' LEFT OUTER JOIN 'T2' ON 'T1'[A] = 'T2'[B]"
        assert extractor.parse(text, graph)

        t1 = graph.get_table("T1")
        t2 = graph.get_table("T2")
        assert t1.is_from_table
        assert t2.is_joined_table
        assert len(graph.relationships) == 1

        rel = graph.relationships[0]
        assert (rel.from_table, rel.from_column, rel.to_table, rel.to_column) == ("T1", "A", "T2", "B")
        assert rel.join_kind == JoinKind.LEFT_OUTER_JOIN
        assert t1.get_column("A").has_usage(ColumnUsage.SELECT | ColumnUsage.JOIN)
        assert t1.get_column("A").has_usage(ColumnUsage.SELECT)
        assert t1.get_column("A").has_usage(ColumnUsage.JOIN)

    def test_chained_joins_and_filters(self, graph, extractor):
        text = """SET DC_KIND="AUTO";
SELECT
    'Customer'[CustomerKey],
    'Sales Territory'[Sales Territory Name]
FROM 'Customer'
    LEFT OUTER JOIN 'Geography'[GeographyKey]
    LEFT OUTER JOIN 'Sales Territory'
        ON 'Geography'[GeographyKey]='Geography'[GeographyKey]
WHERE
    'Customer'[Full Name] IN ( 'Arianna G Bailey', 'Alvin Wang' )
    VAND
    'Customer'[Education] = 'Bachelors';"""
        assert extractor.parse(text, graph)
        assert graph.unique_tables_count == 3

        customer = graph.get_table("Customer")
        assert customer.is_from_table
        assert customer.get_column("Full Name").has_usage(ColumnUsage.FILTER)
        assert customer.get_column("Education").has_usage(ColumnUsage.FILTER)
        assert customer.get_column("Full Name").filter_values == ["Arianna G Bailey", "Alvin Wang"]
        assert customer.get_column("Education").filter_operators == {"="}
        assert graph.get_table("Geography").is_joined_table
        assert graph.get_table("Sales Territory").is_joined_table

    def test_repeated_join_counts_hits(self, graph, extractor):
        queries = [
            "SELECT 'Sales'[Amount] FROM 'Sales' LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey];",
            "SELECT 'Sales'[Quantity] FROM 'Sales' LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey];",
            "SELECT 'Sales'[Discount] FROM 'Sales' LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey];",
        ]
        for q in queries:
            extractor.parse(q, graph)

        assert len(graph.relationships) == 1
        assert graph.relationships[0].hit_count == 3
        assert graph.get_table("Sales").hit_count == 3
        assert graph.get_table("Product").hit_count == 3

    def test_table_in_from_and_join(self, graph, extractor):
        text = "SELECT 'A'[x] FROM 'A' INNER JOIN 'A' ON 'A'[x]='A'[y]"
        extractor.parse(text, graph)
        table = graph.get_table("A")
        assert table.is_from_table and table.is_joined_table


class TestAggregations:
    """Test aggregation extraction."""

    def test_sum_marks_column(self, graph, extractor):
        assert extractor.parse("SUM('T1'[Amt])", graph)
        column = graph.get_table("T1").get_column("Amt")
        assert "SUM" in column.aggregations
        assert column.has_usage(ColumnUsage.AGGREGATE)

    def test_count_without_column_touches_nothing(self, graph, extractor):
        assert extractor.parse("COUNT()", graph)
        assert graph.tables == {}

    def test_several_aggregations(self, graph, extractor):
        text = """SELECT
    'Product'[Category],
    SUM ( 'Sales'[Amount] ),
    COUNT ( 'Sales'[OrderKey] ),
    DCOUNT ( 'Customer'[CustomerKey] )
FROM 'Sales';"""
        extractor.parse(text, graph)
        sales = graph.get_table("Sales")
        assert sales.get_column("Amount").aggregations == {"SUM"}
        assert sales.get_column("OrderKey").aggregations == {"COUNT"}
        assert graph.get_table("Customer").get_column("CustomerKey").aggregations == {"DCOUNT"}


class TestCallbacks:
    """Test callback marking."""

    def test_callback_marks_table(self, graph, extractor):
        text = (
            "SELECT [CallbackDataID ( SUM ( 'Sales'[Amount] ) ) ] "
            "( PFDATAID ( 'Sales'[Discount] ) ) FROM 'Sales';"
        )
        extractor.parse(text, graph)
        sales = graph.get_table("Sales")
        assert sales.has_callbacks
        assert sales.get_column("Discount").callback_type == "CallbackDataID"


class TestMetrics:
    """Test per-query metrics."""

    def test_metrics_applied_to_touched_tables(self, graph, extractor):
        text = "SELECT 'Sales'[Amount] FROM 'Sales' LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey]"
        metrics = QueryMetrics(
            query_id=7, estimated_rows=1000, duration_ms=12, cpu_time_ms=40, cpu_factor=3.3
        )
        extractor.parse(text, graph, metrics)

        for name in ("Sales", "Product"):
            table = graph.get_table(name)
            assert table.total_duration_ms == 12
            assert table.total_cpu_time_ms == 40
            assert table.max_estimated_rows == 1000
            assert table.query_ids == {7}
            assert table.parallel_query_count == 1
            assert table.cache_misses == 1
        assert graph.total_cpu_time_ms == 40

    def test_cache_hit_counted(self, graph, extractor):
        extractor.parse("SELECT 'A'[x] FROM 'A'", graph, QueryMetrics(is_cache_hit=True))
        assert graph.get_table("A").cache_hits == 1


class TestFailures:
    """Test error handling and counters."""

    @pytest.mark.parametrize("text", [None, "", "   \n"])
    def test_blank_input(self, graph, extractor, text):
        assert extractor.parse(text, graph) is False
        assert graph.total_queries_analyzed == 0
        assert graph.failed_parse_queries == 0

    def test_rule_failure_is_counted(self, graph, extractor, monkeypatch):
        def boom(text):
            raise RuntimeError("broken rule")

        monkeypatch.setattr(scanner, "aggregations", boom)
        assert extractor.parse("SELECT 'A'[x] FROM 'A'", graph) is False
        assert graph.total_queries_analyzed == 1
        assert graph.failed_parse_queries == 1
        assert graph.successfully_parsed_queries == 0

    def test_failed_parse_still_counts_cpu_time(self, graph, extractor, monkeypatch):
        def boom(text):
            raise RuntimeError("broken rule")

        assert extractor.parse("SELECT 'A'[x] FROM 'A'", graph, QueryMetrics(cpu_time_ms=30))
        monkeypatch.setattr(scanner, "aggregations", boom)
        assert extractor.parse("SELECT 'B'[y] FROM 'B'", graph, QueryMetrics(cpu_time_ms=10)) is False
        assert graph.total_cpu_time_ms == 40
        assert graph.get_table("a").total_cpu_time_ms == 30

    def test_no_matches_is_success(self, graph, extractor):
        assert extractor.parse("nothing to see", graph) is True
        assert graph.tables == {}


class TestHelpers:
    """Test module-level helpers."""

    def test_extract_lineage(self):
        graph = extract_lineage(["SELECT 'A'[x] FROM 'A'", "SELECT 'B'[y] FROM 'B'"])
        assert graph.unique_tables_count == 2
        assert graph.successfully_parsed_queries == 2

    def test_parse_query_uses_given_graph(self, graph):
        assert parse_query("SELECT 'A'[x] FROM 'A'", graph)
        assert graph.get_table("a") is not None
