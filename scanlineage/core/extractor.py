"""Lineage extractor: applies scanner rules to scan query text and records the results."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from scanlineage.core import scanner
from scanlineage.core.models import (
    Column,
    ColumnUsage,
    LineageGraph,
    QueryMetrics,
    Table,
)

logger = logging.getLogger(__name__)


class _Recorder:
    """Graph access for one parse call; remembers which tables were touched."""

    def __init__(self, graph: LineageGraph):
        self.graph = graph
        self.touched: dict[str, Table] = {}

    def table(self, name: str) -> Optional[Table]:
        table = self.graph.get_or_add_table(name)
        if table is not None:
            self.touched.setdefault(table.key, table)
        return table

    def column(self, ref: scanner.ColumnRef) -> Optional[Column]:
        table = self.table(ref.table)
        if table is None:
            return None
        return table.get_or_add_column(ref.column)


class LineageExtractor:
    """Parses scan queries into a LineageGraph.

    Every rule runs on every call, so a table can be both a FROM table and a
    joined table of the same query.
    """

    def parse(
        self,
        text: Optional[str],
        graph: LineageGraph,
        metrics: Optional[QueryMetrics] = None,
    ) -> bool:
        """Parse one scan query into ``graph``.

        Returns False for blank input or when a rule fails; failures are
        counted on the graph and never raised.
        """
        if text is None or not isinstance(text, str) or not text.strip():
            return False

        graph.total_queries_analyzed += 1
        # A failed fragment still spent its CPU time.
        if metrics is not None and metrics.cpu_time_ms and metrics.cpu_time_ms > 0:
            graph.total_cpu_time_ms += metrics.cpu_time_ms
        try:
            recorder = _Recorder(graph)
            self._parse_root_tables(text, recorder)
            self._parse_selected_columns(text, recorder)
            self._parse_joins(text, recorder)
            self._parse_join_conditions(text, recorder)
            self._parse_filters(text, recorder)
            self._parse_aggregations(text, recorder)
            self._parse_callbacks(text, recorder)
            if metrics is not None:
                self._apply_metrics(recorder, metrics)
        except Exception:
            logger.warning("Failed to parse scan query: %s", text[:100], exc_info=True)
            graph.failed_parse_queries += 1
            return False

        graph.successfully_parsed_queries += 1
        return True

    def parse_many(self, queries: Iterable[str], graph: Optional[LineageGraph] = None) -> LineageGraph:
        """Parse a batch of queries into one graph (a new one unless given)."""
        if graph is None:
            graph = LineageGraph()
        for query in queries:
            self.parse(query, graph)
        return graph

    def _parse_root_tables(self, text: str, recorder: _Recorder) -> None:
        for name in scanner.root_tables(text):
            table = recorder.table(name)
            if table is not None:
                table.is_from_table = True
                table.hit_count += 1

    def _parse_selected_columns(self, text: str, recorder: _Recorder) -> None:
        for ref in scanner.selected_columns(text):
            column = recorder.column(ref)
            if column is not None:
                column.add_usage(ColumnUsage.SELECT)

    def _parse_joins(self, text: str, recorder: _Recorder) -> None:
        for name, _kind in scanner.joined_tables(text):
            table = recorder.table(name)
            if table is not None:
                table.is_joined_table = True
                table.hit_count += 1

    def _parse_join_conditions(self, text: str, recorder: _Recorder) -> None:
        conditions = scanner.join_conditions(text)
        logger.debug("Found %d ON clause matches", len(conditions))

        for cond in conditions:
            logger.debug(
                "ON %s[%s] = %s[%s] (%s)",
                cond.from_table, cond.from_column, cond.to_table, cond.to_column, cond.join_kind.value,
            )
            from_column = recorder.column(scanner.ColumnRef(cond.from_table, cond.from_column))
            to_column = recorder.column(scanner.ColumnRef(cond.to_table, cond.to_column))
            if from_column is None or to_column is None:
                continue

            recorder.graph.add_relationship(
                cond.from_table, cond.from_column, cond.to_table, cond.to_column, cond.join_kind
            )
            from_column.add_usage(ColumnUsage.JOIN)
            to_column.add_usage(ColumnUsage.JOIN)

    def _parse_filters(self, text: str, recorder: _Recorder) -> None:
        for ref in scanner.filtered_columns(text):
            column = recorder.column(ref)
            if column is not None:
                column.add_usage(ColumnUsage.FILTER)

        for predicate in scanner.filter_predicates(text):
            column = recorder.column(predicate.column)
            if column is not None:
                column.add_filter_sample(predicate.operator, list(predicate.values))

    def _parse_aggregations(self, text: str, recorder: _Recorder) -> None:
        for call in scanner.aggregations(text):
            if call.column is None:
                continue
            column = recorder.column(call.column)
            if column is not None:
                column.add_aggregation(call.function)

    def _parse_callbacks(self, text: str, recorder: _Recorder) -> None:
        for use in scanner.callbacks(text):
            for ref in use.columns:
                column = recorder.column(ref)
                if column is not None:
                    column.mark_callback(use.kind)

    def _apply_metrics(self, recorder: _Recorder, metrics: QueryMetrics) -> None:
        for table in recorder.touched.values():
            table.apply_metrics(metrics)


_default_extractor = LineageExtractor()


def parse_query(
    text: Optional[str],
    graph: LineageGraph,
    metrics: Optional[QueryMetrics] = None,
) -> bool:
    """Parse one scan query into ``graph`` with the shared extractor."""
    return _default_extractor.parse(text, graph, metrics)


def extract_lineage(queries: Iterable[str]) -> LineageGraph:
    """Extract lineage from a sequence of scan queries into a new graph.

    Args:
        queries: Scan query strings, parsed in order.

    Returns:
        A LineageGraph with all discovered tables, columns and relationships.
    """
    return _default_extractor.parse_many(queries)
