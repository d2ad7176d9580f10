"""Data models for lineage extracted from storage-engine scan queries."""

from __future__ import annotations

import enum
import logging
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Bound on the number of filter values remembered per column.
MAX_FILTER_SAMPLES = 50

# Internal temporary results produced by the engine, e.g. '$TTable5'.
INTERMEDIATE_TABLE_PREFIX = "$ttable"


def normalize_key(name: str) -> str:
    """Canonical, culture-independent lookup key for table and column names."""
    return name.casefold()


def clean_table_name(name: Optional[str]) -> Optional[str]:
    """Trim whitespace and surrounding quote characters from a table name."""
    if name is None:
        return None
    cleaned = name.strip().strip("'\"").strip()
    return cleaned or None


def clean_column_name(name: Optional[str]) -> Optional[str]:
    """Trim whitespace and surrounding brackets from a column name."""
    if name is None:
        return None
    cleaned = name.strip().strip("[]").strip()
    return cleaned or None


class ColumnUsage(enum.IntFlag):
    """How a column is used by scan queries (flags accumulate)."""

    NONE = 0
    SELECT = 1
    FILTER = 2
    JOIN = 4
    GROUP_BY = 8
    AGGREGATE = 16
    ORDER_BY = 32


class JoinKind(str, enum.Enum):
    """Join kind of a relationship."""

    UNKNOWN = "unknown"
    LEFT_OUTER_JOIN = "left_outer_join"
    INNER_JOIN = "inner_join"
    RIGHT_OUTER_JOIN = "right_outer_join"
    FULL_OUTER_JOIN = "full_outer_join"


class Cardinality(str, enum.Enum):
    """Cardinality of one side of a relationship."""

    ONE = "one"
    MANY = "many"


class CrossFilterDirection(str, enum.Enum):
    SINGLE = "single"
    BOTH = "both"


class QueryMetrics(BaseModel):
    """Timing and cost figures for one scan event."""

    query_id: Optional[int] = None
    estimated_rows: Optional[int] = None
    duration_ms: Optional[int] = None
    is_cache_hit: bool = False
    cpu_time_ms: Optional[int] = None
    cpu_factor: Optional[float] = None
    net_parallel_duration_ms: Optional[int] = None


class Column(BaseModel):
    """A column referenced by scan queries, scoped to its table."""

    name: str
    usage: ColumnUsage = ColumnUsage.NONE
    hit_count: int = 0
    aggregations: set[str] = Field(default_factory=set)
    callback_type: Optional[str] = None
    filter_values: list[str] = Field(default_factory=list)
    filter_operators: set[str] = Field(default_factory=set)

    @property
    def key(self) -> str:
        return normalize_key(self.name)

    @property
    def has_callback(self) -> bool:
        return self.callback_type is not None

    def has_usage(self, usage: ColumnUsage) -> bool:
        return bool(self.usage & usage)

    def add_usage(self, usage: ColumnUsage) -> None:
        """Record a usage; the usage set only ever grows."""
        self.usage |= usage
        self.hit_count += 1

    def add_aggregation(self, function: str) -> None:
        """Record an aggregation function applied to this column."""
        if not function or not function.strip():
            return
        self.aggregations.add(function.strip().upper())
        self.usage |= ColumnUsage.AGGREGATE

    def mark_callback(self, callback_type: str) -> None:
        self.callback_type = callback_type

    def add_filter_sample(self, operator: str, values: list[str]) -> None:
        """Remember a filter operator and its values, up to MAX_FILTER_SAMPLES."""
        self.filter_operators.add(operator.upper())
        for value in values:
            if len(self.filter_values) >= MAX_FILTER_SAMPLES:
                break
            if value not in self.filter_values:
                self.filter_values.append(value)


class Table(BaseModel):
    """A table referenced by scan queries, with its running metrics."""

    name: str
    columns: dict[str, Column] = Field(default_factory=dict)
    hit_count: int = 0
    is_from_table: bool = False
    is_joined_table: bool = False

    total_estimated_rows: int = 0
    max_estimated_rows: int = 0
    total_duration_ms: int = 0
    max_duration_ms: int = 0
    total_cpu_time_ms: int = 0
    total_parallel_duration_ms: int = 0
    max_cpu_factor: float = 0.0
    parallel_query_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    query_count: int = 0
    query_ids: set[int] = Field(default_factory=set)

    @property
    def key(self) -> str:
        return normalize_key(self.name)

    @property
    def is_intermediate(self) -> bool:
        return self.key.startswith(INTERMEDIATE_TABLE_PREFIX)

    @property
    def has_callbacks(self) -> bool:
        return any(c.has_callback for c in self.columns.values())

    @property
    def join_columns(self) -> list[Column]:
        return [c for c in self.columns.values() if c.has_usage(ColumnUsage.JOIN)]

    @property
    def filtered_columns(self) -> list[Column]:
        return [c for c in self.columns.values() if c.has_usage(ColumnUsage.FILTER)]

    @property
    def selected_columns(self) -> list[Column]:
        return [c for c in self.columns.values() if c.has_usage(ColumnUsage.SELECT)]

    def get_column(self, name: str) -> Optional[Column]:
        cleaned = clean_column_name(name)
        if cleaned is None:
            return None
        return self.columns.get(normalize_key(cleaned))

    def get_or_add_column(self, name: Optional[str]) -> Optional[Column]:
        """Return the column with this name, creating it if needed.

        Brackets and whitespace are stripped; lookup is case-insensitive.
        Blank names return None without creating anything.
        """
        cleaned = clean_column_name(name)
        if cleaned is None:
            return None
        key = normalize_key(cleaned)
        column = self.columns.get(key)
        if column is None:
            column = Column(name=cleaned)
            self.columns[key] = column
        return column

    def apply_metrics(self, metrics: QueryMetrics) -> None:
        """Accumulate one scan event's metrics into the running totals."""
        self.query_count += 1
        if metrics.query_id is not None:
            self.query_ids.add(metrics.query_id)
        if metrics.estimated_rows:
            self.total_estimated_rows += metrics.estimated_rows
            self.max_estimated_rows = max(self.max_estimated_rows, metrics.estimated_rows)
        if metrics.duration_ms:
            self.total_duration_ms += metrics.duration_ms
            self.max_duration_ms = max(self.max_duration_ms, metrics.duration_ms)
        if metrics.cpu_time_ms:
            self.total_cpu_time_ms += metrics.cpu_time_ms
        if metrics.is_cache_hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1
        if metrics.cpu_factor is not None and metrics.cpu_factor > 1.0:
            self.parallel_query_count += 1
            self.max_cpu_factor = max(self.max_cpu_factor, metrics.cpu_factor)
            if metrics.net_parallel_duration_ms:
                self.total_parallel_duration_ms += metrics.net_parallel_duration_ms

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "hit_count": self.hit_count,
            "is_from_table": self.is_from_table,
            "is_joined_table": self.is_joined_table,
            "is_intermediate": self.is_intermediate,
            "has_callbacks": self.has_callbacks,
            "total_estimated_rows": self.total_estimated_rows,
            "max_estimated_rows": self.max_estimated_rows,
            "total_duration_ms": self.total_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "total_cpu_time_ms": self.total_cpu_time_ms,
            "total_parallel_duration_ms": self.total_parallel_duration_ms,
            "max_cpu_factor": self.max_cpu_factor,
            "parallel_query_count": self.parallel_query_count,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "query_count": self.query_count,
            "query_ids": sorted(self.query_ids),
            "columns": [
                {
                    "name": col.name,
                    "usage": [u.name.lower() for u in ColumnUsage if u and col.has_usage(u)],
                    "hit_count": col.hit_count,
                    "aggregations": sorted(col.aggregations),
                    "callback_type": col.callback_type,
                    "filter_values": list(col.filter_values),
                    "filter_operators": sorted(col.filter_operators),
                }
                for col in self.columns.values()
            ],
        }


class Relationship(BaseModel):
    """A join between two (table, column) pairs.

    Tables are referenced by their normalized key and resolved through the
    owning graph; the relationship never holds the Table objects themselves.
    """

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    join_kind: JoinKind = JoinKind.UNKNOWN
    hit_count: int = 1
    from_cardinality: Optional[Cardinality] = None
    to_cardinality: Optional[Cardinality] = None
    cross_filter: Optional[CrossFilterDirection] = None

    @property
    def from_table_key(self) -> str:
        return normalize_key(self.from_table)

    @property
    def to_table_key(self) -> str:
        return normalize_key(self.to_table)

    @property
    def is_many_to_many(self) -> bool:
        return self.from_cardinality == Cardinality.MANY and self.to_cardinality == Cardinality.MANY

    @property
    def is_bidirectional(self) -> bool:
        return self.cross_filter == CrossFilterDirection.BOTH

    def matches(self, from_table: str, from_column: str, to_table: str, to_column: str) -> bool:
        """True if the given endpoints name this relationship, in either direction."""
        mine = (
            (self.from_table_key, normalize_key(self.from_column)),
            (self.to_table_key, normalize_key(self.to_column)),
        )
        theirs = (
            (normalize_key(from_table), normalize_key(from_column)),
            (normalize_key(to_table), normalize_key(to_column)),
        )
        return mine == theirs or mine == theirs[::-1]

    def to_dict(self) -> dict:
        return {
            "from_table": self.from_table,
            "from_column": self.from_column,
            "to_table": self.to_table,
            "to_column": self.to_column,
            "join_kind": self.join_kind.value,
            "hit_count": self.hit_count,
            "from_cardinality": self.from_cardinality.value if self.from_cardinality else None,
            "to_cardinality": self.to_cardinality.value if self.to_cardinality else None,
            "cross_filter": self.cross_filter.value if self.cross_filter else None,
        }


class RelationshipAnnotation(BaseModel):
    """Model metadata for a relationship, matched against the scanned joins."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    from_cardinality: Optional[Cardinality] = None
    to_cardinality: Optional[Cardinality] = None
    cross_filter: Optional[CrossFilterDirection] = None


class LineageGraph(BaseModel):
    """Aggregate of tables, columns and relationships from many scan queries."""

    tables: dict[str, Table] = Field(default_factory=dict)
    relationships: list[Relationship] = Field(default_factory=list)
    total_queries_analyzed: int = 0
    successfully_parsed_queries: int = 0
    failed_parse_queries: int = 0
    total_cpu_time_ms: int = 0

    @property
    def unique_tables_count(self) -> int:
        return len(self.tables)

    @property
    def unique_columns_count(self) -> int:
        return sum(len(t.columns) for t in self.tables.values())

    @property
    def unique_relationships_count(self) -> int:
        return len(self.relationships)

    def get_table(self, name: Optional[str]) -> Optional[Table]:
        cleaned = clean_table_name(name)
        if cleaned is None:
            return None
        return self.tables.get(normalize_key(cleaned))

    def get_or_add_table(self, name: Optional[str]) -> Optional[Table]:
        """Return the table with this name, creating it if needed.

        Quotes and whitespace are stripped; lookup is case-insensitive.
        Blank names return None without creating anything.
        """
        cleaned = clean_table_name(name)
        if cleaned is None:
            return None
        key = normalize_key(cleaned)
        table = self.tables.get(key)
        if table is None:
            table = Table(name=cleaned)
            self.tables[key] = table
        return table

    def get_or_add_column(self, table: Optional[Table | str], name: Optional[str]) -> Optional[Column]:
        """Get or create a column, resolving ``table`` by name when given a string."""
        if isinstance(table, str):
            table = self.get_or_add_table(table)
        if table is None:
            return None
        return table.get_or_add_column(name)

    def find_relationship(
        self, from_table: str, from_column: str, to_table: str, to_column: str
    ) -> Optional[Relationship]:
        for rel in self.relationships:
            if rel.matches(from_table, from_column, to_table, to_column):
                return rel
        return None

    def add_relationship(
        self,
        from_table: Optional[str],
        from_column: Optional[str],
        to_table: Optional[str],
        to_column: Optional[str],
        join_kind: JoinKind = JoinKind.UNKNOWN,
    ) -> Optional[Relationship]:
        """Add a relationship or count another hit on an existing one.

        Both endpoints are created first so a relationship never refers to a
        missing table or column. Returns None if either endpoint is blank.
        """
        src_table = self.get_or_add_table(from_table)
        dst_table = self.get_or_add_table(to_table)
        if src_table is None or dst_table is None:
            return None
        src_column = src_table.get_or_add_column(from_column)
        dst_column = dst_table.get_or_add_column(to_column)
        if src_column is None or dst_column is None:
            return None

        existing = self.find_relationship(
            src_table.name, src_column.name, dst_table.name, dst_column.name
        )
        if existing is not None:
            existing.hit_count += 1
            return existing

        rel = Relationship(
            from_table=src_table.name,
            from_column=src_column.name,
            to_table=dst_table.name,
            to_column=dst_column.name,
            join_kind=join_kind,
        )
        self.relationships.append(rel)
        return rel

    def annotate_relationship(
        self,
        from_table: str,
        from_column: str,
        to_table: str,
        to_column: str,
        from_cardinality: Optional[Cardinality] = None,
        to_cardinality: Optional[Cardinality] = None,
        cross_filter: Optional[CrossFilterDirection] = None,
    ) -> Optional[Relationship]:
        """Attach model metadata to an existing relationship.

        Cardinalities are given relative to the arguments; when the stored
        relationship runs the other way they are swapped.
        """
        rel = self.find_relationship(from_table, from_column, to_table, to_column)
        if rel is None:
            return None
        if rel.from_table_key != normalize_key(from_table) or (
            normalize_key(rel.from_column) != normalize_key(from_column)
        ):
            from_cardinality, to_cardinality = to_cardinality, from_cardinality
        if from_cardinality is not None:
            rel.from_cardinality = from_cardinality
        if to_cardinality is not None:
            rel.to_cardinality = to_cardinality
        if cross_filter is not None:
            rel.cross_filter = cross_filter
        return rel

    def apply_annotations(self, annotations: list[RelationshipAnnotation]) -> int:
        """Annotate every matching relationship; returns how many matched."""
        applied = 0
        for annotation in annotations:
            if self.annotate_relationship(**dict(annotation)) is None:
                logger.debug(
                    "No relationship %s[%s] - %s[%s] to annotate",
                    annotation.from_table, annotation.from_column, annotation.to_table, annotation.to_column,
                )
            else:
                applied += 1
        return applied

    def visible_tables(self) -> list[Table]:
        """Tables shown to users: everything except intermediate results."""
        return [t for t in self.tables.values() if not t.is_intermediate]

    def visible_relationships(self) -> list[Relationship]:
        """Relationships whose both ends are visible tables."""
        visible = {t.key for t in self.visible_tables()}
        return [
            r
            for r in self.relationships
            if r.from_table_key in visible and r.to_table_key in visible
        ]

    def available_query_ids(self) -> list[int]:
        """Sorted ids of every query that touched a visible table."""
        ids: set[int] = set()
        for table in self.visible_tables():
            ids.update(table.query_ids)
        return sorted(ids)

    def tables_for_query(self, query_id: int) -> list[Table]:
        """Visible tables touched by one storage-engine query."""
        return [t for t in self.visible_tables() if query_id in t.query_ids]

    def relationships_for_query(self, query_id: int) -> list[Relationship]:
        """Visible relationships whose both ends were touched by the query."""
        touched = {t.key for t in self.tables_for_query(query_id)}
        return [
            r
            for r in self.visible_relationships()
            if r.from_table_key in touched and r.to_table_key in touched
        ]

    def clear(self) -> None:
        """Reset to the empty state."""
        self.tables.clear()
        self.relationships.clear()
        self.total_queries_analyzed = 0
        self.successfully_parsed_queries = 0
        self.failed_parse_queries = 0
        self.total_cpu_time_ms = 0

    def to_dict(self, query_id: Optional[int] = None) -> dict:
        """Export to a JSON-ready dictionary.

        With ``query_id`` the tables and relationships are narrowed to what
        that query touched; the stats always cover the whole graph.
        """
        if query_id is None:
            tables = list(self.tables.values())
            relationships = self.relationships
        else:
            tables = self.tables_for_query(query_id)
            relationships = self.relationships_for_query(query_id)
        return {
            "tables": [t.to_dict() for t in tables],
            "relationships": [r.to_dict() for r in relationships],
            "query_ids": self.available_query_ids(),
            "stats": {
                "total_queries_analyzed": self.total_queries_analyzed,
                "successfully_parsed_queries": self.successfully_parsed_queries,
                "failed_parse_queries": self.failed_parse_queries,
                "total_cpu_time_ms": self.total_cpu_time_ms,
                "unique_tables": self.unique_tables_count,
                "unique_columns": self.unique_columns_count,
                "unique_relationships": self.unique_relationships_count,
            },
        }
