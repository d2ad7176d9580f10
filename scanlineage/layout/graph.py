"""Read-only node/edge view of a lineage graph used by the layout engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from scanlineage.core.models import Cardinality, LineageGraph, Table, normalize_key

ImportanceFn = Callable[[Table], float]


def hit_count_importance(table: Table) -> float:
    return float(table.hit_count)


def cpu_importance(table: Table) -> float:
    """CPU time first, hit count as a small tie-breaker."""
    return table.total_cpu_time_ms + table.hit_count / 1000.0


@dataclass(frozen=True)
class LayoutNode:
    key: str
    name: str
    importance: float = 0.0


@dataclass(frozen=True)
class LayoutEdge:
    source: str
    target: str
    source_column: str = ""
    target_column: str = ""
    source_cardinality: Optional[Cardinality] = None
    target_cardinality: Optional[Cardinality] = None

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


@dataclass
class LayoutGraph:
    """Nodes in a fixed, deterministic order plus the edges between them.

    Node order is descending importance then name, so identical graphs always
    produce identical layouts regardless of the order tables were discovered.
    """

    nodes: list[LayoutNode]
    edges: list[LayoutEdge] = field(default_factory=list)

    def __post_init__(self) -> None:
        unique: dict[str, LayoutNode] = {}
        for node in self.nodes:
            unique.setdefault(node.key, node)
        self.nodes = sorted(unique.values(), key=lambda n: (-n.importance, n.key))
        self.index = {node.key: i for i, node in enumerate(self.nodes)}
        self.by_key = {node.key: node for node in self.nodes}
        self.edges = sorted(
            (e for e in self.edges if e.source in self.index and e.target in self.index),
            key=lambda e: (self.index[e.source], self.index[e.target], e.source_column, e.target_column),
        )

        neighbor_sets: dict[str, set[str]] = {node.key: set() for node in self.nodes}
        for edge in self.edges:
            if edge.is_self_loop:
                continue
            neighbor_sets[edge.source].add(edge.target)
            neighbor_sets[edge.target].add(edge.source)
        self.neighbor_sets = neighbor_sets
        # Lists follow node order so traversals never depend on set ordering.
        self.neighbors = {
            key: sorted(members, key=self.index.__getitem__)
            for key, members in neighbor_sets.items()
        }

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def keys(self) -> list[str]:
        return [node.key for node in self.nodes]

    def name(self, key: str) -> str:
        return self.by_key[key].name

    def importance(self, key: str) -> float:
        return self.by_key[key].importance

    def degree(self, key: str) -> int:
        return len(self.neighbor_sets[key])

    @classmethod
    def from_lineage(
        cls,
        graph: LineageGraph,
        importance: Optional[ImportanceFn] = None,
        query_id: Optional[int] = None,
    ) -> LayoutGraph:
        """Build the view from the visible tables and relationships of a lineage graph.

        With ``query_id`` only the tables and relationships that one query
        touched are included.
        """
        if importance is None:
            importance = hit_count_importance
        if query_id is None:
            tables = graph.visible_tables()
            relationships = graph.visible_relationships()
        else:
            tables = graph.tables_for_query(query_id)
            relationships = graph.relationships_for_query(query_id)
        nodes = [
            LayoutNode(key=t.key, name=t.name, importance=importance(t))
            for t in tables
        ]
        edges = [
            LayoutEdge(
                source=r.from_table_key,
                target=r.to_table_key,
                source_column=r.from_column,
                target_column=r.to_column,
                source_cardinality=r.from_cardinality,
                target_cardinality=r.to_cardinality,
            )
            for r in relationships
        ]
        return cls(nodes=nodes, edges=edges)

    @classmethod
    def from_names(
        cls,
        names: list[str],
        edges: list[tuple] = (),
        importance: Optional[dict[str, float]] = None,
    ) -> LayoutGraph:
        """Build a plain graph from table names and name pairs.

        Each edge is ``(source, target)`` or
        ``(source, target, source_cardinality, target_cardinality)``.
        """
        importance = importance or {}
        nodes = [
            LayoutNode(key=normalize_key(n), name=n, importance=importance.get(n, 0.0))
            for n in names
        ]
        return cls(
            nodes=nodes,
            edges=[_edge_from_tuple(edge) for edge in edges],
        )


def _edge_from_tuple(edge: tuple) -> LayoutEdge:
    source, target, *cardinality = edge
    if cardinality and len(cardinality) != 2:
        raise ValueError(f"edge must have 2 or 4 items, got {len(edge)}")
    source_cardinality, target_cardinality = cardinality or (None, None)
    return LayoutEdge(
        source=normalize_key(source),
        target=normalize_key(target),
        source_cardinality=None if source_cardinality is None else Cardinality(source_cardinality),
        target_cardinality=None if target_cardinality is None else Cardinality(target_cardinality),
    )
