"""Scan Lineage: extract table lineage from storage-engine scans and lay it out."""

__version__ = "0.1.0"

from scanlineage.core.models import (
    Column,
    ColumnUsage,
    JoinKind,
    LineageGraph,
    QueryMetrics,
    Relationship,
    RelationshipAnnotation,
    Table,
)
from scanlineage.core.extractor import LineageExtractor, extract_lineage
from scanlineage.core.resolver import resolve_files
from scanlineage.layout.engine import compute_layout
from scanlineage.layout.models import LayoutParams, LayoutResult

__all__ = [
    "Table",
    "Column",
    "ColumnUsage",
    "JoinKind",
    "Relationship",
    "RelationshipAnnotation",
    "LineageGraph",
    "QueryMetrics",
    "LineageExtractor",
    "extract_lineage",
    "resolve_files",
    "compute_layout",
    "LayoutParams",
    "LayoutResult",
]
