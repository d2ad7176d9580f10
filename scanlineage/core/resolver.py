"""Batch resolver: feeds many scan events or capture files into one lineage graph."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from scanlineage.core.extractor import LineageExtractor
from scanlineage.core.models import LineageGraph
from scanlineage.core.parser import ScanEvent, parse_events, parse_file

logger = logging.getLogger(__name__)


def resolve_events(
    events: Iterable[ScanEvent],
    graph: Optional[LineageGraph] = None,
    extractor: Optional[LineageExtractor] = None,
) -> LineageGraph:
    """Parse scan events into a graph.

    Events whose text is not a scan (no SELECT/FROM, e.g. ``SET DC_KIND``
    preambles on their own) are skipped. Each scan event's metrics are applied
    to the tables it touched.

    Args:
        events: Events to parse, in order.
        graph: Graph to accumulate into; a new one is created if omitted.
        extractor: Extractor to use; a default one if omitted.

    Returns:
        The graph holding the accumulated lineage.
    """
    if graph is None:
        graph = LineageGraph()
    if extractor is None:
        extractor = LineageExtractor()

    skipped = 0
    for event in events:
        if not event.is_scan:
            skipped += 1
            continue
        extractor.parse(event.query, graph, event.metrics())

    if skipped:
        logger.debug("Skipped %d non-scan events", skipped)
    return graph


def resolve_files(
    file_paths: list[str | Path],
    graph: Optional[LineageGraph] = None,
) -> LineageGraph:
    """Parse multiple capture files into one graph.

    A file that cannot be read or decoded is logged and skipped; the
    remaining files are still processed.

    Args:
        file_paths: Paths to plain-text or JSON-lines captures.
        graph: Graph to accumulate into; a new one is created if omitted.

    Returns:
        A LineageGraph with the lineage of every readable file.
    """
    if graph is None:
        graph = LineageGraph()
    extractor = LineageExtractor()

    for file_path in file_paths:
        path = Path(file_path)
        try:
            events = parse_file(path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # Log and keep processing the other files
            logger.warning("Error processing %s: %s", path.name, e)
            continue
        resolve_events(events, graph=graph, extractor=extractor)

    return graph


def resolve_strings(
    captures: list[tuple[str, str]],
    graph: Optional[LineageGraph] = None,
) -> LineageGraph:
    """Parse several in-memory captures into one graph.

    Args:
        captures: List of (name, content) tuples.
        graph: Graph to accumulate into; a new one is created if omitted.

    Returns:
        A unified LineageGraph.
    """
    if graph is None:
        graph = LineageGraph()
    extractor = LineageExtractor()

    for name, content in captures:
        try:
            events = parse_events(content)
        except ValueError as e:
            logger.warning("Error processing %s: %s", name, e)
            continue
        resolve_events(events, graph=graph, extractor=extractor)

    return graph
