"""Pick a layout algorithm for a graph and produce the position map."""

from __future__ import annotations

import logging
from typing import Optional, Union

from scanlineage.core.models import LineageGraph
from scanlineage.layout.clustered import clustered_layout
from scanlineage.layout.graph import ImportanceFn, LayoutGraph
from scanlineage.layout.layered import layered_layout
from scanlineage.layout.models import EdgePath, LayoutAlgorithm, LayoutParams, LayoutResult

logger = logging.getLogger(__name__)


def compute_layout(
    graph: Union[LineageGraph, LayoutGraph],
    params: Optional[LayoutParams] = None,
    importance: Optional[ImportanceFn] = None,
    query_id: Optional[int] = None,
) -> LayoutResult:
    """Compute table boxes and relationship endpoints for a graph.

    Graphs up to ``params.layered_threshold`` nodes get the layered layout
    (or a compact arrangement when tiny); larger ones the clustered grid.
    The input graph is only read. With ``query_id`` a lineage graph is
    narrowed to the tables and relationships that query touched.
    """
    params = params or LayoutParams()
    if isinstance(graph, LineageGraph):
        view = LayoutGraph.from_lineage(graph, importance, query_id)
    else:
        view = graph

    if not view.nodes:
        return LayoutResult(algorithm=LayoutAlgorithm.LAYERED, padding=params.padding)

    if len(view) <= params.layered_threshold:
        algorithm, layers, boxes = layered_layout(view, params)
    else:
        algorithm = LayoutAlgorithm.CLUSTERED
        layers, boxes = clustered_layout(view, params)
    logger.debug("Laid out %d tables with the %s algorithm", len(view), algorithm.value)

    result = LayoutResult(
        algorithm=algorithm,
        boxes={view.name(key): box for key, box in boxes.items()},
        layers=[[view.name(key) for key in layer] for layer in layers],
        edges=[
            EdgePath(
                from_table=view.name(edge.source),
                from_column=edge.source_column,
                to_table=view.name(edge.target),
                to_column=edge.target_column,
            )
            for edge in view.edges
        ],
        padding=params.padding,
    )
    result.update_edges()
    result.fit_canvas()
    return result
