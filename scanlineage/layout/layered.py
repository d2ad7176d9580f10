"""Layered (Sugiyama-style) layout for small and medium graphs.

Stages, each a transform over the previous stage's output:

1. layer assignment (one side above many side, BFS depth from roots)
2. crossing minimization (median sweeps, then adjacent swaps)
3. coordinate assignment (left-to-right, then damped pulls toward neighbours)
4. centering of every layer against the widest one
5. canvas sizing

Graphs of at most four nodes and three edges use fixed arrangements instead.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

from scanlineage.core.models import Cardinality
from scanlineage.layout.graph import LayoutGraph
from scanlineage.layout.models import Box, LayoutAlgorithm, LayoutParams

logger = logging.getLogger(__name__)

Layers = list[list[str]]

COMPACT_MAX_NODES = 4
COMPACT_MAX_EDGES = 3


def orient_edges(graph: LayoutGraph) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Direct every edge from its "one" side to its "many" side.

    Edges without a clear one-to-many cardinality point from the
    alphabetically smaller table to the larger one. Returns (children, parents).
    """
    children: dict[str, list[str]] = {key: [] for key in graph.keys}
    parents: dict[str, list[str]] = {key: [] for key in graph.keys}

    for edge in graph.edges:
        if edge.is_self_loop:
            continue
        if edge.source_cardinality == Cardinality.ONE and edge.target_cardinality == Cardinality.MANY:
            src, dst = edge.source, edge.target
        elif edge.target_cardinality == Cardinality.ONE and edge.source_cardinality == Cardinality.MANY:
            src, dst = edge.target, edge.source
        else:
            src, dst = sorted((edge.source, edge.target))

        if dst not in children[src]:
            children[src].append(dst)
            parents[dst].append(src)

    return children, parents


def assign_layers(graph: LayoutGraph, balance_disconnected: bool = False) -> Layers:
    """Assign each node a layer equal to its BFS depth from a root.

    Roots are nodes with no parent. A graph where every node has a parent
    (a cycle) uses the top third of nodes by out-degree instead. Nodes no
    traversal reaches go to a trailing layer, or round-robin into the
    smallest layers when ``balance_disconnected`` is set.
    """
    if not graph.nodes:
        return []

    children, parents = orient_edges(graph)
    order = graph.keys

    roots = [key for key in order if not parents[key]]
    if not roots:
        ranked = sorted(order, key=lambda k: (-len(children[k]), len(parents[k])))
        roots = ranked[: max(1, len(order) // 3)]
        logger.debug("No root tables (cyclic graph); using %d synthetic roots", len(roots))

    layers: Layers = []
    visited = set(roots)
    queue = deque((root, 0) for root in roots)
    while queue:
        key, depth = queue.popleft()
        while len(layers) <= depth:
            layers.append([])
        layers[depth].append(key)
        for child in children[key]:
            if child not in visited:
                visited.add(child)
                queue.append((child, depth + 1))

    unreached = [key for key in order if key not in visited]
    if unreached:
        if balance_disconnected and layers:
            _distribute_round_robin(layers, unreached)
        else:
            layers.append(unreached)
    return layers


def _distribute_round_robin(layers: Layers, keys: list[str]) -> None:
    smallest = min(range(len(layers)), key=lambda i: len(layers[i]))
    index = smallest
    for key in keys:
        layers[index].append(key)
        index = (index + 1) % len(layers)


def _median_position(
    key: str,
    reference: list[str],
    graph: LayoutGraph,
    max_importance: float,
) -> float:
    neighbors = graph.neighbor_sets[key]
    positions = [i for i, ref in enumerate(reference) if ref in neighbors]
    if not positions:
        # Unconnected nodes sit in the middle, the more important ones closer to it.
        return len(reference) / 2.0 + (1.0 - graph.importance(key) / max(1.0, max_importance)) * 0.1
    mid = len(positions) // 2
    if len(positions) % 2 == 1:
        return float(positions[mid])
    return (positions[mid - 1] + positions[mid]) / 2.0


def order_by_median(layer: list[str], reference: list[str], graph: LayoutGraph) -> list[str]:
    """Order a layer by the median index of each node's neighbours in ``reference``.

    Ties go to the more important node, then to the name.
    """
    max_importance = max((graph.importance(k) for k in graph.keys), default=0.0)
    medians = {key: _median_position(key, reference, graph, max_importance) for key in layer}
    return sorted(layer, key=lambda k: (medians[k], -graph.importance(k), k))


def _crossings_between(
    first: str, first_pos: int, second: str, second_pos: int, adjacent: list[str], graph: LayoutGraph
) -> int:
    first_targets = [i for i, key in enumerate(adjacent) if key in graph.neighbor_sets[first]]
    second_targets = [i for i, key in enumerate(adjacent) if key in graph.neighbor_sets[second]]
    crossings = 0
    for a in first_targets:
        for b in second_targets:
            if (first_pos < second_pos and a > b) or (first_pos > second_pos and a < b):
                crossings += 1
    return crossings


def count_pair_crossings(
    layer: list[str],
    pos: int,
    upper: Optional[list[str]],
    lower: Optional[list[str]],
    graph: LayoutGraph,
) -> int:
    """Crossings between the edges of layer[pos] and layer[pos + 1]."""
    first, second = layer[pos], layer[pos + 1]
    crossings = 0
    for adjacent in (upper, lower):
        if adjacent is not None:
            crossings += _crossings_between(first, pos, second, pos + 1, adjacent, graph)
    return crossings


def reduce_crossings_with_swaps(layers: Layers, graph: LayoutGraph, max_passes: int = 3) -> Layers:
    """Swap adjacent nodes when that strictly lowers their crossing count."""
    layers = [list(layer) for layer in layers]
    improved = True
    passes = 0
    while improved and passes < max_passes:
        improved = False
        passes += 1
        for index, layer in enumerate(layers):
            upper = layers[index - 1] if index > 0 else None
            lower = layers[index + 1] if index < len(layers) - 1 else None
            for pos in range(len(layer) - 1):
                before = count_pair_crossings(layer, pos, upper, lower, graph)
                layer[pos], layer[pos + 1] = layer[pos + 1], layer[pos]
                after = count_pair_crossings(layer, pos, upper, lower, graph)
                if after < before:
                    improved = True
                else:
                    layer[pos], layer[pos + 1] = layer[pos + 1], layer[pos]
    return layers


def minimize_crossings(
    layers: Layers,
    graph: LayoutGraph,
    iterations: int = 4,
    swap_passes: int = 3,
) -> Layers:
    """Alternate downward and upward median sweeps, then the swap pass."""
    layers = [list(layer) for layer in layers]
    if len(layers) < 2:
        return layers

    for _ in range(iterations):
        for i in range(1, len(layers)):
            layers[i] = order_by_median(layers[i], layers[i - 1], graph)
        for i in range(len(layers) - 2, -1, -1):
            layers[i] = order_by_median(layers[i], layers[i + 1], graph)

    return reduce_crossings_with_swaps(layers, graph, swap_passes)


def _adjust_layer(
    layer: list[str],
    reference: list[str],
    xs: dict[str, float],
    graph: LayoutGraph,
    params: LayoutParams,
) -> None:
    width = params.table_width
    step = width + params.horizontal_spacing
    max_move = step / 2

    targets: dict[str, float] = {}
    for key in layer:
        connected = [ref for ref in reference if ref in graph.neighbor_sets[key]]
        if connected:
            targets[key] = sum(xs[ref] + width / 2 for ref in connected) / len(connected) - width / 2

    ordered = sorted(layer, key=lambda k: xs[k])
    for i, key in enumerate(ordered):
        min_x = params.padding if i == 0 else xs[ordered[i - 1]] + step
        current = xs[key]
        if key in targets:
            wanted = max(min_x, targets[key])
            move = min(abs(wanted - current), max_move)
            if wanted > current:
                xs[key] = max(min_x, current + move)
            elif wanted < current:
                xs[key] = max(min_x, current - move)
        elif current < min_x:
            xs[key] = min_x


def assign_coordinates(layers: Layers, graph: LayoutGraph, params: LayoutParams) -> dict[str, Box]:
    """Place each layer left to right, then pull nodes toward their neighbours."""
    step = params.table_width + params.horizontal_spacing
    xs: dict[str, float] = {}
    for layer in layers:
        for i, key in enumerate(layer):
            xs[key] = params.padding + i * step

    for _ in range(params.refinement_iterations):
        for i in range(1, len(layers)):
            _adjust_layer(layers[i], layers[i - 1], xs, graph, params)
        for i in range(len(layers) - 2, -1, -1):
            _adjust_layer(layers[i], layers[i + 1], xs, graph, params)

    boxes = {}
    for index, layer in enumerate(layers):
        y = params.padding + index * (params.table_height + params.vertical_spacing)
        for key in layer:
            boxes[key] = Box(x=xs[key], y=y, width=params.table_width, height=params.table_height)
    return boxes


def center_layers(layers: Layers, boxes: dict[str, Box]) -> dict[str, Box]:
    """Shift every layer so it is centred under the widest layer."""
    spans = {}
    for index, layer in enumerate(layers):
        if layer:
            left = min(boxes[k].x for k in layer)
            right = max(boxes[k].right for k in layer)
            spans[index] = right - left
    if not spans:
        return dict(boxes)

    widest = max(spans.values())
    centered = dict(boxes)
    for index, span in spans.items():
        offset = (widest - span) / 2
        for key in layers[index]:
            box = boxes[key]
            centered[key] = box.model_copy(update={"x": box.x + offset})
    return centered


def compact_arrangement(graph: LayoutGraph, params: LayoutParams) -> dict[str, Box]:
    """Fixed arrangements for one to four nodes.

    1: alone; 2: stacked when connected, otherwise side by side;
    3: inverted triangle with the most connected node below;
    4: 2x2 grid with the most connected node bottom-left.
    """
    ranked = sorted(graph.keys, key=lambda k: (-graph.degree(k), -graph.importance(k), k))
    w, h = params.table_width, params.table_height
    p = params.padding
    col2 = p + w + params.horizontal_spacing
    row2 = p + h + params.vertical_spacing

    def box(x: float, y: float) -> Box:
        return Box(x=x, y=y, width=w, height=h)

    count = len(ranked)
    if count == 0:
        return {}
    if count == 1:
        return {ranked[0]: box(p, p)}
    if count == 2:
        first, second = ranked
        if second in graph.neighbor_sets[first]:
            return {first: box(p, p), second: box(p, row2)}
        return {first: box(p, p), second: box(col2, p)}
    if count == 3:
        total_width = 2 * w + params.horizontal_spacing
        return {
            ranked[1]: box(p, p),
            ranked[2]: box(col2, p),
            ranked[0]: box(p + (total_width - w) / 2, row2),
        }
    return {
        ranked[1]: box(p, p),
        ranked[2]: box(col2, p),
        ranked[0]: box(p, row2),
        ranked[3]: box(col2, row2),
    }


def is_compact(graph: LayoutGraph) -> bool:
    return len(graph.nodes) <= COMPACT_MAX_NODES and len(graph.edges) <= COMPACT_MAX_EDGES


def layered_layout(graph: LayoutGraph, params: LayoutParams) -> tuple[LayoutAlgorithm, Layers, dict[str, Box]]:
    """Run the layered pipeline (or a compact arrangement for tiny graphs).

    Returns the algorithm actually used, the final layers and the boxes keyed
    by node key.
    """
    if is_compact(graph):
        boxes = compact_arrangement(graph, params)
        rows: dict[float, list[str]] = {}
        for key, b in sorted(boxes.items(), key=lambda item: (item[1].y, item[1].x)):
            rows.setdefault(b.y, []).append(key)
        return LayoutAlgorithm.COMPACT, list(rows.values()), boxes

    balance = len(graph.nodes) > params.balance_disconnected_above
    layers = assign_layers(graph, balance_disconnected=balance)
    layers = minimize_crossings(layers, graph, params.crossing_iterations, params.swap_passes)
    boxes = assign_coordinates(layers, graph, params)
    boxes = center_layers(layers, boxes)
    return LayoutAlgorithm.LAYERED, layers, boxes
