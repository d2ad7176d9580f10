"""Grid packing of connected components for large graphs."""

from __future__ import annotations

import math
from collections import deque

from scanlineage.layout.graph import LayoutGraph
from scanlineage.layout.models import Box, LayoutParams

MIN_TARGET_COLUMNS = 8
MAX_TARGET_COLUMNS = 20


def connected_components(graph: LayoutGraph) -> list[list[str]]:
    """Connected components, largest first; equal sizes keep discovery order."""
    seen: set[str] = set()
    components = []
    for start in graph.keys:
        if start in seen:
            continue
        seen.add(start)
        component = []
        queue = deque([start])
        while queue:
            key = queue.popleft()
            component.append(key)
            for neighbor in graph.neighbors[key]:
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        components.append(component)
    components.sort(key=len, reverse=True)
    return components


def target_columns(node_count: int) -> int:
    wanted = math.ceil(math.sqrt(node_count * 1.5))
    return max(MIN_TARGET_COLUMNS, min(MAX_TARGET_COLUMNS, wanted))


def component_columns(size: int, target: int) -> int:
    if size <= 3:
        return size
    if size <= 12:
        return math.ceil(math.sqrt(size))
    return min(target, math.ceil(math.sqrt(size * 1.5)))


def clustered_layout(graph: LayoutGraph, params: LayoutParams) -> tuple[list[list[str]], dict[str, Box]]:
    """Pack each component into its own small grid, components left to right.

    Within a component the best connected tables come first. A component
    that would overflow the target width starts a new band below the
    tallest component of the current band. Returns the components and the
    boxes keyed by node key.
    """
    components = connected_components(graph)
    target = target_columns(len(graph))
    step_x = params.table_width + params.horizontal_spacing
    step_y = params.table_height + params.vertical_spacing

    boxes: dict[str, Box] = {}
    col_cursor = 0
    row_cursor = 0
    band_rows = 0
    for component in components:
        cols = component_columns(len(component), target)
        rows = math.ceil(len(component) / cols)
        if col_cursor > 0 and col_cursor + cols > target:
            row_cursor += band_rows
            col_cursor = 0
            band_rows = 0

        members = sorted(component, key=lambda k: (-graph.degree(k), k))
        for i, key in enumerate(members):
            col = col_cursor + i % cols
            row = row_cursor + i // cols
            boxes[key] = Box(
                x=params.padding + col * step_x,
                y=params.padding + row * step_y,
                width=params.table_width,
                height=params.table_height,
            )

        col_cursor += cols
        band_rows = max(band_rows, rows)

    return components, boxes
