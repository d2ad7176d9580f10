"""Relationship line routing between two table boxes."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scanlineage.layout.models import Box


class Side(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Route:
    start_x: float
    start_y: float
    start_side: Side
    end_x: float
    end_y: float
    end_side: Side


def _anchor(box: Box, side: Side) -> tuple[float, float]:
    if side == Side.LEFT:
        return box.x, box.y + box.height / 2
    if side == Side.RIGHT:
        return box.x + box.width, box.y + box.height / 2
    if side == Side.TOP:
        return box.x + box.width / 2, box.y
    return box.x + box.width / 2, box.y + box.height


def _route(source: Box, start: Side, target: Box, end: Side) -> Route:
    sx, sy = _anchor(source, start)
    ex, ey = _anchor(target, end)
    return Route(sx, sy, start, ex, ey, end)


def route_edge(source: Box, target: Box) -> Route:
    """Attach a line to the sides of the two boxes that face each other.

    Stacked boxes connect bottom to top, side-by-side boxes right to left;
    otherwise the dominant axis between the box centres decides.
    """
    dx = (target.x + target.width / 2) - (source.x + source.width / 2)
    dy = (target.y + target.height / 2) - (source.y + source.height / 2)

    overlap_x = source.x < target.x + target.width and source.x + source.width > target.x
    overlap_y = source.y < target.y + target.height and source.y + source.height > target.y

    if overlap_x and not overlap_y:
        if dy > 0:
            return _route(source, Side.BOTTOM, target, Side.TOP)
        return _route(source, Side.TOP, target, Side.BOTTOM)
    if overlap_y and not overlap_x:
        if dx > 0:
            return _route(source, Side.RIGHT, target, Side.LEFT)
        return _route(source, Side.LEFT, target, Side.RIGHT)
    if abs(dx) > abs(dy):
        if dx > 0:
            return _route(source, Side.RIGHT, target, Side.LEFT)
        return _route(source, Side.LEFT, target, Side.RIGHT)
    if dy > 0:
        return _route(source, Side.BOTTOM, target, Side.TOP)
    return _route(source, Side.TOP, target, Side.BOTTOM)
