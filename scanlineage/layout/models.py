"""Layout parameters and results."""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, Field

from scanlineage.layout.routing import Side, route_edge

MIN_CANVAS_SIZE = 100.0


class LayoutAlgorithm(str, enum.Enum):
    COMPACT = "compact"
    LAYERED = "layered"
    CLUSTERED = "clustered"


class LayoutParams(BaseModel):
    """Sizes and tuning knobs shared by every layout algorithm."""

    table_width: float = Field(default=200.0, gt=0)
    table_height: float = Field(default=180.0, gt=0)
    horizontal_spacing: float = Field(default=100.0, ge=0)
    vertical_spacing: float = Field(default=120.0, ge=0)
    padding: float = Field(default=50.0, ge=0)
    # Graphs with more nodes than this are packed by the clustered engine.
    layered_threshold: int = Field(default=50, ge=0)
    # Layered graphs above this size spread unreached nodes over existing layers.
    balance_disconnected_above: int = Field(default=12, ge=0)
    crossing_iterations: int = Field(default=4, ge=0)
    swap_passes: int = Field(default=3, ge=0)
    refinement_iterations: int = Field(default=3, ge=0)


class Box(BaseModel):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


class EdgePath(BaseModel):
    """Endpoints of one relationship line."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    start_x: float = 0.0
    start_y: float = 0.0
    end_x: float = 0.0
    end_y: float = 0.0
    start_side: Side = Side.BOTTOM
    end_side: Side = Side.TOP

    def update(self, boxes: dict[str, Box]) -> None:
        """Recompute the endpoints from the current boxes of both tables."""
        source = boxes.get(self.from_table)
        target = boxes.get(self.to_table)
        if source is None or target is None:
            return
        route = route_edge(source, target)
        self.start_x, self.start_y, self.start_side = route.start_x, route.start_y, route.start_side
        self.end_x, self.end_y, self.end_side = route.end_x, route.end_y, route.end_side

    def to_dict(self) -> dict:
        return {
            "from_table": self.from_table,
            "from_column": self.from_column,
            "to_table": self.to_table,
            "to_column": self.to_column,
            "start_x": self.start_x,
            "start_y": self.start_y,
            "end_x": self.end_x,
            "end_y": self.end_y,
            "start_side": self.start_side.value,
            "end_side": self.end_side.value,
        }


class LayoutResult(BaseModel):
    """Positions for every table plus the derived relationship endpoints.

    A disposable projection of the lineage graph: it can always be computed
    again from the graph and the parameters.
    """

    algorithm: LayoutAlgorithm
    boxes: dict[str, Box] = Field(default_factory=dict)
    edges: list[EdgePath] = Field(default_factory=list)
    layers: list[list[str]] = Field(default_factory=list)
    canvas_width: float = MIN_CANVAS_SIZE
    canvas_height: float = MIN_CANVAS_SIZE
    padding: float = 50.0

    def update_edges(self, table: Optional[str] = None) -> None:
        """Recompute edge endpoints, only those touching ``table`` if given."""
        for edge in self.edges:
            if table is None or table in (edge.from_table, edge.to_table):
                edge.update(self.boxes)

    def fit_canvas(self) -> None:
        """Canvas = bounding box of all boxes plus padding."""
        if not self.boxes:
            self.canvas_width = MIN_CANVAS_SIZE
            self.canvas_height = MIN_CANVAS_SIZE
            return
        self.canvas_width = max(MIN_CANVAS_SIZE, max(b.right for b in self.boxes.values()) + self.padding)
        self.canvas_height = max(MIN_CANVAS_SIZE, max(b.bottom for b in self.boxes.values()) + self.padding)

    def move_box(self, table: str, x: float, y: float) -> None:
        """Move one table, keeping it on the canvas, and reroute its edges."""
        box = self.boxes[table]
        box.x = max(0.0, x)
        box.y = max(0.0, y)
        self.update_edges(table)
        self.canvas_width = max(self.canvas_width, box.right + self.padding)
        self.canvas_height = max(self.canvas_height, box.bottom + self.padding)

    def to_dict(self) -> dict:
        return {
            "algorithm": self.algorithm.value,
            "canvas_width": self.canvas_width,
            "canvas_height": self.canvas_height,
            "tables": {name: box.to_dict() for name, box in self.boxes.items()},
            "relationships": [edge.to_dict() for edge in self.edges],
            "layers": [list(layer) for layer in self.layers],
        }
