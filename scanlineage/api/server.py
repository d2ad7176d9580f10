"""FastAPI backend exposing scan analysis and diagram layout as JSON."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from scanlineage.core.metrics import HeatMapMode, table_metrics
from scanlineage.core.models import LineageGraph, RelationshipAnnotation
from scanlineage.core.parser import ScanEvent
from scanlineage.core.resolver import resolve_events, resolve_strings
from scanlineage.layout.engine import compute_layout
from scanlineage.layout.graph import cpu_importance, hit_count_importance
from scanlineage.layout.models import LayoutParams

app = FastAPI(
    title="Scan Lineage",
    description="Extract table lineage from storage-engine scans and lay it out",
    version="0.1.0",
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class LayoutRequest(BaseModel):
    events: list[ScanEvent] = Field(default_factory=list)
    relationships: list[RelationshipAnnotation] = Field(default_factory=list)
    params: LayoutParams = Field(default_factory=LayoutParams)
    heat_mode: HeatMapMode = HeatMapMode.HIT_COUNT
    query_id: Optional[int] = None


def _check_query_id(graph: LineageGraph, query_id: Optional[int]) -> None:
    if query_id is not None and query_id not in graph.available_query_ids():
        raise HTTPException(status_code=422, detail=f"Unknown query id: {query_id}")


def _graph_response(graph: LineageGraph, mode: HeatMapMode, query_id: Optional[int] = None) -> dict:
    data = graph.to_dict(query_id)
    tables = graph.visible_tables() if query_id is None else graph.tables_for_query(query_id)
    data["metrics"] = table_metrics(tables, graph.total_cpu_time_ms, mode)
    return data


@app.get("/api/heat-modes")
async def list_heat_modes():
    """Return the metrics tables can be coloured by."""
    return {"heat_modes": [m.value for m in HeatMapMode]}


@app.post("/api/analyze")
async def analyze(
    files: list[UploadFile] = File(...),
    heat_mode: Optional[str] = Form("hits"),
    query_id: Optional[int] = Form(None),
):
    """Analyze uploaded capture files and return the lineage graph.

    Each upload is either plain text (blank-line separated scans) or JSON
    lines with per-scan metrics.
    """
    try:
        mode = HeatMapMode(heat_mode or HeatMapMode.HIT_COUNT.value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown heat mode: {heat_mode}")

    captures: list[tuple[str, str]] = []
    for upload_file in files:
        content = await upload_file.read()
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail=f"{upload_file.filename} is not UTF-8 text")
        captures.append((upload_file.filename or "capture.txt", text))

    graph = resolve_strings(captures)
    _check_query_id(graph, query_id)

    data = _graph_response(graph, mode, query_id)
    data["files"] = [name for name, _ in captures]
    return data


@app.post("/api/layout")
async def layout(request: LayoutRequest):
    """Parse the given scan events and return graph, metrics and layout.

    Relationship annotations carry the model's cardinality and cross-filter
    direction; annotations for joins the scans never showed are ignored.
    """
    graph = resolve_events(request.events)
    _check_query_id(graph, request.query_id)
    graph.apply_annotations(request.relationships)
    importance = cpu_importance if request.heat_mode == HeatMapMode.CPU_TIME else hit_count_importance
    result = compute_layout(graph, request.params, importance, request.query_id)

    data = _graph_response(graph, request.heat_mode, request.query_id)
    data["layout"] = result.to_dict()
    return data
