"""Tests for the FastAPI backend."""

import json

import pytest
from httpx import AsyncClient, ASGITransport
from scanlineage.api.server import app


JOIN_SCAN = (
    "SELECT 'Sales'[Amount] FROM 'Sales' "
    "LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey];"
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.mark.anyio
async def test_list_heat_modes():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        res = await client.get("/api/heat-modes")
        assert res.status_code == 200
        assert res.json() == {"heat_modes": ["hits", "cpu"]}


@pytest.mark.anyio
async def test_analyze_single_file():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        files = [("files", ("capture.txt", JOIN_SCAN.encode(), "text/plain"))]
        res = await client.post("/api/analyze", files=files, data={"heat_mode": "hits"})
        assert res.status_code == 200
        data = res.json()
        assert data["stats"]["unique_tables"] == 2
        assert data["stats"]["successfully_parsed_queries"] == 1
        assert data["relationships"][0]["join_kind"] == "left_outer_join"
        assert set(data["metrics"]) == {"Sales", "Product"}
        assert data["files"] == ["capture.txt"]


@pytest.mark.anyio
async def test_analyze_multi_file_json_lines():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        lines = "\n".join([
            json.dumps({"query": "SELECT 'A'[x] FROM 'A'", "cpuTimeMs": 30}),
            json.dumps({"query": "SELECT 'B'[y] FROM 'B'", "cpuTimeMs": 10}),
        ])
        files = [
            ("files", ("one.jsonl", lines.encode(), "application/json")),
            ("files", ("two.txt", JOIN_SCAN.encode(), "text/plain")),
        ]
        res = await client.post("/api/analyze", files=files, data={"heat_mode": "cpu"})
        assert res.status_code == 200
        data = res.json()
        assert data["stats"]["unique_tables"] == 4
        assert data["metrics"]["A"]["heat_level"] == 1.0
        assert data["metrics"]["A"]["cpu_percentage"] == 75.0
        assert len(data["files"]) == 2


@pytest.mark.anyio
async def test_analyze_unknown_heat_mode():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        files = [("files", ("capture.txt", JOIN_SCAN.encode(), "text/plain"))]
        res = await client.post("/api/analyze", files=files, data={"heat_mode": "colour"})
        assert res.status_code == 422


@pytest.mark.anyio
async def test_layout():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        body = {
            "events": [{"query": JOIN_SCAN, "durationMs": 12}],
            "params": {"padding": 10},
        }
        res = await client.post("/api/layout", json=body)
        assert res.status_code == 200
        data = res.json()
        layout = data["layout"]
        assert layout["algorithm"] == "compact"
        assert set(layout["tables"]) == {"Sales", "Product"}
        assert layout["tables"]["Sales"]["x"] == 10
        assert len(layout["relationships"]) == 1
        # equal durations: the name decides
        assert data["metrics"]["Product"]["bottleneck_rank"] == 1
        assert data["metrics"]["Sales"]["bottleneck_rank"] is None


@pytest.mark.anyio
async def test_layout_invalid_params():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        res = await client.post("/api/layout", json={"events": [], "params": {"table_width": 0}})
        assert res.status_code == 422


DIMENSIONS = ["Area", "Brand", "City", "Year", "Zone"]


def star_events():
    return [
        {
            "query": (
                f"SELECT 'Sales'[Amount] FROM 'Sales' "
                f"LEFT OUTER JOIN '{dim}' ON 'Sales'[{dim}Key]='{dim}'[{dim}Key];"
            ),
            "queryId": i + 1,
            "durationMs": 5,
        }
        for i, dim in enumerate(DIMENSIONS)
    ]


@pytest.mark.anyio
async def test_layout_with_relationship_cardinality():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        body = {
            "events": star_events(),
            "relationships": [
                {
                    "from_table": "Sales",
                    "from_column": f"{dim}Key",
                    "to_table": dim,
                    "to_column": f"{dim}Key",
                    "from_cardinality": "many",
                    "to_cardinality": "one",
                }
                for dim in DIMENSIONS
            ],
        }
        res = await client.post("/api/layout", json=body)
        assert res.status_code == 200
        data = res.json()
        layers = data["layout"]["layers"]
        assert sorted(layers[0]) == DIMENSIONS
        assert layers[1] == ["Sales"]
        assert data["relationships"][0]["to_cardinality"] == "one"


@pytest.mark.anyio
async def test_layout_for_one_query():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        res = await client.post("/api/layout", json={"events": star_events(), "query_id": 4})
        assert res.status_code == 200
        data = res.json()
        assert data["query_ids"] == [1, 2, 3, 4, 5]
        assert set(data["layout"]["tables"]) == {"Sales", "Year"}
        assert [t["name"] for t in data["tables"]] == ["Sales", "Year"]
        assert set(data["metrics"]) == {"Sales", "Year"}


@pytest.mark.anyio
async def test_layout_unknown_query_id():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        res = await client.post("/api/layout", json={"events": star_events(), "query_id": 42})
        assert res.status_code == 422


@pytest.mark.anyio
async def test_analyze_for_one_query():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        lines = "\n".join(json.dumps(event) for event in star_events())
        files = [("files", ("star.jsonl", lines.encode(), "application/json"))]
        res = await client.post("/api/analyze", files=files, data={"query_id": "2"})
        assert res.status_code == 200
        data = res.json()
        assert [t["name"] for t in data["tables"]] == ["Sales", "Brand"]
        assert data["relationships"][0]["to_table"] == "Brand"
        assert data["stats"]["unique_tables"] == 6
