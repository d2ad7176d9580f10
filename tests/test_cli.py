"""Tests for the command line interface."""

import json

import pytest
from scanlineage.cli import main


@pytest.fixture
def capture(tmp_path):
    path = tmp_path / "capture.txt"
    path.write_text(
        "SELECT 'Sales'[Amount], SUM ( 'Sales'[Amount] ) FROM 'Sales' "
        "LEFT OUTER JOIN 'Product' ON 'Sales'[ProductKey]='Product'[ProductKey];\n\n"
        "SELECT 'Product'[Color] FROM 'Product' WHERE 'Product'[Category] = 'Bikes';\n"
    )
    return path


@pytest.fixture
def star_capture(tmp_path):
    dims = ["Area", "Brand", "City", "Year", "Zone"]
    path = tmp_path / "star.jsonl"
    path.write_text("\n".join(
        json.dumps({
            "query": (
                f"SELECT 'Sales'[Amount] FROM 'Sales' "
                f"LEFT OUTER JOIN '{dim}' ON 'Sales'[{dim}Key]='{dim}'[{dim}Key];"
            ),
            "queryId": i + 1,
        })
        for i, dim in enumerate(dims)
    ))
    return path


class TestAnalyze:
    """Test the analyze command."""

    def test_text_report(self, capture, capsys):
        main(["analyze", str(capture)])
        out = capsys.readouterr().out
        assert "Tables found: 2" in out
        assert "Sales[ProductKey] ──▶ Product[ProductKey] left_outer_join x1" in out
        assert "2 analyzed, 2 parsed, 0 failed" in out

    def test_json_report(self, capture, capsys):
        main(["analyze", str(capture), "--format", "json", "--heat-mode", "hits"])
        data = json.loads(capsys.readouterr().out)
        assert data["stats"]["unique_tables"] == 2
        assert data["metrics"]["Product"]["heat_level"] == 1.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["analyze", str(tmp_path / "missing.txt")])
        assert exc.value.code == 1

    def test_query_filter(self, star_capture, capsys):
        main(["analyze", str(star_capture), "--query-id", "3"])
        out = capsys.readouterr().out
        assert "Tables found: 2" in out
        assert "Sales[CityKey] ──▶ City[CityKey]" in out
        assert "📋 Brand" not in out

    def test_unknown_query_id(self, star_capture):
        with pytest.raises(SystemExit) as exc:
            main(["analyze", str(star_capture), "--query-id", "99"])
        assert exc.value.code == 1


class TestLayout:
    """Test the layout command."""

    def test_layout_json(self, capture, capsys):
        main(["layout", str(capture)])
        data = json.loads(capsys.readouterr().out)
        assert data["algorithm"] == "compact"
        assert set(data["tables"]) == {"Sales", "Product"}

    def test_threshold_flag(self, capture, capsys):
        main(["layout", str(capture), "--threshold", "1"])
        assert json.loads(capsys.readouterr().out)["algorithm"] == "clustered"

    def test_cache_written_and_reapplied(self, capture, tmp_path, capsys):
        cache_path = tmp_path / "layouts.json"
        main(["layout", str(capture), "--cache", str(cache_path)])
        capsys.readouterr()

        cache = json.loads(cache_path.read_text())
        assert len(cache["records"]) == 1
        record = cache["records"][0]
        record["tablePositions"]["Sales"]["x"] = 900
        record["annotations"] = ["keep me"]
        cache_path.write_text(json.dumps(cache))

        main(["layout", str(capture), "--cache", str(cache_path)])
        data = json.loads(capsys.readouterr().out)
        assert data["tables"]["Sales"]["x"] == 900
        assert json.loads(cache_path.read_text())["records"][0]["annotations"] == ["keep me"]

    def test_invalid_cache(self, capture, tmp_path):
        cache_path = tmp_path / "layouts.json"
        cache_path.write_text('{"records": [{}]}')
        with pytest.raises(SystemExit) as exc:
            main(["layout", str(capture), "--cache", str(cache_path)])
        assert exc.value.code == 1

    def test_relationship_annotations(self, star_capture, tmp_path, capsys):
        annotations = tmp_path / "relationships.json"
        annotations.write_text(json.dumps([
            {
                "from_table": dim,
                "from_column": f"{dim}Key",
                "to_table": "Sales",
                "to_column": f"{dim}Key",
                "from_cardinality": "one",
                "to_cardinality": "many",
            }
            for dim in ["Area", "Brand", "City", "Year", "Zone"]
        ]))
        main(["layout", str(star_capture), "--relationships", str(annotations)])
        layers = json.loads(capsys.readouterr().out)["layers"]
        assert sorted(layers[0]) == ["Area", "Brand", "City", "Year", "Zone"]
        assert layers[1] == ["Sales"]

    def test_invalid_relationship_annotations(self, star_capture, tmp_path):
        annotations = tmp_path / "relationships.json"
        annotations.write_text('[{"from_table": "Sales"}]')
        with pytest.raises(SystemExit) as exc:
            main(["layout", str(star_capture), "--relationships", str(annotations)])
        assert exc.value.code == 1

    def test_layout_for_one_query(self, star_capture, capsys):
        main(["layout", str(star_capture), "--query-id", "5"])
        data = json.loads(capsys.readouterr().out)
        assert data["algorithm"] == "compact"
        assert set(data["tables"]) == {"Sales", "Zone"}
