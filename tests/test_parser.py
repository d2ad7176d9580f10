"""Tests for scan event loading."""

import json

import pytest
from pydantic import ValidationError
from scanlineage.core.parser import ScanEvent, parse_events, parse_file


class TestParseEvents:
    """Test parse_events function."""

    def test_plain_text_blocks(self):
        content = """SELECT 'A'[x]
FROM 'A';

SELECT 'B'[y]
FROM 'B';
"""
        events = parse_events(content)
        assert len(events) == 2
        assert events[0].query == "SELECT 'A'[x]\nFROM 'A';"
        assert events[0].metrics() is None

    def test_json_lines(self):
        lines = [
            {"query": "SELECT 'A'[x] FROM 'A'", "queryId": 1, "durationMs": 5, "cpuTimeMs": 9},
            {"query": "SELECT 'B'[y] FROM 'B'", "isCacheHit": True},
        ]
        events = parse_events("\n".join(json.dumps(line) for line in lines))
        assert len(events) == 2
        metrics = events[0].metrics()
        assert metrics.query_id == 1
        assert metrics.duration_ms == 5
        assert metrics.cpu_time_ms == 9
        assert events[1].metrics().is_cache_hit

    def test_snake_case_keys_accepted(self):
        event = ScanEvent.model_validate({"query": "q", "duration_ms": 3})
        assert event.duration_ms == 3

    def test_invalid_json_line(self):
        with pytest.raises(ValidationError):
            parse_events('{"durationMs": 5}')

    def test_empty(self):
        assert parse_events("") == []
        assert parse_events("\n\n  \n") == []

    def test_is_scan(self):
        assert ScanEvent(query="SELECT 'A'[x] FROM 'A'").is_scan
        assert not ScanEvent(query='SET DC_KIND="AUTO";').is_scan


class TestParseFile:
    """Test parse_file function."""

    def test_parse_file(self, tmp_path):
        f = tmp_path / "capture.txt"
        f.write_text("SELECT 'A'[x] FROM 'A';\n\nSELECT 'B'[y] FROM 'B';")
        assert len(parse_file(f)) == 2

    def test_parse_file_accepts_str(self, tmp_path):
        f = tmp_path / "capture.txt"
        f.write_text("SELECT 'A'[x] FROM 'A';")
        assert len(parse_file(str(f))) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_file(tmp_path / "missing.txt")
