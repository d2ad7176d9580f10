"""Scan event loading: turns captured trace text into ScanEvent records."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from scanlineage.core.models import QueryMetrics
from scanlineage.core.scanner import is_scan_query

# Fragments in plain-text captures are separated by one or more blank lines.
_FRAGMENT_SEPARATOR = re.compile(r"\n\s*\n")


class ScanEvent(BaseModel):
    """One storage-engine scan: the query text plus optional metrics.

    JSON input uses camelCase keys (``queryId``, ``durationMs``...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    query_id: Optional[int] = None
    estimated_rows: Optional[int] = None
    duration_ms: Optional[int] = None
    is_cache_hit: bool = False
    cpu_time_ms: Optional[int] = None
    cpu_factor: Optional[float] = None
    net_parallel_duration_ms: Optional[int] = None

    @property
    def has_metrics(self) -> bool:
        return self.is_cache_hit or any(
            value is not None
            for value in (
                self.query_id,
                self.estimated_rows,
                self.duration_ms,
                self.cpu_time_ms,
                self.cpu_factor,
                self.net_parallel_duration_ms,
            )
        )

    @property
    def is_scan(self) -> bool:
        return is_scan_query(self.query)

    def metrics(self) -> Optional[QueryMetrics]:
        """The event's metrics, or None for bare query text."""
        if not self.has_metrics:
            return None
        return QueryMetrics(
            query_id=self.query_id,
            estimated_rows=self.estimated_rows,
            duration_ms=self.duration_ms,
            is_cache_hit=self.is_cache_hit,
            cpu_time_ms=self.cpu_time_ms,
            cpu_factor=self.cpu_factor,
            net_parallel_duration_ms=self.net_parallel_duration_ms,
        )


def _looks_like_json_lines(content: str) -> bool:
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    return bool(lines) and all(line.startswith("{") for line in lines)


def parse_events(content: str) -> list[ScanEvent]:
    """Parse captured scan events.

    Two formats are accepted: JSON lines (one object per line with at least a
    ``query`` key and optional metrics), or plain text with one query per
    blank-line separated block.

    Raises:
        pydantic.ValidationError: If a JSON line is not a valid event.
        json.JSONDecodeError: If a JSON line is malformed.
    """
    if _looks_like_json_lines(content):
        events = []
        for line in content.splitlines():
            if not line.strip():
                continue
            events.append(ScanEvent.model_validate(json.loads(line)))
        return events

    return [
        ScanEvent(query=block.strip())
        for block in _FRAGMENT_SEPARATOR.split(content)
        if block.strip()
    ]


def parse_file(file_path: str | Path) -> list[ScanEvent]:
    """Parse a capture file into scan events.

    Args:
        file_path: Path to a plain-text or JSON-lines capture.

    Returns:
        The events in file order.
    """
    path = Path(file_path)
    return parse_events(path.read_text(encoding="utf-8"))
