"""Saved table positions keyed by a stable model key.

The records only carry data; reading and writing the cache file is left to
the caller.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scanlineage.layout.models import Box, LayoutParams, LayoutResult

MAX_CACHE_RECORDS = 50


def generate_model_key(table_names: Iterable[str], database: Optional[str] = None) -> str:
    """Stable key for a set of tables: same names in any order, same key."""
    names = sorted({name.strip().casefold() for name in table_names if name and name.strip()})
    digest = hashlib.sha256("|".join(names).encode("utf-8")).hexdigest()[:16]
    if database:
        return f"{database}_{digest}"
    return digest


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TablePosition(_CamelModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    is_collapsed: bool = False
    expanded_height: float = 0.0


class LayoutCacheRecord(_CamelModel):
    model_key: str
    last_modified: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    table_positions: dict[str, TablePosition] = Field(default_factory=dict)
    annotations: list[Any] = Field(default_factory=list)


class LayoutCache(_CamelModel):
    """All saved layouts, at most MAX_CACHE_RECORDS of them."""

    records: list[LayoutCacheRecord] = Field(default_factory=list)

    def get(self, model_key: str) -> Optional[LayoutCacheRecord]:
        for record in self.records:
            if record.model_key == model_key:
                return record
        return None

    def upsert(self, record: LayoutCacheRecord) -> None:
        """Replace the record with the same key, then drop the oldest extras."""
        self.records = [r for r in self.records if r.model_key != record.model_key]
        self.records.append(record)
        if len(self.records) > MAX_CACHE_RECORDS:
            self.records.sort(key=lambda r: r.last_modified, reverse=True)
            del self.records[MAX_CACHE_RECORDS:]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, content: str) -> LayoutCache:
        """Load a cache document.

        Raises:
            pydantic.ValidationError: If the document is malformed.
        """
        if not content.strip():
            return cls()
        return cls.model_validate_json(content)


def record_from_result(
    result: LayoutResult,
    model_key: str,
    collapsed: Optional[dict[str, bool]] = None,
) -> LayoutCacheRecord:
    collapsed = collapsed or {}
    positions = {
        name: TablePosition(
            x=box.x,
            y=box.y,
            width=box.width,
            height=box.height,
            is_collapsed=collapsed.get(name, False),
            expanded_height=box.height,
        )
        for name, box in result.boxes.items()
    }
    return LayoutCacheRecord(model_key=model_key, table_positions=positions)


def apply_saved_positions(
    result: LayoutResult,
    record: LayoutCacheRecord,
    params: Optional[LayoutParams] = None,
) -> int:
    """Overwrite computed boxes with saved ones; returns how many were applied.

    Tables are matched case-insensitively. Saved sizes that are not positive
    fall back to the parameter defaults. Edges and canvas are recomputed.
    """
    params = params or LayoutParams()
    saved = {name.casefold(): pos for name, pos in record.table_positions.items()}
    applied = 0
    for name in list(result.boxes):
        position = saved.get(name.casefold())
        if position is None:
            continue
        result.boxes[name] = Box(
            x=max(0.0, position.x),
            y=max(0.0, position.y),
            width=position.width if position.width > 0 else params.table_width,
            height=position.height if position.height > 0 else params.table_height,
        )
        applied += 1

    if applied:
        result.update_edges()
        result.fit_canvas()
    return applied
