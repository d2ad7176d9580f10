"""Pattern rules over storage-engine scan query text.

Each rule is a pure function ``text -> list of matches`` so it can be used and
tested on its own. Rules know nothing about the lineage graph.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from scanlineage.core.models import JoinKind

AGGREGATION_FUNCTIONS = ("SUM", "COUNT", "DCOUNT", "MIN", "MAX", "AVG", "SUMSQR")

# 'Table Name'[Column Name]
TABLE_COLUMN_PATTERN = re.compile(
    r"'(?P<table>[^']+)'\s*\[(?P<column>[^\]]+)\]",
    re.IGNORECASE,
)

FROM_PATTERN = re.compile(r"\bFROM\s+'(?P<table>[^']+)'", re.IGNORECASE)

LEFT_OUTER_JOIN_PATTERN = re.compile(
    r"\bLEFT\s+OUTER\s+JOIN\s+'(?P<table>[^']+)'", re.IGNORECASE
)

INNER_JOIN_PATTERN = re.compile(r"\bINNER\s+JOIN\s+'(?P<table>[^']+)'", re.IGNORECASE)

ON_PATTERN = re.compile(
    r"\bON\s+'(?P<from_table>[^']+)'\s*\[(?P<from_column>[^\]]+)\]"
    r"\s*=\s*'(?P<to_table>[^']+)'\s*\[(?P<to_column>[^\]]+)\]",
    re.IGNORECASE,
)

WHERE_PATTERN = re.compile(r"\bWHERE\b", re.IGNORECASE)

SELECT_PATTERN = re.compile(r"\bSELECT\b(?P<columns>.*?)\bFROM\b", re.IGNORECASE | re.DOTALL)

AGGREGATION_PATTERN = re.compile(
    r"\b(?P<function>" + "|".join(AGGREGATION_FUNCTIONS) + r")\s*\(\s*"
    r"(?:'(?P<table>[^']+)'\s*\[(?P<column>[^\]]+)\]|\))",
    re.IGNORECASE,
)

CALLBACK_PATTERN = re.compile(r"\[\s*(?P<kind>CallbackDataID|EncodeCallback)\s*\(", re.IGNORECASE)

FILTER_PATTERN = re.compile(
    r"'(?P<table>[^']+)'\s*\[(?P<column>[^\]]+)\]\s*"
    r"(?P<operator><>|<=|>=|=|<|>|\bNIN\b|\bIN\b)\s*"
    r"(?P<value>\([^)]*\)|'(?:[^']|'')*'|[^\s,;)]+)",
    re.IGNORECASE,
)

LITERAL_PATTERN = re.compile(r"'((?:[^']|'')*)'|([^\s,()]+)")


@dataclass(frozen=True)
class ColumnRef:
    table: str
    column: str


@dataclass(frozen=True)
class JoinCondition:
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    join_kind: JoinKind
    position: int


@dataclass(frozen=True)
class AggregationCall:
    function: str
    column: Optional[ColumnRef] = None


@dataclass(frozen=True)
class CallbackUse:
    kind: str
    columns: tuple[ColumnRef, ...] = ()


@dataclass(frozen=True)
class FilterPredicate:
    column: ColumnRef
    operator: str
    values: tuple[str, ...] = field(default_factory=tuple)


def column_refs(text: str) -> list[ColumnRef]:
    """All 'Table'[Column] references in text, in order of appearance."""
    return [
        ColumnRef(m.group("table"), m.group("column"))
        for m in TABLE_COLUMN_PATTERN.finditer(text)
    ]


def root_tables(text: str) -> list[str]:
    """Tables named by ``FROM 'Name'``."""
    return [m.group("table") for m in FROM_PATTERN.finditer(text)]


def select_clause(text: str) -> Optional[str]:
    """Text between the first SELECT and the following FROM, if any."""
    match = SELECT_PATTERN.search(text)
    return match.group("columns") if match else None


def selected_columns(text: str) -> list[ColumnRef]:
    clause = select_clause(text)
    if clause is None:
        return []
    return column_refs(clause)


def joined_tables(text: str) -> list[tuple[str, JoinKind]]:
    """Tables named by LEFT OUTER JOIN / INNER JOIN, left outer joins first."""
    joins = [(m.group("table"), JoinKind.LEFT_OUTER_JOIN) for m in LEFT_OUTER_JOIN_PATTERN.finditer(text)]
    joins.extend((m.group("table"), JoinKind.INNER_JOIN) for m in INNER_JOIN_PATTERN.finditer(text))
    return joins


def resolve_join_kind(text_before_on: str) -> JoinKind:
    """Join kind of the keyword nearest before an ON clause.

    Plain substring search: table or column names that contain the literal
    keywords will be taken for keywords.
    """
    upper = text_before_on.upper()
    last_left = upper.rfind("LEFT OUTER JOIN")
    last_inner = upper.rfind("INNER JOIN")
    if last_left > last_inner:
        return JoinKind.LEFT_OUTER_JOIN
    if last_inner > last_left:
        return JoinKind.INNER_JOIN
    return JoinKind.UNKNOWN


def join_conditions(text: str) -> list[JoinCondition]:
    """``ON 'T1'[C1] = 'T2'[C2]`` conditions with their resolved join kind."""
    return [
        JoinCondition(
            from_table=m.group("from_table"),
            from_column=m.group("from_column"),
            to_table=m.group("to_table"),
            to_column=m.group("to_column"),
            join_kind=resolve_join_kind(text[: m.start()]),
            position=m.start(),
        )
        for m in ON_PATTERN.finditer(text)
    ]


def where_clause(text: str) -> Optional[str]:
    """Everything from the first WHERE keyword to the end, if any."""
    match = WHERE_PATTERN.search(text)
    return text[match.start():] if match else None


def filtered_columns(text: str) -> list[ColumnRef]:
    clause = where_clause(text)
    if clause is None:
        return []
    return column_refs(clause)


def _split_literals(raw: str) -> tuple[str, ...]:
    raw = raw.strip()
    if raw.startswith("(") and raw.endswith(")"):
        raw = raw[1:-1]
    values = []
    for quoted, bare in LITERAL_PATTERN.findall(raw):
        value = quoted.replace("''", "'") if quoted or not bare else bare
        values.append(value)
    return tuple(values)


def filter_predicates(text: str) -> list[FilterPredicate]:
    """``'T'[C] <op> value`` predicates in the WHERE clause."""
    clause = where_clause(text)
    if clause is None:
        return []
    return [
        FilterPredicate(
            column=ColumnRef(m.group("table"), m.group("column")),
            operator=m.group("operator").upper(),
            values=_split_literals(m.group("value")),
        )
        for m in FILTER_PATTERN.finditer(clause)
    ]


def aggregations(text: str) -> list[AggregationCall]:
    """Aggregation calls; a bare ``COUNT ( )`` carries no column."""
    calls = []
    for m in AGGREGATION_PATTERN.finditer(text):
        column = None
        if m.group("table") and m.group("column"):
            column = ColumnRef(m.group("table"), m.group("column"))
        calls.append(AggregationCall(function=m.group("function").upper(), column=column))
    return calls


def _closing_paren(text: str, open_index: int) -> int:
    """Index of the parenthesis closing the one at open_index, or len(text)."""
    depth = 0
    in_quote = False
    for i in range(open_index, len(text)):
        ch = text[i]
        if ch == "'":
            in_quote = not in_quote
        elif in_quote:
            continue
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return len(text)


def callbacks(text: str) -> list[CallbackUse]:
    """``[CallbackDataID (...)]`` / ``[EncodeCallback (...)]`` blocks.

    The columns reported are those of the argument list that follows the
    bracketed block (normally ``( PFDATAID ( 'T'[C] ) )``); without an
    argument list the columns inside the block body are used.
    """
    uses = []
    for m in CALLBACK_PATTERN.finditer(text):
        body_end = _closing_paren(text, m.end() - 1)
        body = text[m.end():body_end]
        rest = text[body_end + 1:]
        bracket = rest.lstrip()
        scope = body
        if bracket.startswith("]"):
            after = bracket[1:]
            stripped = after.lstrip()
            if stripped.startswith("("):
                offset = len(after) - len(stripped)
                args_end = _closing_paren(after, offset)
                args = after[offset + 1:args_end]
                if column_refs(args):
                    scope = args
        uses.append(CallbackUse(kind=m.group("kind"), columns=tuple(column_refs(scope))))
    return uses


def extract_table_name(reference: str) -> Optional[str]:
    """Table part of a 'Table'[Column] reference."""
    match = TABLE_COLUMN_PATTERN.search(reference)
    return match.group("table") if match else None


def extract_column_name(reference: str) -> Optional[str]:
    """Column part of a 'Table'[Column] reference."""
    match = TABLE_COLUMN_PATTERN.search(reference)
    return match.group("column") if match else None


def is_scan_query(text: Optional[str]) -> bool:
    """True if the text looks like a scan (has both SELECT and FROM)."""
    if not text or not text.strip():
        return False
    upper = text.upper()
    return "SELECT" in upper and "FROM" in upper
