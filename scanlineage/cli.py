"""CLI entry point for Scan Lineage."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from scanlineage.core.metrics import HeatMapMode, format_cache_hit_rate, table_metrics
from scanlineage.core.models import (
    ColumnUsage,
    LineageGraph,
    Relationship,
    RelationshipAnnotation,
    Table,
)
from scanlineage.core.resolver import resolve_files
from scanlineage.layout.cache import (
    LayoutCache,
    apply_saved_positions,
    generate_model_key,
    record_from_result,
)
from scanlineage.layout.engine import compute_layout
from scanlineage.layout.models import LayoutParams

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scanlineage",
        description="Scan Lineage: extract table lineage from storage-engine scans.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- analyze command ---
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze scan captures and print lineage",
    )
    analyze_parser.add_argument(
        "files",
        nargs="+",
        type=str,
        help="Capture files (plain text or JSON lines)",
    )
    analyze_parser.add_argument(
        "--format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    analyze_parser.add_argument(
        "--heat-mode",
        type=str,
        choices=[m.value for m in HeatMapMode],
        default=HeatMapMode.HIT_COUNT.value,
        help="Metric used for heat levels (default: hits)",
    )
    analyze_parser.add_argument(
        "--query-id",
        type=int,
        default=None,
        help="Only show the tables and relationships one query touched",
    )
    analyze_parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )

    # --- layout command ---
    layout_parser = subparsers.add_parser(
        "layout",
        help="Compute a diagram layout and print it as JSON",
    )
    layout_parser.add_argument(
        "files",
        nargs="+",
        type=str,
        help="Capture files (plain text or JSON lines)",
    )
    layout_parser.add_argument(
        "--cache",
        type=str,
        default=None,
        help="Layout cache file; saved positions are applied and the result stored",
    )
    layout_parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Largest graph laid out in layers (default: 50)",
    )
    layout_parser.add_argument(
        "--query-id",
        type=int,
        default=None,
        help="Only show the tables and relationships one query touched",
    )
    layout_parser.add_argument(
        "--relationships",
        type=str,
        default=None,
        help="JSON file of relationship annotations (cardinality, cross-filter)",
    )
    layout_parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )

    # --- serve command ---
    serve_parser = subparsers.add_parser(
        "serve",
        help="Launch the JSON API",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "analyze":
        _cmd_analyze(args)
    elif args.command == "layout":
        _cmd_layout(args)
    elif args.command == "serve":
        _cmd_serve(args)


def _load_graph(files: list[str]) -> LineageGraph:
    file_paths = [Path(f) for f in files]

    # Validate files exist
    for fp in file_paths:
        if not fp.exists():
            print(f"Error: File not found: {fp}", file=sys.stderr)
            sys.exit(1)

    return resolve_files(file_paths)


def _check_query_id(graph: LineageGraph, query_id: int | None) -> None:
    if query_id is not None and query_id not in graph.available_query_ids():
        print(f"Error: unknown query id: {query_id}", file=sys.stderr)
        sys.exit(1)


def _load_annotations(path: str) -> list[RelationshipAnnotation]:
    annotations_path = Path(path)
    try:
        return TypeAdapter(list[RelationshipAnnotation]).validate_json(annotations_path.read_bytes())
    except OSError as e:
        print(f"Error: cannot read {annotations_path}: {e}", file=sys.stderr)
    except ValidationError as e:
        print(f"Error: invalid relationship annotations {annotations_path}: {e}", file=sys.stderr)
    sys.exit(1)


def _cmd_analyze(args: argparse.Namespace) -> None:
    """Analyze capture files and print lineage."""
    graph = _load_graph(args.files)
    _check_query_id(graph, args.query_id)
    mode = HeatMapMode(args.heat_mode)
    if args.query_id is None:
        tables = graph.visible_tables()
        relationships = graph.visible_relationships()
    else:
        tables = graph.tables_for_query(args.query_id)
        relationships = graph.relationships_for_query(args.query_id)
    metrics = table_metrics(tables, graph.total_cpu_time_ms, mode)

    if args.format == "json":
        data = graph.to_dict(args.query_id)
        data["metrics"] = metrics
        print(json.dumps(data, indent=2))
    else:
        _print_text_report(graph, tables, relationships, metrics)


def _print_text_report(
    graph: LineageGraph,
    tables: list[Table],
    relationships: list[Relationship],
    metrics: dict[str, dict],
) -> None:
    """Print a human-readable lineage report."""
    print("\n╔══════════════════════════════════════════╗")
    print("║          Scan Lineage Report             ║")
    print("╚══════════════════════════════════════════╝\n")

    tables = sorted(tables, key=lambda t: t.key)
    print(f"📊 Tables found: {len(tables)}")
    for table in tables:
        flags = []
        if table.is_from_table:
            flags.append("from")
        if table.is_joined_table:
            flags.append("joined")
        if table.has_callbacks:
            flags.append("callback")
        info = metrics.get(table.name, {})
        rank = info.get("bottleneck_rank")
        bottleneck = f", bottleneck #{rank}" if rank else ""
        print(
            f"   📋 {table.name} [{', '.join(flags) or '-'}] "
            f"hits={table.hit_count} heat={info.get('heat_level', 0.0):.2f} "
            f"cache={format_cache_hit_rate(info.get('cache_hit_rate'))}{bottleneck}"
        )
        for column in table.columns.values():
            usage = ", ".join(u.name.lower() for u in ColumnUsage if u and column.has_usage(u))
            extra = f" {'/'.join(sorted(column.aggregations))}" if column.aggregations else ""
            print(f"      • {column.name} ({usage}){extra}")

    if relationships:
        print(f"\n🔗 Relationships ({len(relationships)}):")
        for rel in relationships:
            print(
                f"   {rel.from_table}[{rel.from_column}] ──▶ {rel.to_table}[{rel.to_column}]"
                f" {rel.join_kind.value} x{rel.hit_count}"
            )

    print(
        f"\n📋 Queries: {graph.total_queries_analyzed} analyzed, "
        f"{graph.successfully_parsed_queries} parsed, {graph.failed_parse_queries} failed"
    )
    print()


def _cmd_layout(args: argparse.Namespace) -> None:
    """Compute a layout, optionally through the layout cache file."""
    graph = _load_graph(args.files)
    _check_query_id(graph, args.query_id)
    if args.relationships:
        applied = graph.apply_annotations(_load_annotations(args.relationships))
        logger.debug("Applied %d relationship annotations", applied)
    try:
        params = LayoutParams() if args.threshold is None else LayoutParams(layered_threshold=args.threshold)
    except ValidationError as e:
        print(f"Error: invalid layout parameters: {e}", file=sys.stderr)
        sys.exit(1)

    result = compute_layout(graph, params, query_id=args.query_id)

    if args.cache:
        cache_path = Path(args.cache)
        try:
            cache = LayoutCache.from_json(cache_path.read_text(encoding="utf-8")) if cache_path.exists() else LayoutCache()
        except ValidationError as e:
            print(f"Error: invalid layout cache {cache_path}: {e}", file=sys.stderr)
            sys.exit(1)

        model_key = generate_model_key(result.boxes)
        record = cache.get(model_key)
        collapsed = None
        if record is not None:
            applied = apply_saved_positions(result, record, params)
            logger.debug("Applied %d saved positions for %s", applied, model_key)
            collapsed = {name: pos.is_collapsed for name, pos in record.table_positions.items()}
        updated = record_from_result(result, model_key, collapsed)
        if record is not None:
            updated.annotations = list(record.annotations)
        cache.upsert(updated)
        cache_path.write_text(cache.to_json(), encoding="utf-8")

    print(json.dumps(result.to_dict(), indent=2))


def _cmd_serve(args: argparse.Namespace) -> None:
    """Launch the API server."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required. Install with: pip install uvicorn", file=sys.stderr)
        sys.exit(1)

    print(f"\n🚀 Scan Lineage API")
    print(f"   Listening on http://{args.host}:{args.port}\n")

    uvicorn.run(
        "scanlineage.api.server:app",
        host=args.host,
        port=args.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
