# main.py
"""Command-line entry point for the entity rule engine.

Commands:
    evaluate RULES STATE     Evaluate every entity in a rule document.
    query RULES STATE        Rank the document's records against a game state.
    graph RULES              Show relationship graph metrics, paths and validation.
"""

import argparse
import sys

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.exceptions import EntityEngineError
from core.logging_config import setup_engine_logging
from models.query_models import QueryFilter, QueryOptions
from utils.rule_documents import build_engine, load_game_state, load_rule_document

logger = structlog.get_logger(__name__)


def command_evaluate(args: argparse.Namespace, console: Console) -> int:
    document = load_rule_document(args.rules)
    state = load_game_state(args.state)
    engine = build_engine(document)
    batch = engine.batch_process_entities(document.condition_sets(), state)

    table = Table(title="Entity availability")
    table.add_column("Entity")
    table.add_column("Available")
    table.add_column("Passed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Notes")
    for result in batch.results:
        notes = "; ".join(result.errors + result.warnings)
        table.add_row(
            result.entity_id,
            "[green]yes[/green]" if result.success else "[red]no[/red]",
            str(result.conditions.passed),
            str(result.conditions.failed),
            notes,
        )
    console.print(table)
    console.print(
        f"{batch.successful}/{batch.total_processed} available in {batch.processing_time:.2f} ms"
    )
    return 0 if not batch.errors else 1


def command_query(args: argparse.Namespace, console: Console) -> int:
    document = load_rule_document(args.rules)
    state = load_game_state(args.state)
    engine = build_engine(document)
    query_filter = QueryFilter(entity_types=args.type or None, tags=args.tag or None)
    options = QueryOptions(
        max_results=args.max_results,
        sort_by=args.sort_by,
        include_related=args.include_related,
    )
    result = engine.query_entities(query_filter, state, options)

    table = Table(title=f"Query results ({result.total_count} matched)")
    table.add_column("#", justify="right")
    table.add_column("Entity")
    table.add_column("Type")
    table.add_column("Priority", justify="right")
    table.add_column("Relevance", justify="right")
    for rank, (entity, score) in enumerate(zip(result.entities, result.relevance_scores), start=1):
        table.add_row(
            str(rank),
            entity.id,
            entity.type.value if entity.type else "",
            str(entity.priority),
            f"{score:.3f}",
        )
    console.print(table)
    console.print(f"Filters: {', '.join(result.metadata.filters_applied) or 'none'}")
    return 0


def command_graph(args: argparse.Namespace, console: Console) -> int:
    document = load_rule_document(args.rules)
    engine = build_engine(document)

    metrics = engine.get_graph_metrics()
    summary = Table(title="Relationship graph", show_header=False)
    summary.add_row("Nodes", str(metrics.total_nodes))
    summary.add_row("Edges", str(metrics.total_edges))
    summary.add_row("Average connectivity", f"{metrics.average_connectivity:.2f}")
    summary.add_row("Strongly connected components", str(len(metrics.strongly_connected_components)))
    summary.add_row("Isolated nodes", ", ".join(metrics.isolated_nodes) or "-")
    summary.add_row(
        "Hubs",
        ", ".join(f"{hub.id} ({hub.connection_count})" for hub in metrics.hub_nodes) or "-",
    )
    console.print(summary)

    exit_code = 0
    if args.path:
        source_id, target_id = args.path
        path = engine.find_entity_path(source_id, target_id)
        if path is None:
            console.print(f"[yellow]No path from {source_id} to {target_id}[/yellow]")
            exit_code = 1
        else:
            console.print(
                Panel(
                    " -> ".join(path.path),
                    title=f"{path.path_type.value} path, {path.hops} hop(s), strength {path.relationship_strength:.3f}",
                )
            )

    if args.validate:
        report = engine.validate_graph()
        if report.is_valid:
            console.print("[green]Graph is valid[/green]")
        else:
            issues = Table(title="Validation issues")
            issues.add_column("Kind")
            issues.add_column("Source")
            issues.add_column("Target")
            issues.add_column("Type")
            for issue in report.issues:
                issues.add_row(issue.kind, issue.source_id, issue.target_id, issue.type.value)
            console.print(issues)
            exit_code = 1
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Entity rule engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate entity conditions")
    evaluate_parser.add_argument("rules", help="Rule document (YAML or JSON)")
    evaluate_parser.add_argument("state", help="Game state or session context (YAML or JSON)")
    evaluate_parser.set_defaults(handler=command_evaluate)

    query_parser = subparsers.add_parser("query", help="Rank records against a game state")
    query_parser.add_argument("rules", help="Rule document (YAML or JSON)")
    query_parser.add_argument("state", help="Game state or session context (YAML or JSON)")
    query_parser.add_argument("--type", action="append", help="Entity kind to include (repeatable)")
    query_parser.add_argument("--tag", action="append", help="Tag to match (repeatable)")
    query_parser.add_argument("--max-results", type=int, default=None)
    query_parser.add_argument("--sort-by", default="relevance", choices=["relevance", "priority", "timestamp"])
    query_parser.add_argument("--include-related", action="store_true")
    query_parser.set_defaults(handler=command_query)

    graph_parser = subparsers.add_parser("graph", help="Inspect the relationship graph")
    graph_parser.add_argument("rules", help="Rule document (YAML or JSON)")
    graph_parser.add_argument("--path", nargs=2, metavar=("FROM", "TO"), help="Find the shortest path")
    graph_parser.add_argument("--validate", action="store_true", help="Validate the graph")
    graph_parser.set_defaults(handler=command_graph)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    setup_engine_logging(console=console)
    try:
        return args.handler(args, console)
    except EntityEngineError as err:
        logger.error(f"Command failed: {err}", details=err.details)
        console.print(f"[red]{err}[/red]")
        return 2


if __name__ == "__main__":
    sys.exit(main())
