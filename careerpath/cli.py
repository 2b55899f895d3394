"""
Command-line entry point.

Usage::

    python -m careerpath.cli build --career-id data_scientist \\
        --input tests/sample_career.json --out ./data/data_scientist.graph.json

    python -m careerpath.cli routes  --graph ./data/data_scientist.graph.json
    python -m careerpath.cli optimal --graph ./data/data_scientist.graph.json \\
        --optimize-for cost
    python -m careerpath.cli compare --graph ./data/data_scientist.graph.json

    # Save the current settings, or run with a saved config
    python -m careerpath.cli --save-config ./data/engine_config.json
    python -m careerpath.cli --config ./data/engine_config.json routes --graph ...

All file I/O lives here; the engine itself only sees strings and models.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from careerpath.config import DEFAULT_CONFIG, EngineConfig, load_config, save_config
from careerpath.dag_validator import compute_metrics
from careerpath.errors import CareerPathError
from careerpath.graph_builder import build_career_graph, graph_summary
from careerpath.models import Graph
from careerpath.route_finder import calculate_optimal_route, compare_routes, find_all_routes
from careerpath.serialization import deserialize_graph, serialize_graph
from careerpath.utils import setup_logging

logger = logging.getLogger(__name__)


# =========================================================================
# Helpers
# =========================================================================


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _write_text(path: str, text: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)
    logger.info("Saved → %s", path)


def _load_graph(path: str) -> Graph:
    with open(path, "r", encoding="utf-8") as fh:
        return deserialize_graph(fh.read())


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# =========================================================================
# Commands
# =========================================================================


def cmd_build(args, config: EngineConfig) -> Dict[str, Any]:
    data = _read_json(args.input)
    if isinstance(data, dict):
        milestones = data.get("milestones", [])
        current_stage: Optional[List[str]] = data.get("current_stage")
        career_id = args.career_id or data.get("career_id")
    else:
        milestones, current_stage, career_id = data, None, args.career_id
    if args.current_stage:
        current_stage = [s for s in args.current_stage.split(",") if s]
    if not career_id:
        raise SystemExit("--career-id is required when the input has no career_id")

    graph = build_career_graph(career_id, milestones, current_stage, config=config)
    metrics = compute_metrics(graph)
    if args.out:
        _write_text(args.out, serialize_graph(graph, indent=2))
    _emit({"summary": graph_summary(graph), "metrics": metrics})
    return metrics


def cmd_routes(args, config: EngineConfig) -> None:
    graph = _load_graph(args.graph)
    routes = find_all_routes(graph, max_routes=args.max_routes, config=config)
    _emit([r.model_dump(mode="json") for r in routes])


def cmd_optimal(args, config: EngineConfig) -> None:
    graph = _load_graph(args.graph)
    route = calculate_optimal_route(graph, args.optimize_for, config)
    _emit(route.model_dump(mode="json"))


def cmd_compare(args, config: EngineConfig) -> None:
    graph = _load_graph(args.graph)
    _emit(compare_routes(graph).model_dump(mode="json"))


# =========================================================================
# CLI
# =========================================================================


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m careerpath.cli",
        description="Career route graph engine.",
    )
    parser.add_argument("--config", default=None, help="Engine config JSON to apply.")
    parser.add_argument(
        "--save-config", default=None,
        help="Write the effective config to this path and exit.",
    )
    parser.add_argument("--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command")

    p_build = sub.add_parser("build", help="Build a career graph from milestones JSON.")
    p_build.add_argument("--input", required=True)
    p_build.add_argument("--career-id", default=None)
    p_build.add_argument(
        "--current-stage", default=None,
        help="Comma-separated milestone ids already achieved.",
    )
    p_build.add_argument("--out", default=None)

    p_routes = sub.add_parser("routes", help="Enumerate routes of a saved graph.")
    p_routes.add_argument("--graph", required=True)
    p_routes.add_argument("--max-routes", type=int, default=None)

    p_opt = sub.add_parser("optimal", help="Optimal route of a saved graph.")
    p_opt.add_argument("--graph", required=True)
    p_opt.add_argument(
        "--optimize-for", choices=["time", "cost", "difficulty"], default="time"
    )

    p_cmp = sub.add_parser("compare", help="Compare a saved graph's routes.")
    p_cmp.add_argument("--graph", required=True)

    return parser.parse_args(argv)


_COMMANDS = {
    "build": cmd_build,
    "routes": cmd_routes,
    "optimal": cmd_optimal,
    "compare": cmd_compare,
}


def main(argv=None):
    """CLI entry-point."""
    args = _parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_config(args.config) if args.config else DEFAULT_CONFIG

    if args.save_config:
        save_config(config, args.save_config)
        return

    if args.command is None:
        logger.error("No command given; see --help.")
        sys.exit(2)

    try:
        _COMMANDS[args.command](args, config)
    except CareerPathError as exc:
        logger.error("✗ %s", exc)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
