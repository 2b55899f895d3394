"""
DAG validation: structural checks, cycle detection, reachability, metrics.

Uses ``networkx.DiGraph`` for cycle detection, topological-sort
validation and reachability. Invalid graphs are rejected, never repaired.
"""

import logging
from collections import Counter
from typing import Any, Dict, List

import networkx as nx

from careerpath.errors import GraphInvalidError
from careerpath.models import Graph

logger = logging.getLogger(__name__)


# =========================================================================
# Conversion
# =========================================================================


def to_digraph(graph: Graph) -> nx.DiGraph:
    """Build a ``networkx.DiGraph`` view of *graph* (edge attr ``weight``)."""
    G = nx.DiGraph()
    for node in graph.nodes:
        G.add_node(node.id, kind=node.kind)
    for e in graph.edges:
        G.add_edge(e.source, e.target, weight=e.weight, prerequisites=e.prerequisites)
    return G


# =========================================================================
# Validation
# =========================================================================


def is_dag(graph: Graph) -> bool:
    """Verify that the edges of *graph* form a DAG (topological sort succeeds)."""
    G = to_digraph(graph)
    try:
        list(nx.topological_sort(G))
        return True
    except nx.NetworkXUnfeasible:
        return False


def _check_structure(graph: Graph) -> None:
    ids = [n.id for n in graph.nodes]
    dupes = sorted(i for i, count in Counter(ids).items() if count > 1)
    if dupes:
        raise GraphInvalidError(graph.career_id, "duplicate_node", dupes)

    starts = [n.id for n in graph.nodes if n.kind == "start"]
    dests = [n.id for n in graph.nodes if n.kind == "destination"]
    if starts != [graph.start_id]:
        raise GraphInvalidError(graph.career_id, "start_node_count", starts)
    if dests != [graph.destination_id]:
        raise GraphInvalidError(graph.career_id, "destination_node_count", dests)

    known = set(ids)
    dangling = sorted(
        {e.source for e in graph.edges if e.source not in known}
        | {e.target for e in graph.edges if e.target not in known}
    )
    if dangling:
        raise GraphInvalidError(graph.career_id, "dangling_edge", dangling)

    pair_counts = Counter((e.source, e.target) for e in graph.edges)
    dup_pairs = sorted(p for p, count in pair_counts.items() if count > 1)
    if dup_pairs:
        raise GraphInvalidError(
            graph.career_id, "duplicate_edge", [f"{u}->{v}" for u, v in dup_pairs]
        )


def validate_dag(graph: Graph) -> List[str]:
    """Validate *graph* and return its node ids in topological order.

    Checks, in order: structure (unique ids, one start, one destination,
    no dangling edges), acyclicity, reachability from start, reachability
    of the destination, and that every edge prerequisite is an ancestor
    of the edge's source.

    Raises:
        GraphInvalidError: on the first failed check.
    """
    _check_structure(graph)
    G = to_digraph(graph)

    try:
        order = list(nx.topological_sort(G))
    except nx.NetworkXUnfeasible:
        cycle = nx.find_cycle(G, orientation="original")
        cycle_nodes = [u for u, _, _ in cycle]
        logger.error(
            "Career %s: cycle detected through %s.", graph.career_id, cycle_nodes
        )
        raise GraphInvalidError(graph.career_id, "cycle", cycle_nodes) from None

    reachable = nx.descendants(G, graph.start_id) | {graph.start_id}
    unreachable = sorted(set(G.nodes) - reachable)
    if unreachable:
        raise GraphInvalidError(graph.career_id, "unreachable_from_start", unreachable)

    reaches_dest = nx.ancestors(G, graph.destination_id) | {graph.destination_id}
    dead_ends = sorted(set(G.nodes) - reaches_dest)
    if dead_ends:
        raise GraphInvalidError(graph.career_id, "cannot_reach_destination", dead_ends)

    for e in graph.edges:
        if not e.prerequisites:
            continue
        before = nx.ancestors(G, e.source) | {e.source}
        unsatisfiable = sorted(p for p in e.prerequisites if p not in before)
        if unsatisfiable:
            raise GraphInvalidError(
                graph.career_id,
                f"unsatisfiable_prerequisite:{e.target}",
                unsatisfiable,
            )

    logger.debug(
        "Career %s: DAG OK (%d nodes, %d edges).",
        graph.career_id, G.number_of_nodes(), G.number_of_edges(),
    )
    return order


# =========================================================================
# Metrics
# =========================================================================


def compute_metrics(graph: Graph) -> Dict[str, Any]:
    """Compute graph summary metrics.

    Returns dict with: career_id, version, total_milestones, total_edges,
    avg_out_degree, max_depth, longest_duration, precomputed_routes.
    """
    G = to_digraph(graph)
    total_edges = G.number_of_edges()
    n_nodes = G.number_of_nodes()

    avg_out = total_edges / n_nodes if n_nodes > 0 else 0.0

    if total_edges > 0 and nx.is_directed_acyclic_graph(G):
        max_depth = nx.dag_longest_path_length(G, weight=None)
        longest_duration = nx.dag_longest_path_length(G, weight="weight")
    else:
        max_depth = 0
        longest_duration = 0

    return {
        "career_id": graph.career_id,
        "version": graph.version,
        "total_milestones": sum(1 for n in graph.nodes if n.kind == "milestone"),
        "total_edges": total_edges,
        "avg_out_degree": round(avg_out, 4),
        "max_depth": max_depth,
        "longest_duration": float(longest_duration),
        "precomputed_routes": len(graph.routes),
        "behind_start": len(graph.behind_start),
    }
