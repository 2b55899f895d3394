"""
Route enumeration, scoring and validation over a career DAG.

All functions are pure reads of a ``Graph``; they may run concurrently
for any number of requests. Enumeration is best-effort: it stops at
``max_routes`` paths or when the search-node budget runs out and returns
what it has found so far.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.dag_validator import to_digraph
from careerpath.errors import NoValidRouteError
from careerpath.models import (
    DIFFICULTY_RANK,
    Edge,
    Graph,
    MilestoneSpec,
    Node,
    OptimizeFor,
    Route,
    RouteComparison,
)
from careerpath.utils import route_id_for, timed

logger = logging.getLogger(__name__)

_RANK_TO_DIFFICULTY = {rank: name for name, rank in DIFFICULTY_RANK.items()}


# =========================================================================
# Graph index
# =========================================================================


class GraphIndex:
    """Dict-based lookups over an immutable ``Graph``.

    Successor lists are sorted by node id so every traversal visits
    neighbours in the same order.
    """

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self.nodes: Dict[str, Node] = {n.id: n for n in graph.nodes}
        self.edges: Dict[Tuple[str, str], Edge] = {
            (e.source, e.target): e for e in graph.edges
        }
        succ: Dict[str, List[str]] = defaultdict(list)
        for e in graph.edges:
            succ[e.source].append(e.target)
        self.successors: Dict[str, List[str]] = {k: sorted(v) for k, v in succ.items()}

    def milestone(self, node_id: str) -> Optional[MilestoneSpec]:
        node = self.nodes.get(node_id)
        return node.milestone if node is not None else None


# =========================================================================
# Route construction
# =========================================================================


def route_metrics(
    index: GraphIndex,
    nodes: Sequence[str],
    excluded: Iterable[str] = (),
) -> Tuple[float, float, str]:
    """Return ``(total_duration, total_cost, difficulty)`` for a node path.

    Duration is the sum of traversed edge weights; cost the sum of milestone
    costs; difficulty the hardest milestone. Nodes in *excluded* contribute
    to none of the three.
    """
    skip = set(excluded)
    duration = 0.0
    cost = 0.0
    rank = 0
    for u, v in zip(nodes, nodes[1:]):
        if v in skip:
            continue
        edge = index.edges.get((u, v))
        if edge is not None:
            duration += edge.weight
        spec = index.milestone(v)
        if spec is not None:
            cost += spec.cost
            rank = max(rank, DIFFICULTY_RANK[spec.difficulty])
    return duration, cost, _RANK_TO_DIFFICULTY[rank]


def make_route(
    index: GraphIndex,
    nodes: Sequence[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Route:
    """Build a ``Route`` value for *nodes* with whole-route totals.

    Equal node sequences always give equal ``Route`` values.
    """
    duration, cost, difficulty = route_metrics(index, nodes)
    career_id = index.graph.career_id
    return Route(
        id=route_id_for(career_id, nodes),
        career_id=career_id,
        nodes=tuple(nodes),
        total_duration=round(duration, 6),
        total_cost=round(cost, 6),
        difficulty=difficulty,
        cost_bucket=config.cost_bucket(cost),
    )


# =========================================================================
# Validation
# =========================================================================


def _path_is_valid(
    index: GraphIndex, nodes: Sequence[str], satisfied: Iterable[str] = ()
) -> bool:
    seen = set(satisfied)
    for u, v in zip(nodes, nodes[1:]):
        edge = index.edges.get((u, v))
        if edge is None:
            return False
        seen.add(u)
        if any(p not in seen for p in edge.prerequisites):
            return False
    return len(set(nodes)) == len(nodes)


def validate_route(
    route: Route, graph: Graph, satisfied: Iterable[str] = ()
) -> bool:
    """Check that *route* is a traversable start → destination path.

    Every consecutive pair must be an edge of *graph*, and every edge
    prerequisite must appear strictly earlier in the sequence (or be in
    *satisfied*). Never raises.
    """
    nodes = route.nodes
    if len(nodes) < 2:
        return False
    if nodes[0] != graph.start_id or nodes[-1] != graph.destination_id:
        return False
    return _path_is_valid(GraphIndex(graph), nodes, satisfied)


# =========================================================================
# Enumeration
# =========================================================================


def find_all_routes(
    graph: Graph,
    max_routes: Optional[int] = None,
    max_search_nodes: Optional[int] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    prefix: Sequence[str] = (),
    exclude: Iterable[str] = (),
    satisfied: Iterable[str] = (),
    waypoints: Sequence[str] = (),
) -> List[Route]:
    """Depth-first enumeration of simple start → destination routes.

    Args:
        graph: A validated career graph.
        max_routes: Stop after this many routes (default from *config*).
        max_search_nodes: Search-node budget (default from *config*).
        config: Engine configuration.
        prefix: Fixed beginning of every route; must start at the start node.
        exclude: Node ids no route may visit.
        satisfied: Node ids treated as satisfied edge prerequisites even
                   when they are not on the route.
        waypoints: Node ids every route must visit, in this order.

    Returns:
        Routes in discovery order (ascending node-id DFS). Possibly partial.
        Route totals always cover the whole route.
    """
    if max_routes is None:
        max_routes = config.max_routes
    if max_search_nodes is None:
        max_search_nodes = config.max_search_nodes

    index = GraphIndex(graph)
    satisfied = set(satisfied)
    banned = set(exclude)
    wp_pos = {n: i for i, n in enumerate(waypoints)}
    path = list(prefix) or [graph.start_id]

    if path[0] != graph.start_id or not _path_is_valid(index, path, satisfied):
        logger.debug("Career %s: prefix %s is not a valid path.", graph.career_id, path)
        return []
    if banned & set(path) or banned & set(wp_pos):
        return []

    hit = 0
    for node_id in path:
        if node_id in wp_pos:
            if wp_pos[node_id] != hit:
                return []
            hit += 1

    if path[-1] == graph.destination_id:
        return [make_route(index, path, config)] if hit == len(wp_pos) else []

    routes: List[Route] = []
    on_path = set(path)
    expanded = 0
    exhausted = False
    stack = [iter(index.successors.get(path[-1], ()))]

    with timed(f"find_all_routes[{graph.career_id}]"):
        while stack and len(routes) < max_routes:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                if stack:
                    popped = path.pop()
                    on_path.discard(popped)
                    if popped in wp_pos:
                        hit -= 1
                continue

            if nxt in on_path or nxt in banned:
                continue
            # Waypoints are taken strictly in order.
            if nxt in wp_pos and wp_pos[nxt] != hit:
                continue
            if nxt == graph.destination_id and hit != len(wp_pos):
                continue
            edge = index.edges[(path[-1], nxt)]
            if any(p not in on_path and p not in satisfied for p in edge.prerequisites):
                continue

            expanded += 1
            if expanded > max_search_nodes:
                exhausted = True
                break

            if nxt == graph.destination_id:
                routes.append(make_route(index, path + [nxt], config))
                continue

            path.append(nxt)
            on_path.add(nxt)
            if nxt in wp_pos:
                hit += 1
            stack.append(iter(index.successors.get(nxt, ())))

    if exhausted:
        logger.warning(
            "Career %s: route search budget of %d nodes exhausted; "
            "returning %d partial route(s).",
            graph.career_id, max_search_nodes, len(routes),
        )
    else:
        logger.debug(
            "Career %s: found %d route(s) after %d search node(s).",
            graph.career_id, len(routes), expanded,
        )
    return routes


# =========================================================================
# Optimal route (DP over topological order)
# =========================================================================


def _step_cost(index: GraphIndex, u: str, v: str, optimize_for: str) -> float:
    if optimize_for == "time":
        return index.edges[(u, v)].weight
    spec = index.milestone(v)
    if spec is None:
        return 0.0
    if optimize_for == "cost":
        return spec.cost
    return float(4 ** DIFFICULTY_RANK[spec.difficulty])


def route_objective(index: GraphIndex, nodes: Sequence[str], optimize_for: str) -> float:
    """Accumulated DP objective of a node path."""
    return sum(_step_cost(index, u, v, optimize_for) for u, v in zip(nodes, nodes[1:]))


def calculate_optimal_route(
    graph: Graph,
    optimize_for: OptimizeFor = "time",
    config: EngineConfig = DEFAULT_CONFIG,
) -> Route:
    """Return the minimum-objective route for *optimize_for*.

    Objectives are additive per step: ``time`` uses edge weights, ``cost``
    milestone costs and ``difficulty`` ``4 ** rank`` per milestone, so one
    hard milestone outweighs several medium ones. Ties go to the smaller
    predecessor id, making the result reproducible.

    Raises:
        NoValidRouteError: when no route satisfies the edge prerequisites.
    """
    index = GraphIndex(graph)
    G = to_digraph(graph)
    best: Dict[str, Tuple[float, str]] = {graph.start_id: (0.0, "")}

    for v in nx.lexicographical_topological_sort(G):
        if v == graph.start_id:
            continue
        candidates = [
            (round(best[u][0] + _step_cost(index, u, v, optimize_for), 9), u)
            for u in sorted(G.predecessors(v))
            if u in best
        ]
        if candidates:
            best[v] = min(candidates)

    if graph.destination_id not in best:
        raise NoValidRouteError(graph.career_id, graph.destination_id)

    nodes = [graph.destination_id]
    while nodes[-1] != graph.start_id:
        nodes.append(best[nodes[-1]][1])
    nodes.reverse()

    route = make_route(index, nodes, config)
    if validate_route(route, graph):
        logger.info(
            "Career %s: optimal route for %s has %d milestone(s), %.1f month(s).",
            graph.career_id, optimize_for, len(route.milestones), route.total_duration,
        )
        return route

    # The DP ignores edge prerequisites; fall back to scoring valid routes.
    logger.debug(
        "Career %s: DP route violates prerequisites, scoring enumerated routes.",
        graph.career_id,
    )
    routes = find_all_routes(graph, config=config)
    if not routes:
        raise NoValidRouteError(graph.career_id, graph.destination_id)
    return min(
        routes,
        key=lambda r: (round(route_objective(index, r.nodes, optimize_for), 9), r.nodes),
    )


# =========================================================================
# Comparison
# =========================================================================


def compare_routes(
    graph: Graph, routes: Optional[Sequence[Route]] = None
) -> RouteComparison:
    """Tabulate *routes* (default: the graph's precomputed routes)."""
    if routes is None:
        routes = graph.routes

    rows = tuple(
        {
            "route_id": r.id,
            "milestones": len(r.milestones),
            "total_duration": r.total_duration,
            "total_cost": r.total_cost,
            "cost_bucket": r.cost_bucket,
            "difficulty": r.difficulty,
            "path": list(r.milestones),
        }
        for r in routes
    )
    if not routes:
        return RouteComparison(career_id=graph.career_id, rows=rows)

    fastest = min(routes, key=lambda r: (r.total_duration, r.id))
    cheapest = min(routes, key=lambda r: (r.total_cost, r.id))
    easiest = min(
        routes,
        key=lambda r: (DIFFICULTY_RANK[r.difficulty], r.total_duration, r.id),
    )
    return RouteComparison(
        career_id=graph.career_id,
        rows=rows,
        fastest=fastest.id,
        cheapest=cheapest.id,
        easiest=easiest.id,
    )
