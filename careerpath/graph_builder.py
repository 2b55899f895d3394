"""
Career graph construction (DAG).

Turns a flat list of milestone descriptions plus their prerequisite
relations into a validated, read-only ``Graph``:

1. synthetic start and destination nodes;
2. one node per milestone;
3. an edge ``A → B`` for every prerequisite ``A`` of ``B``, weighted by
   ``B``'s estimated duration;
4. ``start → B`` for milestones with no open prerequisites;
5. ``B → destination`` (weight 0) for terminal milestones;
6. DAG validation, then route precomputation.

Invalid input is rejected with ``GraphInvalidError``; nothing is repaired.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.dag_validator import validate_dag
from careerpath.errors import GraphInvalidError
from careerpath.models import (
    DESTINATION_ID,
    RESERVED_IDS,
    START_ID,
    Edge,
    Graph,
    MilestoneSpec,
    Node,
)
from careerpath.route_finder import find_all_routes
from careerpath.utils import timed

logger = logging.getLogger(__name__)

MilestoneInput = Union[MilestoneSpec, Mapping[str, Any]]


# =========================================================================
# Input checks
# =========================================================================


def _coerce_specs(milestones: Iterable[MilestoneInput]) -> List[MilestoneSpec]:
    return [
        m if isinstance(m, MilestoneSpec) else MilestoneSpec.model_validate(m)
        for m in milestones
    ]


def _check_ids(career_id: str, specs: Sequence[MilestoneSpec]) -> None:
    seen = set()
    dupes = set()
    for s in specs:
        if s.id in seen:
            dupes.add(s.id)
        seen.add(s.id)
    if dupes:
        raise GraphInvalidError(career_id, "duplicate_milestone", sorted(dupes))

    reserved = sorted(seen & RESERVED_IDS)
    if reserved:
        raise GraphInvalidError(career_id, "reserved_id", reserved)

    unknown = sorted(
        {p for s in specs for p in s.prerequisites if p not in seen}
        | {r for s in specs for r in s.requires if r not in seen}
    )
    if unknown:
        raise GraphInvalidError(career_id, "unknown_prerequisite", unknown)


# =========================================================================
# Edge generation
# =========================================================================


def generate_edges(
    specs: Sequence[MilestoneSpec],
    achieved: Iterable[str] = (),
) -> List[Edge]:
    """Generate the directed edges for *specs*.

    Milestones in *achieved* are already behind the start node: they get
    no node of their own and count as satisfied prerequisites, so any
    milestone that lists one of them becomes reachable from start.
    """
    achieved = set(achieved)
    edges: List[Edge] = []
    listed = set()

    for s in specs:
        reqs = tuple(r for r in s.requires if r not in achieved)
        open_prereqs = list(dict.fromkeys(p for p in s.prerequisites if p not in achieved))
        unlocked = not s.prerequisites or len(open_prereqs) < len(set(s.prerequisites))

        # A start edge can never satisfy an open requirement; keep it only
        # when it is the sole way in.
        if unlocked and (not reqs or not open_prereqs):
            edges.append(Edge(
                source=START_ID, target=s.id,
                weight=s.estimated_duration, prerequisites=reqs,
            ))
        for p in open_prereqs:
            edges.append(Edge(
                source=p, target=s.id,
                weight=s.estimated_duration, prerequisites=reqs,
            ))
            listed.add(p)

    for s in specs:
        if s.id not in listed:
            edges.append(Edge(source=s.id, target=DESTINATION_ID, weight=0.0))

    return edges


# =========================================================================
# Builder
# =========================================================================


def build_career_graph(
    career_id: str,
    milestones: Iterable[MilestoneInput],
    current_stage: Optional[Iterable[str]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    version: int = 1,
) -> Graph:
    """Build and validate the career graph for *career_id*.

    Args:
        career_id: Career identifier.
        milestones: Milestone descriptions (``MilestoneSpec`` or dicts).
        current_stage: Milestone ids the person has already achieved; they
                       are placed behind the start node.
        config: Engine configuration (route precomputation budgets).
        version: Graph version number.

    Returns:
        A fully built, read-only ``Graph`` with precomputed routes.

    Raises:
        GraphInvalidError: duplicate/reserved/unknown ids, cycles,
            unreachable nodes or no traversable route.
    """
    specs = _coerce_specs(milestones)
    _check_ids(career_id, specs)

    achieved = list(dict.fromkeys(current_stage or ()))
    known = {s.id for s in specs}
    unknown_stage = sorted(a for a in achieved if a not in known)
    if unknown_stage:
        raise GraphInvalidError(career_id, "unknown_stage", unknown_stage)

    behind = [s for s in specs if s.id in set(achieved)]
    remaining = [s for s in specs if s.id not in set(achieved)]

    nodes = [Node(id=START_ID, kind="start")]
    nodes.extend(Node(id=s.id, kind="milestone", milestone=s) for s in remaining)
    nodes.append(Node(id=DESTINATION_ID, kind="destination"))

    with timed(f"build_career_graph[{career_id}]"):
        graph = Graph(
            career_id=career_id,
            version=version,
            nodes=tuple(nodes),
            edges=tuple(generate_edges(remaining, achieved)),
            behind_start=tuple(behind),
        )
        validate_dag(graph)
        routes = find_all_routes(graph, config=config)

    if not routes:
        raise GraphInvalidError(career_id, "no_traversable_route", [DESTINATION_ID])

    graph = graph.model_copy(update={"routes": tuple(routes)})
    logger.info(
        "Career %s: built graph v%d with %d milestone(s), %d edge(s), "
        "%d precomputed route(s), %d behind start.",
        career_id, version, len(remaining), len(graph.edges),
        len(routes), len(behind),
    )
    return graph


def add_milestones(
    graph: Graph,
    milestones: Iterable[MilestoneInput],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Graph:
    """Return a new graph version with *milestones* added; *graph* is untouched."""
    existing = list(graph.behind_start) + graph.milestone_specs()
    return build_career_graph(
        graph.career_id,
        existing + _coerce_specs(milestones),
        current_stage=[s.id for s in graph.behind_start],
        config=config,
        version=graph.version + 1,
    )


def graph_summary(graph: Graph) -> Dict[str, Any]:
    """Small JSON-friendly description of *graph* for logs and the CLI."""
    return {
        "career_id": graph.career_id,
        "version": graph.version,
        "milestones": [s.id for s in graph.milestone_specs()],
        "behind_start": [s.id for s in graph.behind_start],
        "routes": [list(r.milestones) for r in graph.routes],
    }
