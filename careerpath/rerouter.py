"""
Deviation-driven re-routing.

Given a deviation, compute destination-preserving alternative routes that
keep every completed (or skipped) milestone of the active route, in its
original relative order, score and rank them, and let the person commit
one. Failed milestones never reappear.

Routes are always offered with whole-route totals; scoring and impact
analysis run on a separate totals basis (remaining work by default).

Locking: the person's state is read under their lock, candidates are
computed on the snapshot, the oracle is called with no lock held, and the
offer is committed only if the state version is unchanged.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.errors import ConcurrentUpdateError, NoValidRouteError, UnknownEntityError
from careerpath.models import (
    COST_BUCKET_RANK,
    DIFFICULTY_RANK,
    SATISFIED_STATUSES,
    Deviation,
    Graph,
    ImpactAnalysis,
    ProgressState,
    ReRouteResult,
    Route,
    RouteOptions,
)
from careerpath.oracle import OracleClient, OracleRequest, explain_or_template, template_explanation
from careerpath.progress_tracker import ProgressTracker
from careerpath.route_finder import GraphIndex, find_all_routes, route_metrics

logger = logging.getLogger(__name__)

# (duration, cost, difficulty) on the chosen totals basis
RouteTotals = Tuple[float, float, str]


# =========================================================================
# Candidate generation
# =========================================================================


def required_waypoints(state: ProgressState) -> List[str]:
    """Satisfied milestones of the active route, in route order.

    Every alternative must visit these in this order; the
    milestones between them are free to change.
    """
    return [
        n for n in state.route.milestones if state.status_of(n) in SATISFIED_STATUSES
    ]


def preserves_progress(state: ProgressState, route: Route) -> bool:
    """True if *route* keeps the satisfied milestones in order, avoids
    failed ones and ends at the same destination."""
    nodes = route.nodes
    if not nodes or nodes[0] != state.route.nodes[0] or nodes[-1] != state.route.nodes[-1]:
        return False
    if set(state.nodes_with_status("failed")) & set(nodes):
        return False
    waypoints = required_waypoints(state)
    positions = [route.position(n) for n in waypoints]
    return all(p >= 0 for p in positions) and positions == sorted(positions)


def _totals_excluded(state: ProgressState, options: RouteOptions) -> set:
    if options.consider_completed:
        return set(state.nodes_with_status(*SATISFIED_STATUSES))
    return set(state.nodes_with_status("skipped"))


def candidate_routes(
    graph: Graph,
    state: ProgressState,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[Route]:
    """Enumerate routes consistent with *state*'s completed work.

    Failed milestones are avoided everywhere; satisfied milestones off the
    active route cannot reappear but still count as met prerequisites.
    """
    waypoints = required_waypoints(state)
    satisfied = set(state.nodes_with_status(*SATISFIED_STATUSES))
    failed = set(state.nodes_with_status("failed"))
    exclude = failed | (satisfied - set(waypoints))

    return find_all_routes(
        graph,
        config=config,
        exclude=exclude,
        satisfied=satisfied,
        waypoints=waypoints,
    )


def basis_totals(
    index: GraphIndex, routes: Sequence[Route], excluded: Iterable[str] = ()
) -> List[RouteTotals]:
    """Per-route totals leaving out *excluded* milestones."""
    excluded = set(excluded)
    return [route_metrics(index, r.nodes, excluded) for r in routes]


# =========================================================================
# Scoring
# =========================================================================


def score_routes(
    totals: Sequence[RouteTotals],
    optimize_for: str,
    config: EngineConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    """Weighted sum of normalised duration, cost bucket and difficulty.

    Duration is normalised by the longest candidate; bucket ranks by the
    highest rank. Lower is better.
    """
    if not totals:
        return np.zeros(0, dtype=np.float64)

    durations = np.array([t[0] for t in totals], dtype=np.float64)
    max_duration = durations.max()
    norm_duration = durations / max_duration if max_duration > 0 else np.zeros_like(durations)

    cost = np.array(
        [COST_BUCKET_RANK[config.cost_bucket(t[1])] for t in totals], dtype=np.float64
    )
    difficulty = np.array([DIFFICULTY_RANK[t[2]] for t in totals], dtype=np.float64)

    features = np.column_stack([norm_duration, cost / 2.0, difficulty / 2.0])
    weights = np.asarray(config.scoring_weights[optimize_for], dtype=np.float64)
    return np.round(features @ weights, 6)


def rank_routes(
    routes: Sequence[Route],
    totals: Sequence[RouteTotals],
    optimize_for: str,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Tuple[List[int], np.ndarray]:
    """Indices of *routes* best-first, plus their scores.

    Ties fall back to basis duration, then node order.
    """
    scores = score_routes(totals, optimize_for, config)
    order = sorted(
        range(len(routes)),
        key=lambda i: (scores[i], totals[i][0], routes[i].nodes),
    )
    return order, scores


def impact_analysis(original: RouteTotals, recommendation: RouteTotals) -> ImpactAnalysis:
    """Signed duration delta plus qualitative cost / difficulty deltas."""
    cost_diff = recommendation[1] - original[1]
    if abs(cost_diff) < 1e-9:
        cost_delta = "same"
    else:
        cost_delta = "higher" if cost_diff > 0 else "lower"

    rank_diff = DIFFICULTY_RANK[recommendation[2]] - DIFFICULTY_RANK[original[2]]
    if rank_diff == 0:
        difficulty_delta = "same"
    else:
        difficulty_delta = "harder" if rank_diff > 0 else "easier"

    return ImpactAnalysis(
        duration_delta=round(recommendation[0] - original[0], 6),
        cost_delta=cost_delta,
        difficulty_delta=difficulty_delta,
    )


# =========================================================================
# Service
# =========================================================================


class ReRouter:
    """Computes and commits alternative routes for tracked people."""

    def __init__(
        self,
        tracker: ProgressTracker,
        graph_lookup: Callable[[str], Graph],
        oracle: Optional[OracleClient] = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.tracker = tracker
        self.graph_lookup = graph_lookup
        self.oracle = oracle
        self.config = config

    def calculate_alternatives(
        self,
        person_id: str,
        deviation: Deviation,
        options: Optional[RouteOptions] = None,
    ) -> ReRouteResult:
        """Rank destination-preserving alternatives for *person_id*.

        Raises:
            NoValidRouteError: no route is consistent with completed work.
            ConcurrentUpdateError: progress changed while the explanation
                was being generated; re-fetch and retry.
        """
        options = options or RouteOptions()

        with self.tracker.person_lock(person_id):
            state = self.tracker.get_state(person_id)
        graph = self.graph_lookup(state.career_id)

        candidates = candidate_routes(graph, state, self.config)
        if not candidates:
            satisfied = state.nodes_with_status(*SATISFIED_STATUSES)
            logger.warning(
                "Person %s: no route preserves %d satisfied milestone(s).",
                person_id, len(satisfied),
            )
            raise NoValidRouteError(
                graph.career_id, graph.destination_id, sorted(satisfied), person_id
            )

        index = GraphIndex(graph)
        excluded = _totals_excluded(state, options)
        totals = basis_totals(index, candidates, excluded)
        order, raw_scores = rank_routes(
            candidates, totals, options.optimize_for, self.config
        )
        order = order[: options.max_routes]
        ranked = [candidates[i] for i in order]
        scores = {candidates[i].id: float(raw_scores[i]) for i in order}
        scored_durations = {candidates[i].id: totals[i][0] for i in order}
        recommendation = ranked[0]

        baseline = route_metrics(index, state.route.nodes, excluded)
        impact = impact_analysis(baseline, totals[order[0]])

        fallback = template_explanation(deviation, state.route, recommendation, impact)
        request = OracleRequest(
            career_id=state.career_id,
            profile_summary={"person_id": person_id},
            route_context={
                "deviation": deviation.model_dump(mode="json"),
                "original_route": list(state.route.milestones),
                "recommended_route": list(recommendation.milestones),
                "impact": impact.model_dump(mode="json"),
            },
        )
        explanation, source = explain_or_template(self.oracle, request, fallback)

        self.tracker.record_offer(person_id, state.version, ranked)
        logger.info(
            "Person %s: offered %d alternative(s) for %s; recommended %s.",
            person_id, len(ranked), deviation.type, recommendation.id,
        )
        return ReRouteResult(
            person_id=person_id,
            deviation=deviation,
            original_route=state.route,
            alternatives=tuple(ranked),
            recommendation=recommendation,
            scores=scores,
            scored_durations=scored_durations,
            impact_analysis=impact,
            explanation=explanation,
            explanation_source=source,
            based_on_version=state.version,
        )

    def apply_reroute(
        self, person_id: str, new_route_id: str, at: Optional[datetime] = None
    ) -> ProgressState:
        """Commit an offered route as *person_id*'s active route.

        Raises:
            UnknownEntityError: *new_route_id* was not offered.
            ConcurrentUpdateError: progress moved on since the offer and the
                route no longer preserves it.
        """
        with self.tracker.person_lock(person_id):
            state = self.tracker.get_state(person_id)
            route = state.offered_routes.get(new_route_id)
            if route is None:
                raise UnknownEntityError("offered route", new_route_id)

            if state.version != state.offered_at_version and not preserves_progress(state, route):
                raise ConcurrentUpdateError(
                    person_id, state.offered_at_version or 0, state.version
                )

            graph = self.graph_lookup(state.career_id)
            return self.tracker.replace_route(
                person_id, route, graph_version=graph.version, at=at
            )
