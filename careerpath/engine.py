"""
Public operations surface of the route engine.

``CareerPathEngine`` wires the components together and owns the registry
of built graphs. Graphs are replaced wholesale when a career is rebuilt,
so readers never see a half-built graph and need no lock.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.deviation_detector import detect_deviations, manual_deviation
from careerpath.errors import UnknownEntityError
from careerpath.graph_builder import MilestoneInput, add_milestones, build_career_graph
from careerpath.models import (
    Deviation,
    Graph,
    OptimizeFor,
    ProgressState,
    ProgressUpdate,
    ReRouteResult,
    Route,
    RouteComparison,
    RouteOptions,
)
from careerpath.oracle import (
    OracleClient,
    OracleRequest,
    RecommendationOracle,
    suggest_milestones_or_default,
)
from careerpath.progress_tracker import ProgressTracker, estimate_time_to_completion
from careerpath.rerouter import ReRouter
from careerpath.route_finder import calculate_optimal_route, compare_routes, find_all_routes

logger = logging.getLogger(__name__)


class CareerPathEngine:
    """Facade over graph building, routing, tracking and re-routing."""

    def __init__(
        self,
        config: EngineConfig = DEFAULT_CONFIG,
        oracle: Optional[RecommendationOracle] = None,
    ) -> None:
        self.config = config
        self.oracle = OracleClient(oracle, config) if oracle is not None else None
        self._graphs: Dict[str, Graph] = {}
        self.tracker = ProgressTracker(config)
        self.rerouter = ReRouter(self.tracker, self.get_graph, self.oracle, config)

    # ---- graphs --------------------------------------------------------

    def get_graph(self, career_id: str) -> Graph:
        graph = self._graphs.get(career_id)
        if graph is None:
            raise UnknownEntityError("career", career_id)
        return graph

    def build_career_graph(
        self,
        career_id: str,
        milestones: Optional[Iterable[MilestoneInput]] = None,
        profile_summary: Optional[Dict[str, Any]] = None,
        current_stage: Optional[Iterable[str]] = None,
    ) -> Graph:
        """Build (or rebuild) the graph for *career_id*.

        Without explicit *milestones* the oracle is asked for them; if it
        fails, a rule-based template is used instead.
        """
        if milestones is None:
            request = OracleRequest(
                career_id=career_id, profile_summary=dict(profile_summary or {})
            )
            milestones, source = suggest_milestones_or_default(self.oracle, request)
            logger.info("Career %s: milestones from %s.", career_id, source)

        previous = self._graphs.get(career_id)
        version = previous.version + 1 if previous is not None else 1
        graph = build_career_graph(
            career_id, milestones, current_stage=current_stage,
            config=self.config, version=version,
        )
        self._graphs[career_id] = graph
        return graph

    def add_milestones(
        self, career_id: str, milestones: Iterable[MilestoneInput]
    ) -> Graph:
        """Publish a new graph version with extra milestones."""
        graph = add_milestones(self.get_graph(career_id), milestones, self.config)
        self._graphs[career_id] = graph
        return graph

    # ---- routes --------------------------------------------------------

    def find_all_routes(
        self, career_id: str, max_routes: Optional[int] = None
    ) -> List[Route]:
        return find_all_routes(
            self.get_graph(career_id), max_routes=max_routes, config=self.config
        )

    def calculate_optimal_route(
        self, career_id: str, optimize_for: OptimizeFor = "time"
    ) -> Route:
        return calculate_optimal_route(self.get_graph(career_id), optimize_for, self.config)

    def compare_routes(
        self, career_id: str, route_ids: Optional[Sequence[str]] = None
    ) -> RouteComparison:
        graph = self.get_graph(career_id)
        if route_ids is None:
            return compare_routes(graph)
        routes = []
        for rid in route_ids:
            route = graph.get_route(rid)
            if route is None:
                raise UnknownEntityError("route", rid)
            routes.append(route)
        return compare_routes(graph, routes)

    # ---- progress ------------------------------------------------------

    def start_route(
        self,
        person_id: str,
        career_id: str,
        route: Optional[Route] = None,
        route_id: Optional[str] = None,
        pre_skipped: Iterable[str] = (),
        at: Optional[datetime] = None,
    ) -> ProgressState:
        """Start tracking *person_id* on a route (default: fastest route)."""
        graph = self.get_graph(career_id)
        if route is None and route_id is not None:
            route = graph.get_route(route_id)
            if route is None:
                raise UnknownEntityError("route", route_id)
        if route is None:
            route = calculate_optimal_route(graph, "time", self.config)
        return self.tracker.start_tracking(person_id, graph, route, pre_skipped, at)

    def get_progress(self, person_id: str) -> ProgressState:
        return self.tracker.get_state(person_id)

    def update_progress(
        self, person_id: str, node_id: str, update: ProgressUpdate
    ) -> ProgressState:
        return self.tracker.update_progress(person_id, node_id, update)

    def estimate_time_to_completion(
        self, person_id: str, now: Optional[datetime] = None
    ) -> float:
        state = self.tracker.get_state(person_id)
        graph = self.get_graph(state.career_id)
        return estimate_time_to_completion(state, state.route, graph, now, self.config)

    # ---- deviations & re-routing --------------------------------------

    def detect_deviations(
        self,
        person_id: str,
        now: Optional[datetime] = None,
        interest_change: Optional[float] = None,
        manual_reason: Optional[str] = None,
    ) -> Optional[Deviation]:
        state = self.tracker.get_state(person_id)
        graph = self.get_graph(state.career_id)
        return detect_deviations(
            state, state.route, graph, now=now,
            interest_change=interest_change, manual_reason=manual_reason,
            config=self.config,
        )

    def request_reroute(self, reason: str, now: Optional[datetime] = None) -> Deviation:
        """Person-initiated deviation, bypassing detection."""
        return manual_deviation(reason, now)

    def calculate_alternatives(
        self,
        person_id: str,
        deviation: Deviation,
        options: Optional[RouteOptions] = None,
    ) -> ReRouteResult:
        return self.rerouter.calculate_alternatives(person_id, deviation, options)

    def apply_reroute(
        self, person_id: str, new_route_id: str, at: Optional[datetime] = None
    ) -> ProgressState:
        return self.rerouter.apply_reroute(person_id, new_route_id, at)

    def close(self) -> None:
        if self.oracle is not None:
            self.oracle.close()
