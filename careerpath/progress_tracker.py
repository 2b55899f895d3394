"""
Per-person progress tracking against one active route.

``ProgressTracker`` is the only holder of mutable per-person state. Each
person has their own re-entrant lock; operations on different people
never contend. Callers always receive deep copies of the state.

Node status machine::

    not_started → in_progress → {completed | failed | skipped}

plus ``in_progress → not_started`` (re-route reset, internal only) and
``not_started → skipped`` (career-switcher pre-skip, before any progress).
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from careerpath.config import DEFAULT_CONFIG, EngineConfig
from careerpath.errors import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    NoValidRouteError,
    UnknownEntityError,
)
from careerpath.models import (
    SATISFIED_STATUSES,
    Graph,
    NodeProgress,
    ProgressState,
    ProgressUpdate,
    Route,
)
from careerpath.route_finder import GraphIndex, validate_route
from careerpath.utils import months_between

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[str, frozenset] = {
    "not_started": frozenset({"in_progress"}),
    "in_progress": frozenset({"completed", "failed", "skipped"}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================================================
# Pure helpers
# =========================================================================


def effective_time_spent(
    progress: NodeProgress,
    now: Optional[datetime] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Accumulated months on a node, including the open in-progress stretch."""
    spent = progress.time_spent
    if progress.status == "in_progress" and progress.started_at is not None:
        spent += months_between(progress.started_at, now or _utcnow(), config.days_per_month)
    return spent


def calculate_completion(state: ProgressState, route: Route) -> int:
    """Completed milestones on *route* as a percentage, rounded half up."""
    milestones = route.milestones
    if not milestones:
        return 100
    done = sum(1 for n in milestones if state.status_of(n) == "completed")
    return int(done * 100 / len(milestones) + 0.5)


def estimate_time_to_completion(
    state: ProgressState,
    route: Route,
    graph: Graph,
    now: Optional[datetime] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """Remaining months on *route*: unsatisfied milestones' durations minus
    time already spent on in-progress ones."""
    index = GraphIndex(graph)
    remaining = 0.0
    for node_id in route.milestones:
        spec = index.milestone(node_id)
        if spec is None:
            continue
        progress = state.node_progress.get(node_id, NodeProgress())
        if progress.status in SATISFIED_STATUSES:
            continue
        if progress.status == "in_progress":
            spent = effective_time_spent(progress, now, config)
            remaining += max(0.0, spec.estimated_duration - spent)
        else:
            remaining += spec.estimated_duration
    return round(remaining, 6)


def _refresh(state: ProgressState, at: datetime) -> None:
    """Recompute current node, completed list and completion percentage."""
    route = state.route
    furthest_done = 0
    furthest_active = 0
    for pos, node_id in enumerate(route.nodes):
        status = state.status_of(node_id)
        if status in SATISFIED_STATUSES:
            furthest_done = pos
        elif status in ("in_progress", "failed"):
            furthest_active = pos

    idx = min(max(furthest_done + 1, furthest_active), len(route.nodes) - 1)
    state.current_node_id = route.nodes[idx]

    on_route = [n for n in route.milestones if state.status_of(n) == "completed"]
    off_route = sorted(
        n for n in state.nodes_with_status("completed") if n not in set(on_route)
    )
    state.completed_nodes = on_route + off_route
    state.overall_completion = calculate_completion(state, route)
    state.updated_at = at


# =========================================================================
# Tracker
# =========================================================================


class ProgressTracker:
    """In-memory, per-person serialised progress store."""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self._states: Dict[str, ProgressState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # ---- locking -------------------------------------------------------

    def person_lock(self, person_id: str, create: bool = False) -> threading.RLock:
        """Return the lock guarding *person_id*.

        Locks exist only for tracked people; pass *create* when starting or
        restoring tracking.

        Raises:
            UnknownEntityError: *person_id* has no lock and *create* is false.
        """
        with self._registry_lock:
            lock = self._locks.get(person_id)
            if lock is None:
                if not create:
                    raise UnknownEntityError("person", person_id)
                lock = self._locks[person_id] = threading.RLock()
            return lock

    def _require(self, person_id: str) -> ProgressState:
        state = self._states.get(person_id)
        if state is None:
            raise UnknownEntityError("person", person_id)
        return state

    # ---- reads ---------------------------------------------------------

    def get_state(self, person_id: str) -> ProgressState:
        """Deep-copied snapshot of *person_id*'s progress."""
        with self.person_lock(person_id):
            return self._require(person_id).model_copy(deep=True)

    def is_tracked(self, person_id: str) -> bool:
        return person_id in self._states

    # ---- writes --------------------------------------------------------

    def start_tracking(
        self,
        person_id: str,
        graph: Graph,
        route: Route,
        pre_skipped: Iterable[str] = (),
        at: Optional[datetime] = None,
    ) -> ProgressState:
        """Begin tracking *person_id* on *route*.

        *pre_skipped* marks milestones the person already covers through
        prior experience; they count as satisfied but not as completed.
        """
        at = at or _utcnow()
        pre_skipped = list(dict.fromkeys(pre_skipped))
        index = GraphIndex(graph)
        unknown = [n for n in pre_skipped if index.milestone(n) is None]
        if unknown:
            raise UnknownEntityError("milestone", unknown[0])
        if not validate_route(route, graph, satisfied=pre_skipped):
            raise NoValidRouteError(
                graph.career_id, graph.destination_id, pre_skipped, person_id
            )

        with self.person_lock(person_id, create=True):
            if person_id in self._states:
                raise ValueError(f"person {person_id!r} is already tracked")

            node_progress = {n: NodeProgress() for n in route.milestones}
            for n in pre_skipped:
                node_progress[n] = NodeProgress(status="skipped", completed_at=at)

            state = ProgressState(
                person_id=person_id,
                career_id=graph.career_id,
                graph_version=graph.version,
                route=route,
                current_node_id=route.nodes[0],
                node_progress=node_progress,
            )
            _refresh(state, at)
            self._states[person_id] = state
            logger.info(
                "Tracking person %s on %s (%d milestone(s), %d pre-skipped).",
                person_id, route.id, len(route.milestones), len(pre_skipped),
            )
            return state.model_copy(deep=True)

    def restore(self, state: ProgressState) -> None:
        """Install a previously serialised state (replaces any existing one)."""
        with self.person_lock(state.person_id, create=True):
            self._states[state.person_id] = state.model_copy(deep=True)

    def pre_skip(
        self, person_id: str, node_ids: Sequence[str], at: Optional[datetime] = None
    ) -> ProgressState:
        """Mark milestones skipped before any progress has been recorded."""
        at = at or _utcnow()
        with self.person_lock(person_id):
            state = self._require(person_id)
            for nid, p in state.node_progress.items():
                if p.status not in ("not_started", "skipped"):
                    raise InvalidTransitionError(person_id, nid, p.status, "skipped")
            missing = [n for n in node_ids if n not in state.node_progress]
            if missing:
                raise UnknownEntityError("route node", missing[0])

            progress = dict(state.node_progress)
            for n in node_ids:
                progress[n] = NodeProgress(status="skipped", completed_at=at)
            state.node_progress = progress
            _refresh(state, at)
            state.version += 1
            return state.model_copy(deep=True)

    def update_progress(
        self,
        person_id: str,
        node_id: str,
        update: ProgressUpdate,
    ) -> ProgressState:
        """Apply a validated status change and/or evidence to one node.

        Raises:
            UnknownEntityError: unknown person or node not on the active route.
            InvalidTransitionError: illegal status change (state unchanged).
        """
        at = update.at or _utcnow()
        with self.person_lock(person_id):
            state = self._require(person_id)
            if node_id not in state.route.milestones:
                raise UnknownEntityError("route node", node_id)

            current = state.node_progress.get(node_id, NodeProgress())
            new = current.model_copy()

            if update.status is not None:
                allowed = _TRANSITIONS.get(current.status, frozenset())
                if update.status not in allowed:
                    raise InvalidTransitionError(
                        person_id, node_id, current.status, update.status
                    )
                if update.status == "in_progress":
                    new.started_at = at
                    new.completed_at = None
                else:
                    if current.started_at is not None:
                        new.time_spent = current.time_spent + months_between(
                            current.started_at, at, self.config.days_per_month
                        )
                    new.completed_at = at
                new.status = update.status

            if update.evidence is not None:
                new.evidence = update.evidence

            state.node_progress[node_id] = new
            _refresh(state, at)
            state.version += 1
            logger.debug(
                "Person %s: %s %s -> %s (completion=%d%%).",
                person_id, node_id, current.status, new.status,
                state.overall_completion,
            )
            return state.model_copy(deep=True)

    def record_offer(
        self, person_id: str, expected_version: int, routes: Sequence[Route]
    ) -> ProgressState:
        """Store offered alternatives if the state is still at *expected_version*.

        Raises:
            ConcurrentUpdateError: the state changed since it was read.
        """
        with self.person_lock(person_id):
            state = self._require(person_id)
            if state.version != expected_version:
                raise ConcurrentUpdateError(person_id, expected_version, state.version)
            state.offered_routes = {r.id: r for r in routes}
            state.version += 1
            state.offered_at_version = state.version
            return state.model_copy(deep=True)

    def replace_route(
        self,
        person_id: str,
        route: Route,
        graph_version: Optional[int] = None,
        at: Optional[datetime] = None,
    ) -> ProgressState:
        """Switch the active route, keeping completed records.

        In-progress nodes absent from *route* are reset to ``not_started``;
        nodes new to the route start as ``not_started``; offers are cleared.
        """
        at = at or _utcnow()
        with self.person_lock(person_id):
            state = self._require(person_id)
            keep = set(route.milestones)
            progress: Dict[str, NodeProgress] = {}
            reset: List[str] = []
            for nid, p in state.node_progress.items():
                if p.status == "in_progress" and nid not in keep:
                    spent = effective_time_spent(p, at, self.config)
                    progress[nid] = NodeProgress(time_spent=spent, evidence=p.evidence)
                    reset.append(nid)
                else:
                    progress[nid] = p.model_copy()
            for nid in route.milestones:
                progress.setdefault(nid, NodeProgress())

            state.route = route
            state.node_progress = progress
            state.offered_routes = {}
            state.offered_at_version = None
            if graph_version is not None:
                state.graph_version = graph_version
            _refresh(state, at)
            state.version += 1
            logger.info(
                "Person %s switched to %s (reset %d in-progress node(s)).",
                person_id, route.id, len(reset),
            )
            return state.model_copy(deep=True)
